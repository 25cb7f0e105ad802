"""Batching, retry and pacing defaults for the rewrite pipeline."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int
from .errors import ConfigurationError

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_BACKOFF_SECONDS = 2.0
DEFAULT_RATE_LIMIT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_BACKOFF_SECONDS = 60.0
DEFAULT_INTER_BATCH_DELAY_SECONDS = 1.0
DEFAULT_MAX_CONCURRENCY = 1


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Attempt budget and backoff schedule for a single batch.

    ``max_attempts`` counts the first call, so the default of three allows two
    retries. The delay before retry ``n`` (1-based) is ``base_backoff * 2 ** (n - 1)``;
    rate limiting stretches it by ``rate_limit_backoff_multiplier``. A server supplied
    ``retry_after`` raises the delay, and ``max_backoff`` caps the result.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_backoff: float = DEFAULT_BASE_BACKOFF_SECONDS
    rate_limit_backoff_multiplier: float = DEFAULT_RATE_LIMIT_BACKOFF_MULTIPLIER
    max_backoff: float = DEFAULT_MAX_BACKOFF_SECONDS

    def backoff_delay(
        self,
        attempt: int,
        *,
        rate_limited: bool = False,
        retry_after: float | None = None,
    ) -> float:
        delay = self.base_backoff * 2 ** (attempt - 1)
        if rate_limited:
            delay *= self.rate_limit_backoff_multiplier
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_backoff)


@dataclass(slots=True, frozen=True)
class PipelineConfig:
    batch_size: int = DEFAULT_BATCH_SIZE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_backoff: float = DEFAULT_BASE_BACKOFF_SECONDS
    rate_limit_backoff_multiplier: float = DEFAULT_RATE_LIMIT_BACKOFF_MULTIPLIER
    max_backoff: float = DEFAULT_MAX_BACKOFF_SECONDS
    inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY_SECONDS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY

    def validate(self) -> None:
        problems: list[str] = []
        if self.batch_size < 1:
            problems.append(f"batch_size must be >= 1 (got {self.batch_size})")
        if self.max_attempts < 1:
            problems.append(f"max_attempts must be >= 1 (got {self.max_attempts})")
        if self.base_backoff < 0:
            problems.append(f"base_backoff must be >= 0 (got {self.base_backoff})")
        if self.rate_limit_backoff_multiplier < 1:
            problems.append(
                "rate_limit_backoff_multiplier must be >= 1 "
                f"(got {self.rate_limit_backoff_multiplier})"
            )
        if self.max_backoff <= 0:
            problems.append(f"max_backoff must be > 0 (got {self.max_backoff})")
        if self.inter_batch_delay < 0:
            problems.append(f"inter_batch_delay must be >= 0 (got {self.inter_batch_delay})")
        if self.max_concurrency < 1:
            problems.append(f"max_concurrency must be >= 1 (got {self.max_concurrency})")
        if problems:
            raise ConfigurationError("Invalid pipeline configuration: " + "; ".join(problems))

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_backoff=self.base_backoff,
            rate_limit_backoff_multiplier=self.rate_limit_backoff_multiplier,
            max_backoff=self.max_backoff,
        )


def get_pipeline_config() -> PipelineConfig:
    config = PipelineConfig(
        batch_size=env_int("KBNORM_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        max_attempts=env_int("KBNORM_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        base_backoff=env_float("KBNORM_BASE_BACKOFF", DEFAULT_BASE_BACKOFF_SECONDS),
        rate_limit_backoff_multiplier=env_float(
            "KBNORM_RATE_LIMIT_MULTIPLIER", DEFAULT_RATE_LIMIT_BACKOFF_MULTIPLIER
        ),
        max_backoff=env_float("KBNORM_MAX_BACKOFF", DEFAULT_MAX_BACKOFF_SECONDS),
        inter_batch_delay=env_float("KBNORM_INTER_BATCH_DELAY", DEFAULT_INTER_BATCH_DELAY_SECONDS),
        max_concurrency=env_int("KBNORM_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
    )
    config.validate()
    return config
