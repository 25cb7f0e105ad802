"""Gemini configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig

DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"
GEMINI_TIMEOUT_SECONDS = 120.0


@dataclass(frozen=True, slots=True)
class GeminiConfig:
    """Holds Gemini API configuration values."""

    api_key: str
    model: str
    resilience: ResilienceConfig

    def __repr__(self) -> str:
        return f"GeminiConfig(model={self.model!r}, base_url={self.resilience.base_url!r})"


def get_gemini_config(*, resilience: ResilienceConfig | None = None) -> GeminiConfig:
    values = require_env_vars(("GEMINI_API_KEY",))
    base_url = optional_env_var("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL)
    return GeminiConfig(
        api_key=values["GEMINI_API_KEY"],
        model=optional_env_var("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
        resilience=resilience
        or ResilienceConfig(
            name="gemini",
            base_url=base_url,
            timeout_seconds=GEMINI_TIMEOUT_SECONDS,
            ratelimit=RateLimit(max_calls=10, per_seconds=60.0),
        ),
    )
