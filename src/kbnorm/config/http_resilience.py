"""Configuration types for resilient HTTP clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    """Transport settings for one remote service.

    Retrying is deliberately absent here: the batch dispatcher owns the retry
    budget, so the HTTP layer reports each failure exactly once.
    """

    name: str
    base_url: str | None = None
    timeout_seconds: float = 60.0
    ratelimit: RateLimit | None = None
    default_headers: Mapping[str, str] | None = None
