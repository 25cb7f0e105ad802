"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, env_int, optional_env_var, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .gemini import GeminiConfig, get_gemini_config
from .http_resilience import RateLimit, ResilienceConfig
from .logging import configure_logging
from .pipeline import PipelineConfig, RetryPolicy, get_pipeline_config

__all__ = [
    "ConfigurationError",
    "GeminiConfig",
    "MissingConfigurationError",
    "PipelineConfig",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "configure_logging",
    "env_float",
    "env_int",
    "get_gemini_config",
    "get_pipeline_config",
    "optional_env_var",
    "require_env_var",
    "require_env_vars",
]
