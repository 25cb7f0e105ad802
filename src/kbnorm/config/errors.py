"""Configuration error definitions."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when configuration values are invalid or make a run meaningless."""


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration values (e.g. API credentials) are absent or blank."""
