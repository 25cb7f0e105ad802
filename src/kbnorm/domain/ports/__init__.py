"""Domain port definitions for adapters."""

from __future__ import annotations

from .transform import TransformClient, TransformItem

__all__ = ["TransformClient", "TransformItem"]
