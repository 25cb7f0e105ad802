"""Public interface for the Gemini adapter."""

from __future__ import annotations

from .client import GeminiTransformClient, build_request_body
from .schema import GenerateContentResponse, WireItem
from .translator import parse_transform_items, to_wire

__all__ = [
    "GeminiTransformClient",
    "GenerateContentResponse",
    "WireItem",
    "build_request_body",
    "parse_transform_items",
    "to_wire",
]
