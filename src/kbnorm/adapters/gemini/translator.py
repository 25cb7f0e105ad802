"""Translation between transform items and the JSON exchanged with Gemini."""

from __future__ import annotations

import json
import re
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import ValidationError

from kbnorm.domain.errors import RemoteTransient
from kbnorm.domain.ports.transform import TransformItem

from .schema import WireItem

if TYPE_CHECKING:
    from collections.abc import Sequence

log = getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*|\s*```")


def to_wire(items: Sequence[TransformItem]) -> list[dict[str, object]]:
    return [
        WireItem(index=item.index, name=item.primary, description=item.secondary).model_dump(
            by_alias=True
        )
        for item in items
    ]


def parse_transform_items(text: str) -> list[TransformItem]:
    """Decode the model's answer into transform items.

    Markdown fences are stripped because the model sometimes adds them despite
    being asked not to. A lone object is treated as a one-element array. Entries
    that do not validate are dropped; the dispatcher sees them as missing.
    """

    cleaned = _CODE_FENCE.sub("", text).strip()
    try:
        decoded = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise RemoteTransient(f"Gemini returned malformed JSON: {exc.msg}") from exc

    if isinstance(decoded, dict):
        decoded = [decoded]
    if not isinstance(decoded, list):
        raise RemoteTransient(f"Gemini returned {type(decoded).__name__} instead of an array")

    items: list[TransformItem] = []
    for position, entry in enumerate(decoded):
        try:
            wire = WireItem.model_validate(entry)
        except ValidationError as exc:
            log.debug("Dropping invalid entry %s from Gemini response: %s", position, exc)
            continue
        items.append(TransformItem(index=wire.index, primary=wire.name, secondary=wire.description))
    return items
