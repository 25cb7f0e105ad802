"""Partitioning of discovered records into ordered batches."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import batched
from typing import TYPE_CHECKING

from .ports.transform import TransformItem

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .walker import RecordArena, RecordRef


@dataclass(slots=True, frozen=True)
class Batch:
    """Ordered window of record references; positions double as correlation indices."""

    index: int
    refs: tuple[RecordRef, ...]

    def __len__(self) -> int:
        return len(self.refs)

    def payload(self, arena: RecordArena) -> list[TransformItem]:
        items: list[TransformItem] = []
        for position, ref in enumerate(self.refs):
            primary, secondary = arena.read(ref)
            items.append(TransformItem(index=position, primary=primary, secondary=secondary))
        return items


def partition(records: Iterable[RecordRef], batch_size: int) -> list[Batch]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1 (got {batch_size})")
    return [
        Batch(index=number, refs=tuple(chunk))
        for number, chunk in enumerate(batched(records, batch_size))
    ]
