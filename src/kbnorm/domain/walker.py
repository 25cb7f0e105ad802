"""Structural discovery of rewritable records inside a document."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from .document import format_path

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .document import JsonPath, JsonValue

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RecordFields:
    """Names of the two string fields that make a mapping a record."""

    primary: str = "name"
    secondary: str = "description"

    def __post_init__(self) -> None:
        if not self.primary or not self.secondary:
            raise ValueError("Record field names must be non-empty")
        if self.primary == self.secondary:
            raise ValueError(f"Record fields must differ, both are {self.primary!r}")


DEFAULT_FIELDS = RecordFields()


@dataclass(slots=True, frozen=True)
class RecordRef:
    """Stable handle to a record: its position in the arena plus where it lives."""

    index: int
    path: JsonPath

    def __str__(self) -> str:
        return format_path(self.path)


@dataclass(slots=True)
class RecordArena:
    """Discovered record nodes in discovery order, addressed by ``RecordRef``.

    Writes always replace both fields together, so a record is either fully
    rewritten or left exactly as it was found.
    """

    fields: RecordFields = DEFAULT_FIELDS
    _nodes: list[dict[str, JsonValue]] = field(default_factory=list[dict[str, "JsonValue"]])
    _refs: list[RecordRef] = field(default_factory=list[RecordRef])

    def __len__(self) -> int:
        return len(self._refs)

    def __iter__(self) -> Iterator[RecordRef]:
        return iter(self._refs)

    @property
    def refs(self) -> tuple[RecordRef, ...]:
        return tuple(self._refs)

    def append(self, node: dict[str, JsonValue], path: JsonPath) -> RecordRef:
        ref = RecordRef(index=len(self._refs), path=path)
        self._nodes.append(node)
        self._refs.append(ref)
        return ref

    def node(self, ref: RecordRef) -> dict[str, JsonValue]:
        return self._nodes[ref.index]

    def read(self, ref: RecordRef) -> tuple[str, str]:
        node = self._nodes[ref.index]
        primary = node[self.fields.primary]
        secondary = node[self.fields.secondary]
        if not isinstance(primary, str) or not isinstance(secondary, str):
            raise TypeError(f"Record at {ref} no longer holds string fields")
        return primary, secondary

    def write(self, ref: RecordRef, primary: str, secondary: str) -> None:
        node = self._nodes[ref.index]
        node[self.fields.primary] = primary
        node[self.fields.secondary] = secondary


def is_record(node: object, fields: RecordFields = DEFAULT_FIELDS) -> bool:
    match node:
        case {fields.primary: str(), fields.secondary: str()}:
            return True
        case _:
            return False


def discover(document: JsonValue, fields: RecordFields = DEFAULT_FIELDS) -> RecordArena:
    """Collect every record in ``document`` in pre-order depth-first order.

    A matching mapping is collected before its own children are searched, so a
    record nested inside another record comes right after its parent. Mapping
    values are visited in insertion order and sequence items by index, which
    makes repeated walks of an unchanged document return the same order.

    The walk keeps an explicit stack instead of recursing, so depth is bounded
    only by memory. Containers reachable through more than one parent (only
    possible for documents built in Python, never for parsed JSON) are visited
    once.
    """

    arena = RecordArena(fields=fields)
    stack: list[tuple[JsonValue, JsonPath]] = [(document, ())]
    seen: set[int] = set()

    while stack:
        node, path = stack.pop()
        children: list[tuple[JsonValue, JsonPath]]
        match node:
            case dict():
                if id(node) in seen:
                    log.debug("Skipping shared container at %s", format_path(path))
                    continue
                seen.add(id(node))
                if is_record(node, fields):
                    arena.append(node, path)
                children = [(value, (*path, key)) for key, value in node.items()]
            case list():
                if id(node) in seen:
                    log.debug("Skipping shared container at %s", format_path(path))
                    continue
                seen.add(id(node))
                children = [(item, (*path, index)) for index, item in enumerate(node)]
            case _:
                continue
        stack.extend(reversed(children))

    return arena
