"""JSON document codec and value types."""

from __future__ import annotations

import json
from pathlib import Path

type JsonScalar = str | int | float | bool | None
type JsonValue = JsonScalar | list[JsonValue] | dict[str, JsonValue]
type JsonPath = tuple[str | int, ...]


class ParseError(ValueError):
    """Raised when input is not a well-formed JSON document."""

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source


def parse_document(text: str | bytes, *, source: str | None = None) -> JsonValue:
    """Deserialize ``text`` into a document, raising ``ParseError`` on bad input."""

    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError(f"Document is not valid UTF-8: {exc}", source=source) from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        where = f"{source}: " if source else ""
        raise ParseError(
            f"{where}invalid JSON at line {exc.lineno}, column {exc.colno}: {exc.msg}",
            source=source,
        ) from exc
    except RecursionError as exc:
        raise ParseError("Document is nested too deeply to parse", source=source) from exc


def load_document(path: Path) -> JsonValue:
    if path.suffix.lower() != ".json":
        raise ParseError(f"Expected a .json file, got {path.name}", source=str(path))
    return parse_document(path.read_bytes(), source=str(path))


def dump_document(document: JsonValue, *, indent: int | None = 2) -> str:
    return json.dumps(document, ensure_ascii=False, indent=indent)


def write_document(document: JsonValue, path: Path) -> Path:
    path.write_text(dump_document(document) + "\n", encoding="utf-8")
    return path


def format_path(path: JsonPath) -> str:
    """Render ``path`` in the familiar ``$.items[3].name`` notation."""

    parts = ["$"]
    for segment in path:
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        else:
            parts.append(f".{segment}")
    return "".join(parts)
