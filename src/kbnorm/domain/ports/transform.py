"""Port for the remote text transformer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(slots=True, frozen=True)
class TransformItem:
    """One entry of a transform request or response.

    ``index`` is the batch-local correlation index: the position of the record
    inside the batch that produced the request.
    """

    index: int
    primary: str
    secondary: str


@runtime_checkable
class TransformClient(Protocol):
    """Rewrites a small ordered batch of text pairs.

    Implementations make a single attempt per call and either return the
    rewritten items (possibly incomplete, unordered or with stray indices) or
    raise one of ``RemoteRateLimited``, ``RemoteTransient`` or ``RemoteFatal``.
    """

    async def transform(self, items: Sequence[TransformItem]) -> Sequence[TransformItem]: ...


__all__ = ["TransformClient", "TransformItem"]
