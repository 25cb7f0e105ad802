"""Driving a single batch through the transform client.

The retry loop is split in two. ``transition`` is a pure function from
``(state, event)`` to ``(state, effects)`` and holds every decision: when to
retry, how long to wait, which results to keep and how the batch ends.
``BatchDispatcher`` only performs the effects it is handed (call the client,
sleep, write results into the arena) and feeds the outcome of each call back in
as the next event.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from kbnorm.config.pipeline import RetryPolicy

from .errors import RemoteError, RemoteRateLimited

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from .batching import Batch
    from .ports.transform import TransformClient, TransformItem
    from .walker import RecordArena, RecordRef

log = getLogger(__name__)

type Sleep = Callable[[float], Awaitable[None]]


class BatchPhase(StrEnum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    PERMANENTLY_FAILED = "permanently_failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_PHASES


_TERMINAL_PHASES = frozenset(
    {
        BatchPhase.SUCCEEDED,
        BatchPhase.PARTIALLY_FAILED,
        BatchPhase.PERMANENTLY_FAILED,
        BatchPhase.CANCELLED,
    }
)


@dataclass(slots=True, frozen=True)
class DispatchState:
    size: int
    phase: BatchPhase = BatchPhase.PENDING
    attempt: int = 0
    succeeded: int = 0
    failed: int = 0
    missing: tuple[int, ...] = ()
    reason: str | None = None


# Events


@dataclass(slots=True, frozen=True)
class Dispatched:
    pass


@dataclass(slots=True, frozen=True)
class CallSucceeded:
    items: tuple[TransformItem, ...]


@dataclass(slots=True, frozen=True)
class CallFailed:
    error: RemoteError


@dataclass(slots=True, frozen=True)
class Cancelled:
    """The run was cancelled while the batch waited to retry."""


type DispatchEvent = Dispatched | CallSucceeded | CallFailed | Cancelled


# Effects


@dataclass(slots=True, frozen=True)
class CallRemote:
    attempt: int


@dataclass(slots=True, frozen=True)
class Wait:
    seconds: float


@dataclass(slots=True, frozen=True)
class Reconcile:
    items: tuple[TransformItem, ...]


type DispatchEffect = CallRemote | Wait | Reconcile


class InvalidTransitionError(RuntimeError):
    """Raised when an event arrives in a phase that cannot accept it."""


async def wait_or_cancel(sleep: Sleep, seconds: float, cancel: asyncio.Event | None) -> bool:
    """Sleep for ``seconds`` unless ``cancel`` is set first. Returns whether it was."""

    if cancel is None:
        await sleep(seconds)
        return False
    if cancel.is_set():
        return True

    sleeper = asyncio.ensure_future(sleep(seconds))
    watcher = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        sleeper.cancel()
        watcher.cancel()
    if sleeper in done:
        sleeper.result()
    return cancel.is_set()


def select_results(items: Iterable[TransformItem], size: int) -> tuple[TransformItem, ...]:
    """Keep in-range results, one per index (the last one wins), ordered by index."""

    by_index: dict[int, TransformItem] = {}
    for item in items:
        if 0 <= item.index < size:
            by_index[item.index] = item
        else:
            log.debug("Ignoring out-of-range result index %s (batch size %s)", item.index, size)
    return tuple(by_index[index] for index in sorted(by_index))


def transition(
    state: DispatchState,
    event: DispatchEvent,
    policy: RetryPolicy,
) -> tuple[DispatchState, tuple[DispatchEffect, ...]]:
    match state.phase, event:
        case BatchPhase.PENDING, Dispatched():
            return replace(state, phase=BatchPhase.ATTEMPTING, attempt=1), (CallRemote(attempt=1),)

        case BatchPhase.ATTEMPTING, CallSucceeded(items=items):
            accepted = select_results(items, state.size)
            present = {item.index for item in accepted}
            missing = tuple(index for index in range(state.size) if index not in present)
            effects: tuple[DispatchEffect, ...] = (Reconcile(items=accepted),) if accepted else ()
            if not missing:
                return replace(state, phase=BatchPhase.SUCCEEDED, succeeded=state.size), effects
            return (
                replace(
                    state,
                    phase=BatchPhase.PARTIALLY_FAILED,
                    succeeded=len(accepted),
                    failed=len(missing),
                    missing=missing,
                    reason=f"{len(missing)} of {state.size} results missing from response",
                ),
                effects,
            )

        case BatchPhase.ATTEMPTING, CallFailed(error=error):
            if not error.retryable:
                return _give_up(state, f"non-retryable error: {error}"), ()
            if state.attempt >= policy.max_attempts:
                return _give_up(state, f"gave up after {state.attempt} attempts: {error}"), ()
            delay = policy.backoff_delay(
                state.attempt,
                rate_limited=isinstance(error, RemoteRateLimited),
                retry_after=error.retry_after if isinstance(error, RemoteRateLimited) else None,
            )
            next_attempt = state.attempt + 1
            return (
                replace(state, attempt=next_attempt, reason=str(error)),
                (Wait(seconds=delay), CallRemote(attempt=next_attempt)),
            )

        case BatchPhase.ATTEMPTING, Cancelled():
            # the pending attempt never ran; nothing was written, so records stay pending
            return (
                replace(
                    state,
                    phase=BatchPhase.CANCELLED,
                    attempt=state.attempt - 1,
                    reason="cancelled before retry",
                ),
                (),
            )

        case _:
            raise InvalidTransitionError(
                f"Cannot apply {type(event).__name__} to a batch in phase {state.phase}"
            )


def _give_up(state: DispatchState, reason: str) -> DispatchState:
    return replace(
        state,
        phase=BatchPhase.PERMANENTLY_FAILED,
        succeeded=0,
        failed=state.size,
        missing=tuple(range(state.size)),
        reason=reason,
    )


@dataclass(slots=True, frozen=True)
class PermanentBatchFailure:
    """A batch that exhausted its attempts or hit a fatal error; its records are unchanged."""

    batch_index: int
    attempts: int
    reason: str
    paths: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class BatchOutcome:
    batch: Batch
    phase: BatchPhase
    attempts: int
    succeeded: int
    failed: int
    failed_refs: tuple[RecordRef, ...] = ()
    reason: str | None = None

    @property
    def size(self) -> int:
        return len(self.batch)

    @classmethod
    def from_state(cls, batch: Batch, state: DispatchState) -> BatchOutcome:
        return cls(
            batch=batch,
            phase=state.phase,
            attempts=state.attempt,
            succeeded=state.succeeded,
            failed=state.failed,
            failed_refs=tuple(batch.refs[index] for index in state.missing),
            reason=state.reason if state.phase is not BatchPhase.SUCCEEDED else None,
        )

    def permanent_failure(self) -> PermanentBatchFailure | None:
        if self.phase is not BatchPhase.PERMANENTLY_FAILED:
            return None
        return PermanentBatchFailure(
            batch_index=self.batch.index,
            attempts=self.attempts,
            reason=self.reason or "unknown",
            paths=tuple(str(ref) for ref in self.failed_refs),
        )


@dataclass(slots=True)
class BatchDispatcher:
    client: TransformClient
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleep: Sleep = asyncio.sleep
    cancel: asyncio.Event | None = None

    async def dispatch(self, batch: Batch, arena: RecordArena) -> BatchOutcome:
        """Run ``batch`` to a terminal phase, writing accepted results into ``arena``."""

        payload = batch.payload(arena)
        state, effects = transition(DispatchState(size=len(batch)), Dispatched(), self.policy)

        while True:
            event: DispatchEvent | None = None
            for effect in effects:
                match effect:
                    case Wait(seconds=seconds):
                        log.info(
                            "Retrying batch %s (attempt %s/%s) in %.1fs",
                            batch.index,
                            state.attempt,
                            self.policy.max_attempts,
                            seconds,
                        )
                        if await wait_or_cancel(self.sleep, seconds, self.cancel):
                            log.info("Batch %s cancelled while waiting to retry", batch.index)
                            event = Cancelled()
                            break
                    case CallRemote(attempt=attempt):
                        event = await self._call(batch, payload, attempt)
                    case Reconcile(items=items):
                        _reconcile(batch, arena, items)
            if state.phase.terminal:
                break
            if event is None:
                raise InvalidTransitionError(f"Batch {batch.index} stalled in phase {state.phase}")
            state, effects = transition(state, event, self.policy)

        outcome = BatchOutcome.from_state(batch, state)
        if outcome.phase is BatchPhase.PERMANENTLY_FAILED:
            log.error("Batch %s failed permanently: %s", batch.index, outcome.reason)
        elif outcome.phase is BatchPhase.PARTIALLY_FAILED:
            log.warning(
                "Batch %s partially failed (%s); left unchanged: %s",
                batch.index,
                outcome.reason,
                ", ".join(str(ref) for ref in outcome.failed_refs),
            )
        return outcome

    async def _call(
        self,
        batch: Batch,
        payload: Sequence[TransformItem],
        attempt: int,
    ) -> DispatchEvent:
        try:
            items = await self.client.transform(payload)
        except RemoteError as exc:
            log.warning(
                "Batch %s attempt %s/%s failed: %s: %s",
                batch.index,
                attempt,
                self.policy.max_attempts,
                type(exc).__name__,
                exc,
            )
            return CallFailed(error=exc)
        return CallSucceeded(items=tuple(items))


def _reconcile(batch: Batch, arena: RecordArena, items: Iterable[TransformItem]) -> None:
    for item in items:
        arena.write(batch.refs[item.index], item.primary, item.secondary)
