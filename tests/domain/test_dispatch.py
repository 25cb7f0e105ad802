from __future__ import annotations

import asyncio

import pytest

from kbnorm.config.pipeline import RetryPolicy
from kbnorm.domain.batching import Batch, partition
from kbnorm.domain.dispatch import (
    BatchDispatcher,
    BatchOutcome,
    BatchPhase,
    CallFailed,
    CallRemote,
    CallSucceeded,
    Cancelled,
    Dispatched,
    DispatchEvent,
    DispatchState,
    InvalidTransitionError,
    Reconcile,
    Wait,
    transition,
    wait_or_cancel,
)
from kbnorm.domain.document import JsonValue
from kbnorm.domain.errors import RemoteError, RemoteFatal, RemoteRateLimited, RemoteTransient
from kbnorm.domain.ports.transform import TransformItem
from kbnorm.domain.walker import RecordArena, discover
from tests.helpers.transform import (
    CancellingSleep,
    RecordingSleep,
    ScriptedTransformClient,
    upper,
)

POLICY = RetryPolicy(max_attempts=3, base_backoff=2.0, rate_limit_backoff_multiplier=2.0)


def _item(index: int, primary: str = "p", secondary: str = "s") -> TransformItem:
    return TransformItem(index=index, primary=primary, secondary=secondary)


def _attempting(size: int = 2, attempt: int = 1) -> DispatchState:
    return DispatchState(size=size, phase=BatchPhase.ATTEMPTING, attempt=attempt)


# transition


def test_dispatch_starts_first_attempt() -> None:
    state, effects = transition(DispatchState(size=2), Dispatched(), POLICY)

    assert state.phase is BatchPhase.ATTEMPTING
    assert state.attempt == 1
    assert effects == (CallRemote(attempt=1),)


def test_complete_result_succeeds() -> None:
    items = (_item(1, "b"), _item(0, "a"))

    state, effects = transition(_attempting(), CallSucceeded(items=items), POLICY)

    assert state.phase is BatchPhase.SUCCEEDED
    assert (state.succeeded, state.failed) == (2, 0)
    assert effects == (Reconcile(items=(_item(0, "a"), _item(1, "b"))),)


def test_missing_indices_make_a_partial_failure() -> None:
    state, effects = transition(_attempting(size=3), CallSucceeded(items=(_item(2),)), POLICY)

    assert state.phase is BatchPhase.PARTIALLY_FAILED
    assert (state.succeeded, state.failed) == (1, 2)
    assert state.missing == (0, 1)
    assert effects == (Reconcile(items=(_item(2),)),)


def test_empty_result_fails_every_record_without_reconciling() -> None:
    state, effects = transition(_attempting(size=2), CallSucceeded(items=()), POLICY)

    assert state.phase is BatchPhase.PARTIALLY_FAILED
    assert (state.succeeded, state.failed) == (0, 2)
    assert effects == ()


def test_out_of_range_indices_are_ignored() -> None:
    items = (_item(0), _item(1), _item(2, "stray"), _item(-1, "negative"))

    state, effects = transition(_attempting(size=2), CallSucceeded(items=items), POLICY)

    assert state.phase is BatchPhase.SUCCEEDED
    assert effects == (Reconcile(items=(_item(0), _item(1))),)


def test_repeated_index_keeps_the_last_result() -> None:
    items = (_item(0, "first"), _item(0, "second"))

    _, effects = transition(_attempting(size=1), CallSucceeded(items=items), POLICY)

    assert effects == (Reconcile(items=(_item(0, "second"),)),)


@pytest.mark.parametrize(
    ("attempt", "error", "expected_delay"),
    [
        (1, RemoteTransient("boom"), 2.0),
        (2, RemoteTransient("boom"), 4.0),
        (1, RemoteRateLimited("slow down"), 4.0),
        (2, RemoteRateLimited("slow down"), 8.0),
        (1, RemoteRateLimited("slow down", retry_after=30.0), 30.0),
        (1, RemoteRateLimited("slow down", retry_after=1.0), 4.0),
        (1, RemoteRateLimited("slow down", retry_after=86400.0), 60.0),
    ],
)
def test_retryable_failure_waits_then_retries(
    attempt: int,
    error: RemoteError,
    expected_delay: float,
) -> None:
    state, effects = transition(_attempting(attempt=attempt), CallFailed(error=error), POLICY)

    assert state.phase is BatchPhase.ATTEMPTING
    assert state.attempt == attempt + 1
    assert effects == (Wait(seconds=expected_delay), CallRemote(attempt=attempt + 1))


def test_exhausted_budget_fails_permanently() -> None:
    state, effects = transition(
        _attempting(size=2, attempt=3),
        CallFailed(error=RemoteTransient("still down")),
        POLICY,
    )

    assert state.phase is BatchPhase.PERMANENTLY_FAILED
    assert (state.succeeded, state.failed) == (0, 2)
    assert state.missing == (0, 1)
    assert state.reason is not None
    assert "3 attempts" in state.reason
    assert effects == ()


def test_fatal_failure_short_circuits_with_budget_left() -> None:
    state, effects = transition(
        _attempting(attempt=1), CallFailed(error=RemoteFatal("bad")), POLICY
    )

    assert state.phase is BatchPhase.PERMANENTLY_FAILED
    assert state.attempt == 1
    assert effects == ()


def test_cancel_while_waiting_leaves_records_pending() -> None:
    state, effects = transition(_attempting(size=2, attempt=2), Cancelled(), POLICY)

    assert state.phase is BatchPhase.CANCELLED
    assert state.phase.terminal
    assert (state.succeeded, state.failed, state.missing) == (0, 0, ())
    assert state.attempt == 1
    assert effects == ()


@pytest.mark.parametrize(
    ("state", "event"),
    [
        (DispatchState(size=1), CallSucceeded(items=())),
        (_attempting(), Dispatched()),
        (DispatchState(size=1), Cancelled()),
        (DispatchState(size=1, phase=BatchPhase.SUCCEEDED, attempt=1), CallSucceeded(items=())),
    ],
)
def test_unexpected_events_are_rejected(state: DispatchState, event: DispatchEvent) -> None:
    with pytest.raises(InvalidTransitionError):
        transition(state, event, POLICY)


# BatchDispatcher


def _single_batch(count: int) -> tuple[JsonValue, RecordArena, Batch]:
    document: JsonValue = [{"name": f"n{i}", "description": f"d{i}"} for i in range(count)]
    arena = discover(document)
    (batch,) = partition(arena, count)
    return document, arena, batch


def _dispatch(
    client: ScriptedTransformClient,
    sleep: RecordingSleep,
    batch: Batch,
    arena: RecordArena,
) -> BatchOutcome:
    dispatcher = BatchDispatcher(client=client, policy=POLICY, sleep=sleep)
    return asyncio.run(dispatcher.dispatch(batch, arena))


def test_rate_limited_twice_then_success(recording_sleep: RecordingSleep) -> None:
    document, arena, batch = _single_batch(2)
    client = ScriptedTransformClient(
        script=[RemoteRateLimited("429"), RemoteRateLimited("429"), upper]
    )

    outcome = _dispatch(client, recording_sleep, batch, arena)

    assert outcome.phase is BatchPhase.SUCCEEDED
    assert (outcome.succeeded, outcome.failed, outcome.attempts) == (2, 0, 3)
    assert len(client.calls) == 3
    assert recording_sleep.delays == [4.0, 8.0]
    assert document == [
        {"name": "N0", "description": "D0"},
        {"name": "N1", "description": "D1"},
    ]


def test_server_retry_after_is_capped(recording_sleep: RecordingSleep) -> None:
    _, arena, batch = _single_batch(1)
    client = ScriptedTransformClient(
        script=[RemoteRateLimited("429", retry_after=86400.0)] * 3
    )

    outcome = _dispatch(client, recording_sleep, batch, arena)

    assert outcome.phase is BatchPhase.PERMANENTLY_FAILED
    assert recording_sleep.delays == [60.0, 60.0]


def test_fatal_error_fails_immediately(recording_sleep: RecordingSleep) -> None:
    document, arena, batch = _single_batch(2)
    client = ScriptedTransformClient(script=[RemoteFatal("400 bad request")])

    outcome = _dispatch(client, recording_sleep, batch, arena)

    assert outcome.phase is BatchPhase.PERMANENTLY_FAILED
    assert (outcome.succeeded, outcome.failed, outcome.attempts) == (0, 2, 1)
    assert len(client.calls) == 1
    assert recording_sleep.delays == []
    assert document == [
        {"name": "n0", "description": "d0"},
        {"name": "n1", "description": "d1"},
    ]
    failure = outcome.permanent_failure()
    assert failure is not None
    assert failure.paths == ("$[0]", "$[1]")


def test_exhausted_retries_leave_records_untouched(recording_sleep: RecordingSleep) -> None:
    document, arena, batch = _single_batch(1)
    client = ScriptedTransformClient(script=[RemoteTransient("timeout")] * 3)

    outcome = _dispatch(client, recording_sleep, batch, arena)

    assert outcome.phase is BatchPhase.PERMANENTLY_FAILED
    assert outcome.attempts == 3
    assert len(client.calls) == 3
    assert recording_sleep.delays == [2.0, 4.0]
    assert document == [{"name": "n0", "description": "d0"}]


def test_partial_result_rewrites_only_returned_records(recording_sleep: RecordingSleep) -> None:
    document, arena, batch = _single_batch(3)
    client = ScriptedTransformClient(
        script=[[_item(0, "A", "a-desc"), _item(2, "C", "c-desc"), _item(9, "X", "x")]]
    )

    outcome = _dispatch(client, recording_sleep, batch, arena)

    assert outcome.phase is BatchPhase.PARTIALLY_FAILED
    assert (outcome.succeeded, outcome.failed) == (2, 1)
    assert [str(ref) for ref in outcome.failed_refs] == ["$[1]"]
    assert outcome.permanent_failure() is None
    assert len(client.calls) == 1
    assert document == [
        {"name": "A", "description": "a-desc"},
        {"name": "n1", "description": "d1"},
        {"name": "C", "description": "c-desc"},
    ]


def test_each_record_is_either_fully_rewritten_or_untouched(
    recording_sleep: RecordingSleep,
) -> None:
    document, arena, batch = _single_batch(4)
    originals = [arena.read(ref) for ref in arena]
    client = ScriptedTransformClient(
        script=[RemoteTransient("flaky"), [_item(1, "P1", "S1"), _item(3, "P3", "S3")]]
    )

    _dispatch(client, recording_sleep, batch, arena)

    rewritten = {1: ("P1", "S1"), 3: ("P3", "S3")}
    for ref in arena:
        assert arena.read(ref) in (originals[ref.index], rewritten.get(ref.index))
    assert isinstance(document, list)


def test_payload_is_identical_across_retries(recording_sleep: RecordingSleep) -> None:
    _, arena, batch = _single_batch(2)
    client = ScriptedTransformClient(script=[RemoteTransient("again")])

    _dispatch(client, recording_sleep, batch, arena)

    assert client.calls[0] == client.calls[1]
    assert [item.index for item in client.calls[0]] == [0, 1]


def test_unclassified_errors_propagate(recording_sleep: RecordingSleep) -> None:
    _, arena, batch = _single_batch(1)
    client = ScriptedTransformClient(script=[KeyError("bug")])

    with pytest.raises(KeyError):
        _dispatch(client, recording_sleep, batch, arena)


def test_cancel_during_backoff_skips_the_retry() -> None:
    document, arena, batch = _single_batch(2)
    cancel = asyncio.Event()
    sleep = CancellingSleep(cancel)
    client = ScriptedTransformClient(script=[RemoteTransient("blip")])
    dispatcher = BatchDispatcher(client=client, policy=POLICY, sleep=sleep, cancel=cancel)

    outcome = asyncio.run(dispatcher.dispatch(batch, arena))

    assert outcome.phase is BatchPhase.CANCELLED
    assert (outcome.succeeded, outcome.failed, outcome.attempts) == (0, 0, 1)
    assert outcome.failed_refs == ()
    assert outcome.permanent_failure() is None
    assert len(client.calls) == 1
    assert sleep.delays == [2.0]
    assert document == [
        {"name": "n0", "description": "d0"},
        {"name": "n1", "description": "d1"},
    ]


def test_wait_or_cancel_plain_sleep_without_event(recording_sleep: RecordingSleep) -> None:
    cancelled = asyncio.run(wait_or_cancel(recording_sleep, 3.0, None))

    assert not cancelled
    assert recording_sleep.delays == [3.0]


def test_wait_or_cancel_returns_at_once_when_already_set(
    recording_sleep: RecordingSleep,
) -> None:
    cancel = asyncio.Event()
    cancel.set()

    cancelled = asyncio.run(wait_or_cancel(recording_sleep, 3.0, cancel))

    assert cancelled
    assert recording_sleep.delays == []


def test_wait_or_cancel_completes_when_sleep_ends_first(recording_sleep: RecordingSleep) -> None:
    cancel = asyncio.Event()

    cancelled = asyncio.run(wait_or_cancel(recording_sleep, 3.0, cancel))

    assert not cancelled
    assert recording_sleep.delays == [3.0]
