"""Orchestration of a full rewrite run over one document."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from kbnorm.config.pipeline import PipelineConfig

from .batching import partition
from .dispatch import (
    BatchDispatcher,
    BatchOutcome,
    BatchPhase,
    PermanentBatchFailure,
    Sleep,
    wait_or_cancel,
)
from .walker import DEFAULT_FIELDS, RecordFields, discover

if TYPE_CHECKING:
    from .batching import Batch
    from .document import JsonValue
    from .ports.transform import TransformClient

log = getLogger(__name__)

type ProgressCallback = Callable[[int, int], None]


@dataclass(slots=True)
class OutcomeStatistics:
    """Per-record counters for a run.

    ``succeeded + failed == total`` once a run finishes; a cancelled run leaves the
    remainder in ``pending``.
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False

    @property
    def pending(self) -> int:
        return self.total - self.succeeded - self.failed

    def record(self, outcome: BatchOutcome) -> None:
        self.succeeded += outcome.succeeded
        self.failed += outcome.failed

    def as_dict(self) -> dict[str, int]:
        return {"total": self.total, "succeeded": self.succeeded, "failed": self.failed}


@dataclass(slots=True)
class PipelineResult:
    document: JsonValue
    statistics: OutcomeStatistics
    failures: list[PermanentBatchFailure] = field(default_factory=list[PermanentBatchFailure])
    failed_paths: list[str] = field(default_factory=list[str])

    def record(self, outcome: BatchOutcome) -> None:
        self.statistics.record(outcome)
        if outcome.phase is BatchPhase.CANCELLED:
            self.statistics.cancelled = True
        failure = outcome.permanent_failure()
        if failure is not None:
            self.failures.append(failure)
        self.failed_paths.extend(str(ref) for ref in outcome.failed_refs)


@dataclass(slots=True)
class _ProgressTracker:
    total: int
    callback: ProgressCallback | None
    processed: int = 0

    def advance(self, count: int) -> None:
        self.processed = min(self.total, self.processed + count)
        if self.callback is not None:
            self.callback(self.processed, self.total)


@dataclass(slots=True)
class RewritePipeline:
    """Discover records, batch them and push every batch through the dispatcher.

    Batch failures are soft: they are counted and reported, and the run carries on.
    Only an unusable configuration stops a run, and it is detected before any
    remote call is made.
    """

    client: TransformClient
    config: PipelineConfig = field(default_factory=PipelineConfig)
    fields: RecordFields = DEFAULT_FIELDS
    sleep: Sleep = asyncio.sleep

    async def run(
        self,
        document: JsonValue,
        *,
        on_progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Rewrite the records of ``document`` in place and return the run summary."""

        self.config.validate()
        arena = discover(document, self.fields)
        result = PipelineResult(document=document, statistics=OutcomeStatistics(total=len(arena)))
        log.info("Found %s records to process", len(arena))
        if not arena:
            return result

        batches = partition(arena, self.config.batch_size)
        dispatcher = BatchDispatcher(
            client=self.client,
            policy=self.config.retry_policy(),
            sleep=self.sleep,
            cancel=cancel,
        )
        tracker = _ProgressTracker(total=len(arena), callback=on_progress)
        slots = asyncio.Semaphore(self.config.max_concurrency)

        async def run_batch(batch: Batch) -> None:
            try:
                outcome = await dispatcher.dispatch(batch, arena)
                result.record(outcome)
                if outcome.phase is not BatchPhase.CANCELLED:
                    tracker.advance(len(batch))
            finally:
                slots.release()

        async with asyncio.TaskGroup() as group:
            for batch in batches:
                await slots.acquire()
                if batch.index > 0 and self.config.inter_batch_delay > 0:
                    await wait_or_cancel(self.sleep, self.config.inter_batch_delay, cancel)
                if _is_set(cancel):
                    slots.release()
                    result.statistics.cancelled = True
                    log.warning(
                        "Cancelled before batch %s of %s; no further batches dispatched",
                        batch.index + 1,
                        len(batches),
                    )
                    break
                log.debug(
                    "Dispatching batch %s/%s (%s records)",
                    batch.index + 1,
                    len(batches),
                    len(batch),
                )
                group.create_task(run_batch(batch))

        stats = result.statistics
        log.info(
            "Finished: total=%s, succeeded=%s, failed=%s, pending=%s, failed_batches=%s",
            stats.total,
            stats.succeeded,
            stats.failed,
            stats.pending,
            len(result.failures),
        )
        return result


def _is_set(event: asyncio.Event | None) -> bool:
    return event is not None and event.is_set()


def run_pipeline(
    document: JsonValue,
    *,
    client: TransformClient,
    config: PipelineConfig | None = None,
    fields: RecordFields | None = None,
    on_progress: ProgressCallback | None = None,
    cancel: asyncio.Event | None = None,
) -> PipelineResult:
    """Synchronous entry point running a fresh event loop for one document."""

    pipeline = RewritePipeline(
        client=client,
        config=config or PipelineConfig(),
        fields=fields or DEFAULT_FIELDS,
    )
    return asyncio.run(pipeline.run(document, on_progress=on_progress, cancel=cancel))
