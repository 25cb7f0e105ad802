"""Record discovery, batching, dispatch and orchestration.

The domain layer never performs I/O of its own: the remote transformer is
reached through the ``TransformClient`` port and all waiting goes through an
injectable ``sleep`` so timing can be scripted in tests.
"""

from __future__ import annotations

from .batching import Batch, partition
from .dispatch import (
    BatchDispatcher,
    BatchOutcome,
    BatchPhase,
    DispatchState,
    PermanentBatchFailure,
    transition,
)
from .document import JsonValue, ParseError, dump_document, load_document, parse_document
from .errors import RemoteError, RemoteFatal, RemoteRateLimited, RemoteTransient
from .pipeline import (
    OutcomeStatistics,
    PipelineResult,
    ProgressCallback,
    RewritePipeline,
    run_pipeline,
)
from .walker import DEFAULT_FIELDS, RecordArena, RecordFields, RecordRef, discover

__all__ = [
    "DEFAULT_FIELDS",
    "Batch",
    "BatchDispatcher",
    "BatchOutcome",
    "BatchPhase",
    "DispatchState",
    "JsonValue",
    "OutcomeStatistics",
    "ParseError",
    "PermanentBatchFailure",
    "PipelineResult",
    "ProgressCallback",
    "RecordArena",
    "RecordFields",
    "RecordRef",
    "RemoteError",
    "RemoteFatal",
    "RemoteRateLimited",
    "RemoteTransient",
    "RewritePipeline",
    "discover",
    "dump_document",
    "load_document",
    "parse_document",
    "partition",
    "run_pipeline",
    "transition",
]
