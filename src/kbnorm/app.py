"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from copy import deepcopy
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from kbnorm.adapters.gemini import GeminiTransformClient
from kbnorm.config import get_gemini_config, get_pipeline_config
from kbnorm.domain.document import load_document, write_document
from kbnorm.domain.pipeline import PipelineResult, ProgressCallback, RewritePipeline
from kbnorm.domain.walker import DEFAULT_FIELDS, RecordArena, RecordFields, discover

if TYPE_CHECKING:
    from pathlib import Path

    from kbnorm.config import PipelineConfig
    from kbnorm.domain.document import JsonValue
    from kbnorm.domain.ports.transform import TransformClient


log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class NormalizeFileResult:
    result: PipelineResult
    output_path: Path


def scan_document(document: JsonValue, *, fields: RecordFields | None = None) -> RecordArena:
    """Discover records without contacting the remote transformer."""

    return discover(document, fields or DEFAULT_FIELDS)


async def normalize_document_async(
    document: JsonValue,
    *,
    client: TransformClient | None = None,
    config: PipelineConfig | None = None,
    fields: RecordFields | None = None,
    on_progress: ProgressCallback | None = None,
    cancel: asyncio.Event | None = None,
    copy: bool = True,
) -> PipelineResult:
    """Rewrite every record of ``document`` using ``client`` or the configured Gemini model.

    With ``copy`` (the default) the caller's document is left untouched and the
    rewritten copy is returned in the result.
    """

    effective_config = config or get_pipeline_config()
    effective_config.validate()
    working = deepcopy(document) if copy else document
    log.info(
        "Starting normalization: batch_size=%s, max_attempts=%s, max_concurrency=%s",
        effective_config.batch_size,
        effective_config.max_attempts,
        effective_config.max_concurrency,
    )

    if client is not None:
        pipeline = RewritePipeline(
            client=client,
            config=effective_config,
            fields=fields or DEFAULT_FIELDS,
        )
        return await pipeline.run(working, on_progress=on_progress, cancel=cancel)

    gemini_config = get_gemini_config()
    log.info("Using Gemini model %s", gemini_config.model)
    async with GeminiTransformClient(config=gemini_config) as gemini:
        pipeline = RewritePipeline(
            client=gemini,
            config=effective_config,
            fields=fields or DEFAULT_FIELDS,
        )
        return await pipeline.run(working, on_progress=on_progress, cancel=cancel)


def normalize_document(
    document: JsonValue,
    *,
    client: TransformClient | None = None,
    config: PipelineConfig | None = None,
    fields: RecordFields | None = None,
    on_progress: ProgressCallback | None = None,
    cancel: asyncio.Event | None = None,
    copy: bool = True,
) -> PipelineResult:
    return asyncio.run(
        normalize_document_async(
            document,
            client=client,
            config=config,
            fields=fields,
            on_progress=on_progress,
            cancel=cancel,
            copy=copy,
        )
    )


def default_output_path(input_path: Path) -> Path:
    return input_path.with_name(f"optimized_{input_path.name}")


async def normalize_file_async(
    input_path: Path,
    output_path: Path | None = None,
    *,
    client: TransformClient | None = None,
    config: PipelineConfig | None = None,
    fields: RecordFields | None = None,
    on_progress: ProgressCallback | None = None,
    cancel: asyncio.Event | None = None,
) -> NormalizeFileResult:
    """Normalize a JSON file and write the result next to it (or to ``output_path``)."""

    document = load_document(input_path)
    result = await normalize_document_async(
        document,
        client=client,
        config=config,
        fields=fields,
        on_progress=on_progress,
        cancel=cancel,
        copy=False,
    )
    destination = output_path or default_output_path(input_path)
    write_document(result.document, destination)
    log.info("Wrote %s", destination)
    return NormalizeFileResult(result=result, output_path=destination)


def normalize_file(
    input_path: Path,
    output_path: Path | None = None,
    *,
    client: TransformClient | None = None,
    config: PipelineConfig | None = None,
    fields: RecordFields | None = None,
    on_progress: ProgressCallback | None = None,
) -> NormalizeFileResult:
    return asyncio.run(
        normalize_file_async(
            input_path,
            output_path,
            client=client,
            config=config,
            fields=fields,
            on_progress=on_progress,
        )
    )
