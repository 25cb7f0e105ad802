from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from kbnorm.app import normalize_file_async, scan_document
from kbnorm.config import ConfigurationError, PipelineConfig, configure_logging, get_pipeline_config
from kbnorm.domain.document import ParseError, load_document
from kbnorm.domain.walker import RecordFields

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Normalise name/description fields of a JSON knowledge base with Gemini"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    normalize = subparsers.add_parser("normalize", help="Rewrite records through Gemini")
    normalize.add_argument("input", type=Path, help="JSON file to normalise")
    normalize.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Where to write the result (default: optimized_<input name> beside the input)",
    )
    normalize.add_argument(
        "--batch-size",
        type=int,
        help="Records per Gemini request (defaults to config)",
    )
    normalize.add_argument(
        "--max-attempts",
        type=int,
        help="Attempts per batch before giving up (defaults to config)",
    )
    normalize.add_argument(
        "--max-backoff",
        type=float,
        help="Upper bound in seconds for any single retry wait (defaults to config)",
    )
    normalize.add_argument(
        "--inter-batch-delay",
        type=float,
        help="Seconds to pause before each batch after the first (defaults to config)",
    )
    normalize.add_argument(
        "--max-concurrency",
        type=int,
        help="Batches allowed in flight at once (defaults to config)",
    )
    _add_field_arguments(normalize)

    scan = subparsers.add_parser("scan", help="List records that would be rewritten")
    scan.add_argument("input", type=Path, help="JSON file to inspect")
    _add_field_arguments(scan)

    return parser.parse_args(list(argv))


def _add_field_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--primary-field",
        default=RecordFields().primary,
        help="First string field a record must carry (default: %(default)s)",
    )
    parser.add_argument(
        "--secondary-field",
        default=RecordFields().secondary,
        help="Second string field a record must carry (default: %(default)s)",
    )


def _build_pipeline_config(args: argparse.Namespace) -> PipelineConfig:
    config = get_pipeline_config()
    overrides = {
        name: value
        for name, value in (
            ("batch_size", args.batch_size),
            ("max_attempts", args.max_attempts),
            ("max_backoff", args.max_backoff),
            ("inter_batch_delay", args.inter_batch_delay),
            ("max_concurrency", args.max_concurrency),
        )
        if value is not None
    }
    if overrides:
        config = replace(config, **overrides)
    config.validate()
    return config


def _log_progress(processed: int, total: int) -> None:
    percentage = round(processed / total * 100) if total else 0
    log.info("Processed %s/%s records (%s%%)", processed, total, percentage)


async def _run_normalize(
    args: argparse.Namespace,
    config: PipelineConfig,
    fields: RecordFields,
) -> int:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_cancel(_signal_received: int, _frame: FrameType | None) -> None:
        log.warning("Interrupt received; finishing in-flight batches before stopping")
        loop.call_soon_threadsafe(cancel.set)

    previous = signal(SIGINT, request_cancel)
    try:
        outcome = await normalize_file_async(
            args.input,
            args.output,
            config=config,
            fields=fields,
            on_progress=_log_progress,
            cancel=cancel,
        )
    finally:
        signal(SIGINT, previous)

    stats = outcome.result.statistics
    log.info(
        "Normalization finished: total=%s, succeeded=%s, failed=%s, output=%s",
        stats.total,
        stats.succeeded,
        stats.failed,
        outcome.output_path,
    )
    for path in outcome.result.failed_paths:
        log.warning("Left unchanged: %s", path)
    if stats.cancelled:
        log.warning("Run was cancelled; %s records were not processed", stats.pending)
        return 1
    return 1 if stats.failed else 0


def _run_scan(args: argparse.Namespace, fields: RecordFields) -> int:
    arena = scan_document(load_document(args.input), fields=fields)
    for ref in arena:
        log.info("%s", ref)
    log.info("Found %s records in %s", len(arena), args.input)
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        fields = RecordFields(
            primary=parsed_args.primary_field,
            secondary=parsed_args.secondary_field,
        )
        config = _build_pipeline_config(parsed_args) if parsed_args.command == "normalize" else None
    except (ValueError, ConfigurationError):
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        if parsed_args.command == "normalize" and config is not None:
            exit_code = asyncio.run(_run_normalize(parsed_args, config, fields))
        elif parsed_args.command == "scan":
            exit_code = _run_scan(parsed_args, fields)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
    except (ConfigurationError, ParseError) as exc:
        log.error("%s", exc)  # noqa: TRY400
        sys.exit(2)
    except Exception:
        log.exception("Fatal error during normalization")
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
