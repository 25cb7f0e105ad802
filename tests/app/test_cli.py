from __future__ import annotations

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from kbnorm.app import NormalizeFileResult
from kbnorm.config import PipelineConfig
from kbnorm.domain.document import ParseError
from kbnorm.domain.pipeline import OutcomeStatistics, PipelineResult
from kbnorm.domain.walker import RecordFields
from kbnorm.ui import cli as cli_module

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from kbnorm.domain.document import JsonValue

type FakeNormalize = Callable[..., Coroutine[object, object, NormalizeFileResult]]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "KBNORM_BATCH_SIZE",
        "KBNORM_MAX_ATTEMPTS",
        "KBNORM_BASE_BACKOFF",
        "KBNORM_RATE_LIMIT_MULTIPLIER",
        "KBNORM_MAX_BACKOFF",
        "KBNORM_INTER_BATCH_DELAY",
        "KBNORM_MAX_CONCURRENCY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli_module, "load_dotenv", lambda: False)


def _fake_normalize(
    captured: dict[str, object],
    statistics: OutcomeStatistics | None = None,
    failed_paths: list[str] | None = None,
) -> FakeNormalize:
    async def fake(
        input_path: Path,
        output_path: Path | None,
        **kwargs: object,
    ) -> NormalizeFileResult:
        captured.update(kwargs, input_path=input_path, output_path=output_path)
        stats = statistics or OutcomeStatistics(total=2, succeeded=2)
        result = PipelineResult(document=[], statistics=stats, failed_paths=failed_paths or [])
        return NormalizeFileResult(result=result, output_path=Path("optimized_kb.json"))

    return fake


def test_normalize_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(cli_module, "normalize_file_async", _fake_normalize(captured))

    cli_module.main(["normalize", "kb.json"])

    assert captured["input_path"] == Path("kb.json")
    assert captured["output_path"] is None
    assert captured["config"] == PipelineConfig()
    assert captured["fields"] == RecordFields()
    assert captured["cancel"] is not None


def test_normalize_with_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(cli_module, "normalize_file_async", _fake_normalize(captured))

    cli_module.main(
        [
            "normalize",
            "kb.json",
            "-o",
            "out.json",
            "--batch-size",
            "5",
            "--max-attempts",
            "4",
            "--max-backoff",
            "30",
            "--inter-batch-delay",
            "0",
            "--max-concurrency",
            "2",
            "--primary-field",
            "title",
            "--secondary-field",
            "body",
        ]
    )

    assert captured["output_path"] == Path("out.json")
    assert captured["config"] == PipelineConfig(
        batch_size=5,
        max_attempts=4,
        max_backoff=30.0,
        inter_batch_delay=0.0,
        max_concurrency=2,
    )
    assert captured["fields"] == RecordFields(primary="title", secondary="body")


@pytest.mark.parametrize(
    "argv",
    [
        ["normalize", "kb.json", "--batch-size", "0"],
        ["normalize", "kb.json", "--max-concurrency", "0"],
        ["normalize", "kb.json", "--primary-field", "description"],
        ["scan", "kb.json", "--secondary-field", ""],
    ],
)
def test_invalid_arguments_exit_before_running(
    argv: list[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(cli_module, "normalize_file_async", _fake_normalize(captured))

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(argv)

    assert excinfo.value.code == 2
    assert captured == {}


def test_failed_records_exit_nonzero(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    fake = _fake_normalize(
        {},
        OutcomeStatistics(total=2, succeeded=1, failed=1),
        failed_paths=["$.chapters[0]"],
    )
    monkeypatch.setattr(cli_module, "normalize_file_async", fake)

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["normalize", "kb.json"])

    assert excinfo.value.code == 1
    assert "Left unchanged: $.chapters[0]" in caplog.text


def test_cancelled_run_exits_nonzero(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _fake_normalize({}, OutcomeStatistics(total=4, succeeded=2, cancelled=True))
    monkeypatch.setattr(cli_module, "normalize_file_async", fake)

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["normalize", "kb.json"])

    assert excinfo.value.code == 1


def test_unreadable_input_exits_with_usage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken(*_: object, **__: object) -> NormalizeFileResult:
        raise ParseError("kb.json: invalid JSON", source="kb.json")

    monkeypatch.setattr(cli_module, "normalize_file_async", broken)

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["normalize", "kb.json"])

    assert excinfo.value.code == 2


def test_unexpected_error_exits_with_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken(*_: object, **__: object) -> NormalizeFileResult:
        raise RuntimeError("boom")

    monkeypatch.setattr(cli_module, "normalize_file_async", broken)

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["normalize", "kb.json"])

    assert excinfo.value.code == 1


def test_scan_lists_records(
    tmp_path: Path,
    knowledge_base: JsonValue,
    caplog: pytest.LogCaptureFixture,
) -> None:
    source = tmp_path / "kb.json"
    source.write_text(json.dumps(knowledge_base), encoding="utf-8")
    caplog.set_level(logging.INFO)

    cli_module.main(["scan", str(source)])

    assert "$.chapters[0].knowledge_points[1]" in caplog.text
    assert "Found 4 records" in caplog.text


def test_interrupt_cancels_the_run_and_restores_the_handler(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    seen: dict[str, bool] = {}

    async def interrupted(*_: object, cancel: asyncio.Event, **__: object) -> NormalizeFileResult:
        signal.raise_signal(signal.SIGINT)
        await asyncio.wait_for(cancel.wait(), timeout=1.0)
        seen["cancelled"] = cancel.is_set()
        stats = OutcomeStatistics(total=2, succeeded=1, cancelled=True)
        result = PipelineResult(document=[], statistics=stats)
        return NormalizeFileResult(result=result, output_path=Path("optimized_kb.json"))

    monkeypatch.setattr(cli_module, "normalize_file_async", interrupted)
    before = signal.getsignal(signal.SIGINT)

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["normalize", "kb.json"])

    assert excinfo.value.code == 1
    assert seen == {"cancelled": True}
    assert signal.getsignal(signal.SIGINT) == before
