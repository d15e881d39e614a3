"""Tests for get_pipeline() and runtime()."""

from __future__ import annotations

from pathlib import Path

import pytest

import batchpipe
from batchpipe import (
    ConfigurationError,
    FileSink,
    PipelineSettings,
    PipelineState,
    Settings,
    StdoutSink,
    get_pipeline,
    runtime,
)
from batchpipe.core.settings import SinkSettings
from batchpipe.testing import MockSink


def _quiet_core(**kwargs: object) -> PipelineSettings:
    return PipelineSettings(atexit_drain_enabled=False, poll_timeout_ms=20, **kwargs)  # type: ignore[arg-type]


def test_version_is_exposed() -> None:
    assert batchpipe.VERSION == batchpipe.__version__
    assert batchpipe.__version__.count(".") == 2


def test_get_pipeline_defaults_to_stdout_sink() -> None:
    pipeline = get_pipeline(settings=Settings(core=_quiet_core()))
    try:
        assert isinstance(pipeline.sink, StdoutSink)
        assert pipeline.name == "batchpipe"
    finally:
        pipeline.shutdown(timeout_ms=2000)


def test_get_pipeline_builds_file_sink_from_settings(tmp_path: Path) -> None:
    path = tmp_path / "async-logs.txt"
    settings = Settings(
        core=_quiet_core(batch_size=2),
        sinks=SinkSettings(kind="file", file_path=path),
    )
    pipeline = get_pipeline("files", settings=settings)
    assert isinstance(pipeline.sink, FileSink)
    pipeline.submit("a", producer="p")
    pipeline.submit("b", producer="p")
    pipeline.submit("c", producer="p")
    pipeline.shutdown(timeout_ms=5000)

    lines = path.read_text().splitlines()
    assert len(lines) == 3
    assert lines[0].startswith("[p][") and lines[0].endswith("] a")


def test_file_sink_without_path_is_configuration_error() -> None:
    settings = Settings(core=_quiet_core(), sinks=SinkSettings(kind="file"))
    with pytest.raises(ConfigurationError, match="file_path"):
        get_pipeline(settings=settings)


def test_explicit_sink_wins() -> None:
    sink = MockSink()
    pipeline = get_pipeline(settings=Settings(core=_quiet_core()), sink=sink)
    pipeline.submit("x")
    pipeline.shutdown(timeout_ms=2000)
    assert sink.payloads == ["x"]


def test_runtime_drains_on_exit() -> None:
    sink = MockSink()
    with runtime(settings=Settings(core=_quiet_core()), sink=sink) as pipeline:
        pipeline.submit("inside")
    assert pipeline.state is PipelineState.STOPPED
    assert sink.payloads == ["inside"]
