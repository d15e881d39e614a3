"""
Public entrypoints for batchpipe.

Provides the zero-config ``get_pipeline()`` and the ``runtime()`` context
manager on top of ``BatchPipeline``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from ._version import __version__
from .core.errors import (
    BackpressureError,
    BatchPipeError,
    ConfigurationError,
    DrainTimeoutError,
    PipelineShuttingDownError,
    SinkWriteError,
)
from .core.message import Message
from .core.pipeline import BatchPipeline, DrainResult, PipelineState
from .core.settings import PipelineSettings, Settings
from .core.worker import SinkErrorHook
from .plugins.sinks import BaseSink, FileSink, FileSinkConfig, StdoutSink

__all__ = [
    "get_pipeline",
    "runtime",
    "BatchPipeline",
    "DrainResult",
    "PipelineState",
    "Message",
    "Settings",
    "PipelineSettings",
    "BaseSink",
    "StdoutSink",
    "FileSink",
    "FileSinkConfig",
    "BatchPipeError",
    "BackpressureError",
    "PipelineShuttingDownError",
    "SinkWriteError",
    "DrainTimeoutError",
    "ConfigurationError",
    "__version__",
    "VERSION",
]


def _sink_from_settings(settings: Settings) -> Any:
    cfg = settings.sinks
    if cfg.kind == "file":
        if cfg.file_path is None:
            raise ConfigurationError(
                "sinks.file_path is required when sinks.kind is 'file'",
                context={"field": "sinks.file_path"},
            )
        return FileSink(
            FileSinkConfig(path=cfg.file_path, mode=cfg.line_mode, fsync=cfg.file_fsync)
        )
    return StdoutSink(mode=cfg.line_mode)


def get_pipeline(
    name: str = "batchpipe",
    *,
    settings: Settings | None = None,
    sink: Any | None = None,
    on_sink_error: SinkErrorHook | None = None,
) -> BatchPipeline:
    """Return a running pipeline wired to a sink chosen from settings.

    @docs:examples
    ```python
    from batchpipe import get_pipeline

    # Zero-config: stdout sink, settings from BATCHPIPE_* variables
    pipeline = get_pipeline()
    pipeline.submit("service started")
    pipeline.shutdown()

    # File sink via environment
    # BATCHPIPE_SINKS__KIND=file BATCHPIPE_SINKS__FILE_PATH=async-logs.txt
    ```

    @docs:notes
    - An explicit ``sink`` wins over ``settings.sinks``
    - Each call builds an independent pipeline with its own consumer thread
    - Pipelines are drained at interpreter exit unless
      ``core.atexit_drain_enabled`` is false
    """
    cfg = settings or Settings()
    target = sink if sink is not None else _sink_from_settings(cfg)
    return BatchPipeline(target, cfg, name=name, on_sink_error=on_sink_error)


@contextmanager
def runtime(
    *,
    settings: Settings | None = None,
    sink: Any | None = None,
) -> Iterator[BatchPipeline]:
    """Context manager that starts a pipeline and drains it on exit."""
    pipeline = get_pipeline(settings=settings, sink=sink)
    try:
        yield pipeline
    finally:
        try:
            pipeline.shutdown(wait=True)
        except DrainTimeoutError:
            # Drain continues in the background; exit handler retries
            pass


VERSION = __version__
