"""
Thin boundary between the consumer loop and a sink.

The writer awaits coroutine sinks and calls plain-function sinks inline (the
consumer owns its thread, so a blocking sink only delays the next tick). Any
failure is wrapped into ``SinkWriteError``; there is no retry or buffering
here, that is the accumulator's error policy.
"""

from __future__ import annotations

import inspect
from typing import Any, Sequence

from .diagnostics import warn
from .errors import SinkWriteError
from .message import Message


def sink_name(sink: Any) -> str:
    return getattr(sink, "name", None) or type(sink).__name__


async def _call_maybe_async(fn: Any, *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        return await result
    return result


class SinkWriter:
    def __init__(self, sink: Any) -> None:
        if not callable(getattr(sink, "append_batch", None)):
            raise TypeError(
                f"sink {type(sink).__name__} does not implement append_batch()"
            )
        self._sink = sink
        self.name = sink_name(sink)

    @property
    def sink(self) -> Any:
        return self._sink

    async def start(self) -> None:
        """Run the sink's optional start hook; failures are reported, not raised."""
        start = getattr(self._sink, "start", None)
        if start is None:
            return
        try:
            await _call_maybe_async(start)
        except Exception as exc:  # noqa: BLE001
            warn("sink", "sink start failed", sink=self.name, error=str(exc))

    async def stop(self) -> None:
        stop = getattr(self._sink, "stop", None)
        if stop is None:
            return
        try:
            await _call_maybe_async(stop)
        except Exception as exc:  # noqa: BLE001
            warn("sink", "sink stop failed", sink=self.name, error=str(exc))

    async def append_batch(self, batch: Sequence[Message]) -> None:
        try:
            await _call_maybe_async(self._sink.append_batch, tuple(batch))
        except Exception as exc:
            raise SinkWriteError(
                f"Sink {self.name} failed to append batch",
                context={"sink": self.name, "batch_size": len(batch)},
                cause=exc,
            ) from exc


def make_sink_writer(sink: Any) -> SinkWriter:
    if isinstance(sink, SinkWriter):
        return sink
    return SinkWriter(sink)
