from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from ...core.message import Message
from .file import FileSink, FileSinkConfig
from .stdout import StdoutSink


@runtime_checkable
class BaseSink(Protocol):
    """Base sink interface.

    A sink durably records flushed batches (file, stdout, network, ...).
    ``append_batch`` receives the whole batch in enqueue order and must either
    record all of it or raise; the pipeline never retries inside the sink.
    It may be a coroutine function or a plain function. It is only ever
    called from the pipeline's single consumer thread, so sinks need no
    locking of their own.
    """

    name: str

    async def start(self) -> None:  # Optional lifecycle hook
        ...

    async def stop(self) -> None:  # Optional lifecycle hook
        ...

    async def append_batch(self, _batch: Sequence[Message]) -> None:  # noqa: ARG002
        """Append one batch of messages to the sink destination."""
        ...


__all__ = [
    "BaseSink",
    "FileSink",
    "FileSinkConfig",
    "StdoutSink",
]
