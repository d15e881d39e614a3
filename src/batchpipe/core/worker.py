"""
Single background consumer for the batched write pipeline.

The consumer is the only code that touches the accumulator, its clock and
the sink writer, which serializes every sink write and preserves the global
FIFO order of the queue.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from concurrent.futures import Future
from typing import Callable

from ..metrics.metrics import MetricsCollector
from .accumulator import BatchAccumulator, FlushOutcome
from .diagnostics import warn
from .errors import SinkWriteError
from .message import Message
from .queue import MessageQueue
from .sink_writers import SinkWriter

# Observability hook: (error, failed batch, whether the batch was dropped)
SinkErrorHook = Callable[[SinkWriteError, tuple[Message, ...], bool], None]


def new_counters() -> dict[str, int]:
    return {"flushed": 0, "batches": 0, "dropped": 0, "sink_errors": 0}


class ConsumerLoop:
    """Drains the queue, feeds the accumulator and triggers flushes.

    Each tick waits at most ``poll_timeout_seconds`` (less when a partial
    batch becomes due sooner) for one message, appends it, and flushes when
    the accumulator says so. The loop keeps going while ``stop_flag()`` is
    false or the queue still holds messages; it then performs one final
    unconditional flush of the partial batch.
    """

    def __init__(
        self,
        *,
        queue: MessageQueue,
        accumulator: BatchAccumulator,
        writer: SinkWriter,
        poll_timeout_seconds: float,
        stop_flag: Callable[[], bool],
        counters: dict[str, int] | None = None,
        metrics: MetricsCollector | None = None,
        on_sink_error: SinkErrorHook | None = None,
        drained_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if poll_timeout_seconds <= 0:
            raise ValueError("poll_timeout_seconds must be > 0")
        self._queue = queue
        self._accumulator = accumulator
        self._writer = writer
        self._poll_timeout = poll_timeout_seconds
        self._stop_flag = stop_flag
        self._counters = counters if counters is not None else new_counters()
        self._metrics = metrics
        self._on_sink_error = on_sink_error
        self._drained_event = drained_event
        self._clock = clock
        self._flush_lock = threading.Lock()
        self._flush_requests: deque[Future[int]] = deque()
        self._finished = False

    @property
    def counters(self) -> dict[str, int]:
        return self._counters

    def request_flush(self) -> Future[int]:
        """Ask the consumer to flush everything enqueued so far.

        Safe to call from any thread. The future resolves to the number of
        messages written by the forced flush.
        """
        future: Future[int] = Future()
        with self._flush_lock:
            if self._finished:
                future.set_result(0)
                return future
            self._flush_requests.append(future)
        self._queue.wake_consumer()
        return future

    async def run(self) -> None:
        try:
            while not (self._stop_flag() and self._queue.is_empty()):
                try:
                    await self._tick()
                except Exception as exc:  # noqa: BLE001
                    self._emit_worker_error(exc)
                    await asyncio.sleep(self._poll_timeout)
            await self._final_flush()
        finally:
            self._resolve_flush_requests(0)
            if self._drained_event is not None:
                self._drained_event.set()

    async def _tick(self) -> None:
        await self._serve_flush_requests()
        acc = self._accumulator
        timeout = self._wait_timeout(self._clock())
        if acc.retry_pending:
            await asyncio.sleep(self._retry_wait(self._clock()))
        else:
            item = await self._queue.dequeue(timeout)
            if item is not None:
                acc.append(item)
        now = self._clock()
        if acc.should_flush(now):
            await self._flush(now)

    def _wait_timeout(self, now: float) -> float:
        due = self._accumulator.seconds_until_due(now)
        if due is None:
            return self._poll_timeout
        return min(self._poll_timeout, due)

    def _retry_wait(self, now: float) -> float:
        # Consecutive attempts on a requeued batch are at least one poll apart.
        due = self._accumulator.seconds_until_due(now) or 0.0
        return max(self._poll_timeout, due)

    async def _final_flush(self) -> None:
        acc = self._accumulator
        while len(acc):
            if acc.retry_pending:
                await asyncio.sleep(self._retry_wait(self._clock()))
            await self._flush(self._clock())

    async def _serve_flush_requests(self) -> None:
        with self._flush_lock:
            if not self._flush_requests:
                return
            pending = list(self._flush_requests)
            self._flush_requests.clear()
        acc = self._accumulator
        # Only messages present when the request is served; later traffic
        # flows through the normal triggers
        remaining = self._queue.qsize()
        flushed = 0
        while not acc.retry_pending:
            while remaining > 0 and len(acc) < acc.batch_size:
                ok, item = self._queue.try_dequeue()
                if not ok or item is None:
                    remaining = 0
                    break
                acc.append(item)
                remaining -= 1
            if not len(acc):
                break
            outcome = await self._flush(self._clock())
            flushed += outcome.flushed
            if not outcome.ok:
                break
        for future in pending:
            if not future.done():
                future.set_result(flushed)

    def _resolve_flush_requests(self, value: int) -> None:
        with self._flush_lock:
            self._finished = True
            pending = list(self._flush_requests)
            self._flush_requests.clear()
        for future in pending:
            if not future.done():
                future.set_result(value)

    async def _flush(self, now: float) -> FlushOutcome:
        batch = self._accumulator.batch
        outcome = await self._accumulator.flush(self._writer, now)
        if outcome.ok:
            if outcome.flushed:
                self._counters["flushed"] += outcome.flushed
                self._counters["batches"] += 1
                if self._metrics is not None:
                    self._metrics.record_flush(
                        batch_size=outcome.flushed,
                        latency_seconds=outcome.latency_seconds,
                        queue_depth=self._queue.qsize(),
                    )
            return outcome
        self._handle_sink_error(outcome, batch)
        return outcome

    def _handle_sink_error(
        self, outcome: FlushOutcome, batch: tuple[Message, ...]
    ) -> None:
        error = outcome.error
        if error is None:
            return
        dropped = outcome.dropped > 0
        self._counters["sink_errors"] += 1
        if dropped:
            self._counters["dropped"] += outcome.dropped
        if self._metrics is not None:
            self._metrics.record_sink_error(sink=self._writer.name)
            self._metrics.record_dropped(outcome.dropped)
        warn(
            "sink",
            "flush error",
            sink=self._writer.name,
            error_type=type(error.cause or error).__name__,
            error=str(error.cause or error),
            batch_size=len(batch),
            attempts=outcome.attempts,
            action="dropped" if dropped else "requeued",
        )
        if self._on_sink_error is None:
            return
        try:
            self._on_sink_error(error, batch, dropped)
        except Exception as exc:  # noqa: BLE001
            warn("worker", "on_sink_error hook failed", error=str(exc))

    def _emit_worker_error(self, exc: Exception) -> None:
        warn(
            "worker",
            "consumer loop error",
            error_type=type(exc).__name__,
            error=str(exc),
            _rate_limit_key="worker_loop",
        )
