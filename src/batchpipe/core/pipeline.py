"""
Public controller for the batched write pipeline.

``BatchPipeline`` starts its single consumer at construction, on a dedicated
daemon thread that owns a private asyncio event loop. Any thread (or
coroutine, via ``asubmit``) may produce. Lifecycle is monotonic:

    RUNNING -> DRAINING -> STOPPED

``shutdown()`` closes the queue under the same lock that guards enqueue, so a
concurrent submission is either enqueued first (and delivered) or rejected
with ``PipelineShuttingDownError``. The consumer then drains the queue,
flushes the partial batch and marks the pipeline STOPPED.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from ..metrics.metrics import MetricsCollector
from . import diagnostics
from .accumulator import BatchAccumulator, SinkErrorPolicy
from .errors import (
    BackpressureError,
    ConfigurationError,
    DrainTimeoutError,
    PipelineShuttingDownError,
    QueueClosedError,
)
from .message import Message, Payload
from .queue import BackpressurePolicy, MessageQueue
from .settings import PipelineSettings, Settings, ms_to_seconds
from .shutdown import register_pipeline, unregister_pipeline
from .sink_writers import make_sink_writer
from .worker import ConsumerLoop, SinkErrorHook, new_counters


class PipelineState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(frozen=True)
class DrainResult:
    """Counters snapshot returned by ``shutdown()`` and ``stats()``."""

    state: PipelineState
    submitted: int
    flushed: int
    batches: int
    dropped: int
    rejected: int
    backpressure_timeouts: int
    sink_errors: int
    remaining: int
    queue_depth_high_watermark: int

    @property
    def drained(self) -> bool:
        return self.state is PipelineState.STOPPED


class _UseSettings:
    def __repr__(self) -> str:
        return "<settings default>"


# Sentinel: take the timeout from settings
USE_SETTINGS: Any = _UseSettings()


def _current_producer() -> str:
    name = threading.current_thread().name
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    if task is None:
        return name
    return f"{name}/{task.get_name()}"


def resolve_settings(
    settings: PipelineSettings | Settings | None,
    overrides: dict[str, Any],
) -> PipelineSettings:
    """Merge keyword overrides onto the base settings and validate them."""
    try:
        if settings is None:
            base = Settings().core
        elif isinstance(settings, Settings):
            base = settings.core
        else:
            base = settings
        if not overrides:
            return base
        unknown = sorted(set(overrides) - set(PipelineSettings.model_fields))
        if unknown:
            raise ConfigurationError(
                f"Unknown pipeline settings: {', '.join(unknown)}",
                context={"unknown": unknown},
            )
        return PipelineSettings.model_validate({**base.model_dump(), **overrides})
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid pipeline settings",
            context={"errors": exc.errors(include_url=False)},
            cause=exc,
        ) from exc


class BatchPipeline:
    """Accepts messages from any producer and writes them to ``sink`` in batches.

    ``internal_logging_enabled=True`` switches diagnostics on for the whole
    process, not only for this pipeline, and it stays on after shutdown.

    Args:
        sink: Object with an ``append_batch(messages)`` method (sync or async)
            and optional ``start()``/``stop()`` hooks.
        settings: ``PipelineSettings`` or top-level ``Settings``; defaults are
            read from ``BATCHPIPE_*`` environment variables.
        name: Label used for the consumer thread and diagnostics.
        metrics: Optional collector; one is created from settings otherwise.
        on_sink_error: Called on the consumer thread as
            ``hook(error, batch, dropped)`` whenever a flush fails.
        clock: Monotonic clock used for the time-based flush trigger.
        **overrides: Individual ``PipelineSettings`` fields, e.g.
            ``batch_size=5``.

    Raises:
        ConfigurationError: settings or overrides are invalid.
    """

    def __init__(
        self,
        sink: Any,
        settings: PipelineSettings | Settings | None = None,
        *,
        name: str = "batchpipe",
        metrics: MetricsCollector | None = None,
        on_sink_error: SinkErrorHook | None = None,
        clock: Callable[[], float] = time.monotonic,
        **overrides: Any,
    ) -> None:
        cfg = resolve_settings(settings, overrides)
        self._cfg = cfg
        self._name = name
        if cfg.internal_logging_enabled:
            diagnostics.configure(enabled=True)
        self._metrics = metrics or MetricsCollector(enabled=cfg.enable_metrics)
        self._writer = make_sink_writer(sink)
        self._queue = MessageQueue(
            cfg.queue_capacity,
            policy=BackpressurePolicy(cfg.backpressure_policy),
        )
        self._accumulator = BatchAccumulator(
            batch_size=cfg.batch_size,
            batch_interval_seconds=cfg.batch_interval_seconds,
            error_policy=SinkErrorPolicy(cfg.sink_error_policy),
            retry_backoff_seconds=cfg.sink_retry_backoff_ms / 1000.0,
            retry_limit=cfg.sink_retry_limit,
            clock=clock,
        )
        self._state = PipelineState.RUNNING
        self._state_lock = threading.Lock()
        self._draining = threading.Event()
        self._stopped = threading.Event()
        self._counters = new_counters()
        self._rejected = 0
        self._backpressure_timeouts = 0
        self._worker = ConsumerLoop(
            queue=self._queue,
            accumulator=self._accumulator,
            writer=self._writer,
            poll_timeout_seconds=cfg.poll_timeout_seconds,
            stop_flag=self._draining.is_set,
            counters=self._counters,
            metrics=self._metrics,
            on_sink_error=on_sink_error,
            clock=clock,
        )
        self._thread = threading.Thread(
            target=self._thread_main,
            name=f"{name}-consumer",
            daemon=True,
        )
        if cfg.atexit_drain_enabled:
            register_pipeline(self)
        self._thread.start()

    def __repr__(self) -> str:
        return f"BatchPipeline(name={self._name!r}, state={self.state.value})"

    def __enter__(self) -> BatchPipeline:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is None:
            self.shutdown(wait=True)
            return
        # Leave the exception raised inside the block as the one that propagates
        try:
            self.shutdown(wait=True)
        except DrainTimeoutError as drain_exc:
            diagnostics.warn(
                "pipeline",
                "drain timed out while handling an exception",
                pipeline=self._name,
                remaining=drain_exc.context.get("remaining"),
                exception=exc_type.__name__,
            )

    @property
    def name(self) -> str:
        return self._name

    @property
    def settings(self) -> PipelineSettings:
        return self._cfg

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def sink(self) -> Any:
        return self._writer.sink

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    def submit(
        self,
        payload: Payload,
        *,
        producer: str | None = None,
        timeout_ms: int | None = USE_SETTINGS,
    ) -> Message:
        """Enqueue ``payload`` and return the created message.

        Args:
            payload: ``str`` or ``bytes``.
            producer: Label recorded on the message; defaults to the calling
                thread (and task) name.
            timeout_ms: Backpressure wait for a full bounded queue; ``None``
                waits for space. Defaults to ``backpressure_wait_ms``.

        Raises:
            PipelineShuttingDownError: shutdown has been requested.
            BackpressureError: the queue stayed full past the wait limit, or
                is full under the ``reject`` policy.
            TypeError: payload is not ``str`` or ``bytes``.
        """
        timeout = (
            self._cfg.backpressure_wait_seconds
            if timeout_ms is USE_SETTINGS
            else ms_to_seconds(timeout_ms)
        )
        try:
            message = self._queue.enqueue(
                payload,
                producer=producer or _current_producer(),
                timeout=timeout,
            )
        except QueueClosedError as exc:
            raise self._rejected_error(exc) from exc
        except BackpressureError:
            self._record_backpressure()
            raise
        self._metrics.record_submitted(queue_depth=self._queue.qsize())
        return message

    async def asubmit(
        self,
        payload: Payload,
        *,
        producer: str | None = None,
        timeout_ms: int | None = USE_SETTINGS,
    ) -> Message:
        """Coroutine variant of ``submit``.

        Never blocks the caller's event loop: when a bounded queue is full
        under the ``wait`` policy, the wait runs in a worker thread.
        """
        producer = producer or _current_producer()
        try:
            message = self._queue.try_enqueue(payload, producer=producer)
        except QueueClosedError as exc:
            raise self._rejected_error(exc) from exc
        if message is not None:
            self._metrics.record_submitted(queue_depth=self._queue.qsize())
            return message
        if self._queue.policy is BackpressurePolicy.REJECT:
            return self.submit(payload, producer=producer, timeout_ms=timeout_ms)
        return await asyncio.to_thread(
            self.submit, payload, producer=producer, timeout_ms=timeout_ms
        )

    def flush(self, timeout_ms: int | None = None) -> int:
        """Flush everything enqueued so far without waiting for a trigger.

        Returns the number of messages written. Returns 0 once the pipeline is
        no longer RUNNING (the drain flushes everything anyway).

        Raises:
            TimeoutError: the consumer did not finish within ``timeout_ms``.
        """
        self._ensure_not_consumer_thread("flush")
        if self.state is not PipelineState.RUNNING:
            return 0
        future = self._worker.request_flush()
        try:
            return future.result(timeout=ms_to_seconds(timeout_ms))
        except concurrent.futures.TimeoutError as exc:
            raise TimeoutError("Timed out waiting for forced flush") from exc

    def shutdown(
        self,
        wait: bool = True,
        timeout_ms: int | None = USE_SETTINGS,
    ) -> DrainResult:
        """Request shutdown and optionally wait for the drain to finish.

        Idempotent; calling it again after a timeout simply re-waits.

        Args:
            wait: Block until the pipeline is STOPPED.
            timeout_ms: Bound for the wait; ``None`` waits forever. Defaults
                to ``shutdown_timeout_ms``.

        Raises:
            DrainTimeoutError: the wait elapsed first. The consumer keeps
                draining in the background.
        """
        self._request_shutdown()
        if not wait:
            return self.stats()
        return self.wait_stopped(timeout_ms)

    async def ashutdown(
        self,
        wait: bool = True,
        timeout_ms: int | None = USE_SETTINGS,
    ) -> DrainResult:
        """Coroutine variant of ``shutdown`` that never blocks the caller's loop."""
        self._request_shutdown()
        if not wait:
            return self.stats()
        return await asyncio.to_thread(self.wait_stopped, timeout_ms)

    def wait_stopped(self, timeout_ms: int | None = USE_SETTINGS) -> DrainResult:
        """Block until STOPPED; raises ``DrainTimeoutError`` on timeout."""
        self._ensure_not_consumer_thread("wait_stopped")
        timeout = (
            self._cfg.shutdown_timeout_seconds
            if timeout_ms is USE_SETTINGS
            else ms_to_seconds(timeout_ms)
        )
        if not self._stopped.wait(timeout):
            result = self.stats()
            diagnostics.warn(
                "pipeline",
                "drain timed out",
                pipeline=self._name,
                remaining=result.remaining,
                timeout_ms=None if timeout is None else int(timeout * 1000),
            )
            raise DrainTimeoutError(
                "Timed out waiting for drain; consumer is still draining",
                result=result,
                context={"pipeline": self._name, "remaining": result.remaining},
            )
        unregister_pipeline(self)
        return self.stats()

    def stats(self) -> DrainResult:
        counters = dict(self._counters)
        return DrainResult(
            state=self.state,
            submitted=self._queue.total_enqueued,
            flushed=counters["flushed"],
            batches=counters["batches"],
            dropped=counters["dropped"],
            rejected=self._rejected,
            backpressure_timeouts=self._backpressure_timeouts,
            sink_errors=counters["sink_errors"],
            remaining=self._queue.qsize() + len(self._accumulator),
            queue_depth_high_watermark=self._queue.high_watermark,
        )

    def _request_shutdown(self) -> None:
        with self._state_lock:
            if self._state is not PipelineState.RUNNING:
                return
            self._state = PipelineState.DRAINING
            # Close before publishing the flag: once the consumer observes
            # draining, the queue can only shrink
            self._queue.close()
            self._draining.set()

    def _mark_stopped(self) -> None:
        with self._state_lock:
            self._state = PipelineState.STOPPED
            self._queue.close()
            self._draining.set()
        self._stopped.set()

    def _thread_main(self) -> None:
        try:
            asyncio.run(self._consume())
        except Exception as exc:  # noqa: BLE001
            diagnostics.warn(
                "pipeline",
                "consumer thread failed",
                pipeline=self._name,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        finally:
            self._mark_stopped()

    async def _consume(self) -> None:
        await self._writer.start()
        try:
            await self._worker.run()
        finally:
            await self._writer.stop()

    def _rejected_error(self, exc: QueueClosedError) -> PipelineShuttingDownError:
        with self._state_lock:
            self._rejected += 1
            state = self._state
        self._metrics.record_rejected(reason="shutting_down")
        return PipelineShuttingDownError(
            "Pipeline is shutting down; submission rejected",
            context={"pipeline": self._name, "state": state.value},
            cause=exc,
        )

    def _record_backpressure(self) -> None:
        with self._state_lock:
            self._backpressure_timeouts += 1
        self._metrics.record_rejected(reason="backpressure")

    def _ensure_not_consumer_thread(self, operation: str) -> None:
        if threading.current_thread() is self._thread:
            raise RuntimeError(
                f"{operation}() cannot block on the pipeline's own consumer thread"
            )
