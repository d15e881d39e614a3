"""
Prometheus-compatible metrics for the batched write pipeline.

Producers record from arbitrary threads and the consumer records from its
own thread, so the in-memory state is guarded by a ``threading.Lock``.

Design goals:
- Zero global state; each collector owns an isolated registry
- Safe no-op export when metrics are disabled by settings
- In-memory counters are always tracked for quick assertions in tests
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


@dataclass
class PipelineMetrics:
    """Captured runtime metrics for quick assertions in tests."""

    submitted: int = 0
    rejected: int = 0
    backpressure_timeouts: int = 0
    batches_flushed: int = 0
    messages_flushed: int = 0
    messages_dropped: int = 0
    sink_errors: int = 0


class MetricsCollector:
    def __init__(self, *, enabled: bool = False) -> None:
        self._enabled = bool(enabled)
        self._lock = threading.Lock()
        self._state = PipelineMetrics()

        self._c_submitted: Any | None = None
        self._c_rejected: Any | None = None
        self._c_flushed: Any | None = None
        self._c_batches: Any | None = None
        self._c_dropped: Any | None = None
        self._c_sink_errors: Any | None = None
        self._g_queue_depth: Any | None = None
        self._h_flush_latency: Any | None = None
        self._h_batch_size: Any | None = None
        self._registry: CollectorRegistry | None = None

        if self._enabled:
            # Isolated registry to avoid global duplication in tests
            self._registry = CollectorRegistry()
            self._c_submitted = Counter(
                "batchpipe_messages_submitted_total",
                "Messages accepted into the queue",
                registry=self._registry,
            )
            self._c_rejected = Counter(
                "batchpipe_messages_rejected_total",
                "Submissions refused",
                ["reason"],
                registry=self._registry,
            )
            self._c_flushed = Counter(
                "batchpipe_messages_flushed_total",
                "Messages written to the sink",
                registry=self._registry,
            )
            self._c_batches = Counter(
                "batchpipe_batches_flushed_total",
                "Successful sink batch appends",
                registry=self._registry,
            )
            self._c_dropped = Counter(
                "batchpipe_messages_dropped_total",
                "Messages discarded after sink failures",
                registry=self._registry,
            )
            self._c_sink_errors = Counter(
                "batchpipe_sink_errors_total",
                "Failed sink batch appends",
                ["sink"],
                registry=self._registry,
            )
            self._g_queue_depth = Gauge(
                "batchpipe_queue_depth",
                "Messages waiting in the queue",
                registry=self._registry,
            )
            self._h_flush_latency = Histogram(
                "batchpipe_flush_seconds",
                "Latency of a sink batch append",
                buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0),
                registry=self._registry,
            )
            self._h_batch_size = Histogram(
                "batchpipe_batch_size",
                "Messages per flushed batch",
                buckets=(1, 2, 5, 10, 25, 50, 100, 250, 500, 1000),
                registry=self._registry,
            )

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def registry(self) -> CollectorRegistry | None:
        """Expose the isolated Prometheus registry when enabled."""
        return self._registry

    def record_submitted(self, *, queue_depth: int | None = None) -> None:
        with self._lock:
            self._state.submitted += 1
        if not self._enabled:
            return
        if self._c_submitted is not None:
            self._c_submitted.inc()
        if queue_depth is not None and self._g_queue_depth is not None:
            self._g_queue_depth.set(queue_depth)

    def record_rejected(self, *, reason: str) -> None:
        with self._lock:
            if reason == "backpressure":
                self._state.backpressure_timeouts += 1
            else:
                self._state.rejected += 1
        if self._enabled and self._c_rejected is not None:
            self._c_rejected.labels(reason=reason).inc()

    def record_flush(
        self,
        *,
        batch_size: int,
        latency_seconds: float,
        queue_depth: int | None = None,
    ) -> None:
        with self._lock:
            self._state.batches_flushed += 1
            self._state.messages_flushed += batch_size
        if not self._enabled:
            return
        if self._c_batches is not None:
            self._c_batches.inc()
        if self._c_flushed is not None:
            self._c_flushed.inc(batch_size)
        if self._h_flush_latency is not None:
            self._h_flush_latency.observe(latency_seconds)
        if self._h_batch_size is not None:
            self._h_batch_size.observe(batch_size)
        if queue_depth is not None and self._g_queue_depth is not None:
            self._g_queue_depth.set(queue_depth)

    def record_sink_error(self, *, sink: str | None = None) -> None:
        with self._lock:
            self._state.sink_errors += 1
        if self._enabled and self._c_sink_errors is not None:
            self._c_sink_errors.labels(sink=sink or "unknown").inc()

    def record_dropped(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._state.messages_dropped += count
        if self._enabled and self._c_dropped is not None:
            self._c_dropped.inc(count)

    def snapshot(self) -> PipelineMetrics:
        with self._lock:
            return replace(self._state)
