from __future__ import annotations

import threading

from batchpipe.metrics import MetricsCollector, PipelineMetrics


def _sample(collector: MetricsCollector, name: str, **labels: str) -> float | None:
    assert collector.registry is not None
    return collector.registry.get_sample_value(name, labels or None)


def test_disabled_collector_still_tracks_snapshot() -> None:
    m = MetricsCollector()
    m.record_submitted(queue_depth=1)
    m.record_flush(batch_size=3, latency_seconds=0.01)
    m.record_dropped(0)

    assert m.is_enabled is False
    assert m.registry is None
    assert m.snapshot() == PipelineMetrics(
        submitted=1, batches_flushed=1, messages_flushed=3
    )


def test_enabled_collector_exports_prometheus_samples() -> None:
    m = MetricsCollector(enabled=True)
    m.record_submitted(queue_depth=4)
    m.record_flush(batch_size=5, latency_seconds=0.002, queue_depth=2)
    m.record_rejected(reason="shutting_down")
    m.record_rejected(reason="backpressure")
    m.record_sink_error(sink="file")
    m.record_dropped(7)

    assert _sample(m, "batchpipe_messages_submitted_total") == 1.0
    assert _sample(m, "batchpipe_messages_flushed_total") == 5.0
    assert _sample(m, "batchpipe_batches_flushed_total") == 1.0
    assert _sample(m, "batchpipe_queue_depth") == 2.0
    assert _sample(m, "batchpipe_messages_rejected_total", reason="backpressure") == 1.0
    assert _sample(m, "batchpipe_sink_errors_total", sink="file") == 1.0
    assert _sample(m, "batchpipe_messages_dropped_total") == 7.0
    assert _sample(m, "batchpipe_batch_size_count") == 1.0

    snap = m.snapshot()
    assert snap.rejected == 1
    assert snap.backpressure_timeouts == 1


def test_collectors_use_isolated_registries() -> None:
    a = MetricsCollector(enabled=True)
    b = MetricsCollector(enabled=True)
    a.record_submitted()
    assert _sample(b, "batchpipe_messages_submitted_total") == 0.0


def test_concurrent_recording_is_consistent() -> None:
    m = MetricsCollector(enabled=True)

    def work() -> None:
        for _ in range(500):
            m.record_submitted()

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert m.snapshot().submitted == 2000
    assert _sample(m, "batchpipe_messages_submitted_total") == 2000.0


def test_snapshot_is_a_copy() -> None:
    m = MetricsCollector()
    snap = m.snapshot()
    m.record_submitted()
    assert snap.submitted == 0
