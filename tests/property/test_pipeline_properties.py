from __future__ import annotations

import asyncio
from typing import Sequence

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from batchpipe.core.accumulator import BatchAccumulator, SinkErrorPolicy
from batchpipe.core.errors import SinkWriteError
from batchpipe.core.message import Message
from batchpipe.core.pipeline import BatchPipeline
from batchpipe.testing import MockSink

pytestmark = pytest.mark.property

payloads = st.one_of(
    st.text(max_size=40),
    st.binary(max_size=40),
)


class _ScriptedWriter:
    def __init__(self, failures: list[bool]) -> None:
        self._failures = list(failures)
        self.written: list[tuple[Message, ...]] = []

    async def append_batch(self, batch: Sequence[Message]) -> None:
        if self._failures and self._failures.pop(0):
            raise SinkWriteError("scripted")
        self.written.append(tuple(batch))


@given(
    count=st.integers(min_value=0, max_value=60),
    batch_size=st.integers(min_value=1, max_value=12),
    failures=st.lists(st.booleans(), max_size=30),
)
@settings(max_examples=150, deadline=None)
def test_requeue_accumulator_preserves_order_and_bounds(
    count: int, batch_size: int, failures: list[bool]
) -> None:
    """Requeue never loses, duplicates or reorders messages and never overfills."""

    async def scenario() -> list[tuple[Message, ...]]:
        acc = BatchAccumulator(
            batch_size=batch_size,
            batch_interval_seconds=1.0,
            error_policy=SinkErrorPolicy.REQUEUE,
            retry_backoff_seconds=0.0,
        )
        writer = _ScriptedWriter(failures)
        pending = [Message(payload=str(i), sequence=i, enqueued_at=0.0) for i in range(count)]
        while pending or len(acc):
            if pending and not acc.retry_pending and len(acc) < batch_size:
                acc.append(pending.pop(0))
                if len(acc) < batch_size and pending:
                    continue
            await acc.flush(writer)
        return writer.written

    written = asyncio.run(scenario())

    assert [m.sequence for b in written for m in b] == list(range(count))
    assert all(1 <= len(b) <= batch_size for b in written)


@given(
    items=st.lists(payloads, max_size=40),
    batch_size=st.integers(min_value=1, max_value=10),
)
@settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)
def test_pipeline_delivers_every_submission_in_order(
    items: list[str | bytes], batch_size: int
) -> None:
    sink = MockSink()
    pipeline = BatchPipeline(
        sink,
        batch_size=batch_size,
        poll_timeout_ms=5,
        atexit_drain_enabled=False,
    )
    for item in items:
        pipeline.submit(item)

    result = pipeline.shutdown(timeout_ms=10_000)

    assert sink.payloads == items
    assert result.flushed == result.submitted == len(items)
    assert all(size <= batch_size for size in sink.batch_sizes)
