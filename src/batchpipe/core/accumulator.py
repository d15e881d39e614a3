"""
Batch accumulation and flush triggers.

A batch is flushed when it is full (size trigger) or when it is non-empty
and ``batch_interval`` has elapsed since the last flush (time trigger).
The accumulator is owned by the consumer loop and is not thread-safe.

Sink failures follow the configured ``SinkErrorPolicy``:

- DROP: the batch is discarded and the failure reported
- REQUEUE: the batch is kept and retried after ``retry_backoff_seconds``;
  while a retry is pending nothing new is appended, so the batch keeps its
  place ahead of everything still in the queue. ``retry_limit`` optionally
  bounds the number of attempts before the batch is dropped.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, Sequence

from .errors import SinkWriteError
from .message import Message


class SinkErrorPolicy(str, Enum):
    REQUEUE = "requeue"
    DROP = "drop"


class BatchWriter(Protocol):
    async def append_batch(self, batch: Sequence[Message]) -> None: ...


@dataclass(frozen=True)
class FlushOutcome:
    """What a single flush attempt did."""

    flushed: int = 0
    dropped: int = 0
    attempts: int = 0
    latency_seconds: float = 0.0
    error: SinkWriteError | None = None
    retry_pending: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchAccumulator:
    def __init__(
        self,
        *,
        batch_size: int,
        batch_interval_seconds: float,
        error_policy: SinkErrorPolicy = SinkErrorPolicy.DROP,
        retry_backoff_seconds: float = 0.5,
        retry_limit: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if batch_interval_seconds <= 0:
            raise ValueError("batch_interval_seconds must be > 0")
        if retry_limit is not None and retry_limit <= 0:
            raise ValueError("retry_limit must be > 0")
        self._batch_size = batch_size
        self._interval = batch_interval_seconds
        self._policy = SinkErrorPolicy(error_policy)
        self._retry_backoff = max(0.0, retry_backoff_seconds)
        self._retry_limit = retry_limit
        self._clock = clock
        self._batch: list[Message] = []
        self._last_flush_time = clock()
        self._attempts = 0
        self._retry_at: float | None = None

    def __len__(self) -> int:
        return len(self._batch)

    @property
    def batch(self) -> tuple[Message, ...]:
        return tuple(self._batch)

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def last_flush_time(self) -> float:
        return self._last_flush_time

    @property
    def retry_pending(self) -> bool:
        return self._retry_at is not None

    def append(self, message: Message) -> None:
        if self._retry_at is not None:
            raise RuntimeError("cannot append while a failed batch awaits retry")
        self._batch.append(message)

    def should_flush(self, now: float) -> bool:
        if not self._batch:
            return False
        if self._retry_at is not None:
            return now >= self._retry_at
        if len(self._batch) >= self._batch_size:
            return True
        return now - self._last_flush_time >= self._interval

    def seconds_until_due(self, now: float) -> float | None:
        """Time until the pending batch becomes eligible; None when empty."""
        if not self._batch:
            return None
        if self._retry_at is not None:
            return max(0.0, self._retry_at - now)
        if len(self._batch) >= self._batch_size:
            return 0.0
        return max(0.0, self._last_flush_time + self._interval - now)

    async def flush(self, writer: BatchWriter, now: float | None = None) -> FlushOutcome:
        """Hand the batch to ``writer`` in one call, then clear it.

        The batch is only cleared when the write succeeded or the error
        policy decided to drop it.
        """
        if not self._batch:
            return FlushOutcome()
        if now is None:
            now = self._clock()
        snapshot = tuple(self._batch)
        started = time.perf_counter()
        try:
            await writer.append_batch(snapshot)
        except SinkWriteError as exc:
            self._attempts += 1
            attempts = self._attempts
            latency = time.perf_counter() - started
            if self._policy is SinkErrorPolicy.REQUEUE and (
                self._retry_limit is None or attempts < self._retry_limit
            ):
                self._retry_at = now + self._retry_backoff
                return FlushOutcome(
                    attempts=attempts,
                    latency_seconds=latency,
                    error=exc,
                    retry_pending=True,
                )
            self._reset(now)
            return FlushOutcome(
                dropped=len(snapshot),
                attempts=attempts,
                latency_seconds=latency,
                error=exc,
            )
        attempts = self._attempts + 1
        self._reset(now)
        return FlushOutcome(
            flushed=len(snapshot),
            attempts=attempts,
            latency_seconds=time.perf_counter() - started,
        )

    def _reset(self, now: float) -> None:
        self._batch.clear()
        self._last_flush_time = now
        self._attempts = 0
        self._retry_at = None
