"""
Thread-safe FIFO hand-off between producers and the single consumer.

Producers are arbitrary threads; they enqueue synchronously and, when a
capacity is configured and the queue is full, either wait for space or are
rejected according to the ``BackpressurePolicy``. The consumer runs on its
own asyncio loop and waits with ``dequeue(timeout)``; producers wake it with
``loop.call_soon_threadsafe`` so the idle wait never spins.

The queue also carries the "accepting" flag: ``close()`` flips it under the
same lock that guards enqueue, so a message is either enqueued before the
close (and will be drained) or rejected with ``QueueClosedError``.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from enum import Enum
from typing import Callable

from .errors import BackpressureError, QueueClosedError
from .message import Message, Payload


class BackpressurePolicy(str, Enum):
    WAIT = "wait"  # Wait until space is available (potentially with timeout)
    REJECT = "reject"  # Raise BackpressureError immediately when full


class MessageQueue:
    """Bounded-or-unbounded FIFO of ``Message`` objects.

    ``capacity=None`` means unbounded: producers never suspend, at the cost of
    unbounded memory growth under sustained overload.
    """

    def __init__(
        self,
        capacity: int | None = None,
        *,
        policy: BackpressurePolicy = BackpressurePolicy.WAIT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity is not None and capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._capacity = capacity
        self._policy = BackpressurePolicy(policy)
        self._clock = clock
        self._items: deque[Message] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._next_sequence = 0
        self._high_watermark = 0
        # Consumer wakeup, bound lazily to the loop that calls dequeue()
        self._wakeup: asyncio.Event | None = None
        self._wakeup_loop: asyncio.AbstractEventLoop | None = None
        self._consumer_waiting = False

    @property
    def capacity(self) -> int | None:
        return self._capacity

    @property
    def policy(self) -> BackpressurePolicy:
        return self._policy

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def high_watermark(self) -> int:
        with self._cond:
            return self._high_watermark

    @property
    def total_enqueued(self) -> int:
        with self._cond:
            return self._next_sequence

    def qsize(self) -> int:
        with self._cond:
            return len(self._items)

    def is_empty(self) -> bool:
        """Observability hook; only meaningful for drain once ``closed`` is set."""
        with self._cond:
            return not self._items

    def is_full(self) -> bool:
        with self._cond:
            return self._is_full_locked()

    def enqueue(
        self,
        payload: Payload,
        *,
        producer: str | None = None,
        timeout: float | None = None,
    ) -> Message:
        """Append ``payload`` at the tail and return the created message.

        When the queue is full:
        - REJECT: raises BackpressureError immediately
        - WAIT: waits up to ``timeout`` seconds (None waits until space)
          and raises BackpressureError when the wait is exhausted

        Raises QueueClosedError once ``close()`` has been called, including
        for producers that were waiting for space at that moment.
        """
        with self._cond:
            if self._closed:
                raise QueueClosedError("Queue is closed; submission rejected")
            if self._is_full_locked():
                if self._policy is BackpressurePolicy.REJECT:
                    raise BackpressureError(
                        "Queue is full; submission rejected",
                        context={"capacity": self._capacity},
                    )
                self._wait_for_space_locked(timeout)
            return self._append_locked(payload, producer)

    def try_enqueue(
        self, payload: Payload, *, producer: str | None = None
    ) -> Message | None:
        """Non-blocking enqueue; returns None when the queue is full."""
        with self._cond:
            if self._closed:
                raise QueueClosedError("Queue is closed; submission rejected")
            if self._is_full_locked():
                return None
            return self._append_locked(payload, producer)

    def try_dequeue(self) -> tuple[bool, Message | None]:
        """Attempt to pop the head; returns (False, None) if empty."""
        with self._cond:
            if not self._items:
                return False, None
            item = self._items.popleft()
            self._cond.notify()
            return True, item

    async def dequeue(self, timeout: float) -> Message | None:
        """Pop the head, or return None after ``timeout`` seconds.

        Never blocks indefinitely. A wakeup without an item (close, flush
        request, cancellation of the wait) is a no-op tick and returns None.
        """
        loop = asyncio.get_running_loop()
        with self._cond:
            if self._items:
                item = self._items.popleft()
                self._cond.notify()
                return item
            if self._wakeup is None or self._wakeup_loop is not loop:
                self._wakeup = asyncio.Event()
                self._wakeup_loop = loop
            wakeup = self._wakeup
            wakeup.clear()
            self._consumer_waiting = True
        try:
            await asyncio.wait_for(wakeup.wait(), timeout=max(0.0, timeout))
        except asyncio.TimeoutError:
            pass
        finally:
            with self._cond:
                self._consumer_waiting = False
        _ok, item = self.try_dequeue()
        return item

    def wake_consumer(self) -> None:
        """Interrupt the consumer's idle wait, if it is waiting."""
        with self._cond:
            self._wake_consumer_locked()

    def close(self) -> None:
        """Stop accepting messages; already-enqueued messages stay drainable."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            # Blocked producers re-check and raise QueueClosedError
            self._cond.notify_all()
            self._wake_consumer_locked()

    def _is_full_locked(self) -> bool:
        return self._capacity is not None and len(self._items) >= self._capacity

    def _wait_for_space_locked(self, timeout: float | None) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._is_full_locked():
            if self._closed:
                raise QueueClosedError("Queue closed while waiting for space")
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise BackpressureError(
                    "Timed out waiting for queue space",
                    context={"capacity": self._capacity, "timeout": timeout},
                )
            self._cond.wait(remaining)
        if self._closed:
            raise QueueClosedError("Queue closed while waiting for space")

    def _append_locked(self, payload: Payload, producer: str | None) -> Message:
        message = Message(
            payload=payload,
            sequence=self._next_sequence,
            enqueued_at=self._clock(),
            producer=producer or threading.current_thread().name,
        )
        self._next_sequence += 1
        self._items.append(message)
        depth = len(self._items)
        if depth > self._high_watermark:
            self._high_watermark = depth
        self._wake_consumer_locked()
        return message

    def _wake_consumer_locked(self) -> None:
        if not self._consumer_waiting:
            return
        loop, wakeup = self._wakeup_loop, self._wakeup
        if loop is None or wakeup is None:
            return
        self._consumer_waiting = False
        try:
            loop.call_soon_threadsafe(wakeup.set)
        except RuntimeError:
            # Consumer loop already closed; nothing left to wake
            pass
