"""
Message model carried through the pipeline.

A ``Message`` is created by the queue at enqueue time, under the queue lock,
so ``sequence`` is the pipeline-wide FIFO order. Messages are immutable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

Payload = Union[str, bytes]


@dataclass(frozen=True)
class Message:
    """An opaque payload plus its enqueue metadata."""

    payload: Payload
    sequence: int
    enqueued_at: float  # epoch seconds
    producer: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.payload, (str, bytes)):
            raise TypeError(
                f"payload must be str or bytes, not {type(self.payload).__name__}"
            )

    @property
    def text(self) -> str:
        if isinstance(self.payload, bytes):
            return self.payload.decode("utf-8", errors="replace")
        return self.payload

    @property
    def enqueued_at_ms(self) -> int:
        return int(self.enqueued_at * 1000)

    def format_line(self) -> str:
        """Render as ``[producer][epoch-ms] payload``."""
        return f"[{self.producer}][{self.enqueued_at_ms}] {self.text}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "producer": self.producer,
            "enqueued_at": self.enqueued_at,
            "payload": self.text,
        }
