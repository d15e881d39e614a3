"""
Line encoding for sinks.

Uses orjson so JSON lines are produced as bytes without an intermediate str.
Sinks call ``encode_batch`` to turn a flushed batch into one contiguous buffer
that can be written with a single call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal

import orjson

from .errors import ErrorCategory, SinkWriteError
from .message import Message

LineMode = Literal["text", "json"]


@dataclass
class SerializedView:
    """Encoded bytes of one or more lines, ready for a single write."""

    data: bytes

    @property
    def view(self) -> memoryview:
        return memoryview(self.data)

    def __bytes__(self) -> bytes:
        return self.data


def _default(obj: Any) -> Any:
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    raise TypeError(f"unsupported type in message: {type(obj).__name__}")


def serialize_mapping_to_json_bytes(payload: dict[str, Any]) -> SerializedView:
    try:
        data = orjson.dumps(payload, default=_default, option=orjson.OPT_SORT_KEYS)
    except TypeError as exc:
        raise SinkWriteError(
            "Cannot encode message as JSON",
            category=ErrorCategory.SINK,
            cause=exc,
        ) from exc
    return SerializedView(data=data)


def encode_line(message: Message, mode: LineMode = "text") -> bytes:
    """Encode one message as a newline-terminated line.

    Text mode writes ``bytes`` payloads through unchanged after the
    ``[producer][ms] `` prefix. JSON has no raw-bytes type, so JSON mode
    decodes them as UTF-8 with replacement characters.
    """
    if mode == "json":
        return serialize_mapping_to_json_bytes(message.to_dict()).data + b"\n"
    payload = message.payload
    body = payload if isinstance(payload, bytes) else payload.encode("utf-8")
    prefix = f"[{message.producer}][{message.enqueued_at_ms}] ".encode("utf-8")
    return prefix + body + b"\n"


def encode_batch(messages: Iterable[Message], mode: LineMode = "text") -> SerializedView:
    return SerializedView(data=b"".join(encode_line(m, mode) for m in messages))
