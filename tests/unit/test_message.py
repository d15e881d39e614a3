"""Tests for the Message model and line encoding."""

from __future__ import annotations

import dataclasses

import orjson
import pytest

from batchpipe.core.errors import SinkWriteError
from batchpipe.core.message import Message
from batchpipe.core.serialization import (
    encode_batch,
    encode_line,
    serialize_mapping_to_json_bytes,
)


def _msg(payload: str | bytes = "hello", seq: int = 0) -> Message:
    return Message(payload=payload, sequence=seq, enqueued_at=1.5, producer="t1")


class TestMessage:
    def test_message_is_immutable(self) -> None:
        m = _msg()
        with pytest.raises(dataclasses.FrozenInstanceError):
            m.sequence = 3  # type: ignore[misc]

    def test_rejects_non_text_payload(self) -> None:
        with pytest.raises(TypeError, match="payload must be str or bytes"):
            Message(payload=42, sequence=0, enqueued_at=0.0)  # type: ignore[arg-type]

    def test_bytes_payload_decodes_with_replacement(self) -> None:
        m = _msg(b"ok \xff")
        assert m.text == "ok \ufffd"

    def test_format_line_includes_producer_and_millis(self) -> None:
        assert _msg("hi").format_line() == "[t1][1500] hi"

    def test_to_dict(self) -> None:
        assert _msg("hi", seq=7).to_dict() == {
            "sequence": 7,
            "producer": "t1",
            "enqueued_at": 1.5,
            "payload": "hi",
        }


class TestEncoding:
    def test_text_line(self) -> None:
        assert encode_line(_msg("a")) == b"[t1][1500] a\n"

    def test_json_line_is_sorted_and_newline_terminated(self) -> None:
        line = encode_line(_msg("a"), "json")
        assert line.endswith(b"\n")
        assert orjson.loads(line) == _msg("a").to_dict()
        assert line.index(b'"enqueued_at"') < line.index(b'"sequence"')

    def test_batch_concatenates_lines_in_order(self) -> None:
        batch = [_msg("a", 0), _msg("b", 1), _msg("c", 2)]
        view = encode_batch(batch)
        assert bytes(view) == b"[t1][1500] a\n[t1][1500] b\n[t1][1500] c\n"
        assert view.view.tobytes() == view.data

    def test_empty_batch_encodes_to_empty_buffer(self) -> None:
        assert encode_batch([]).data == b""

    def test_unserializable_mapping_raises_sink_write_error(self) -> None:
        with pytest.raises(SinkWriteError) as exc_info:
            serialize_mapping_to_json_bytes({"x": object()})
        assert isinstance(exc_info.value.cause, TypeError)
