from __future__ import annotations

from typing import Any

import orjson
import pytest

from batchpipe.core import diagnostics


@pytest.fixture
def captured() -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    diagnostics.set_writer_for_tests(out.append)
    return out


def test_disabled_by_default(captured: list[dict[str, Any]]) -> None:
    diagnostics.warn("queue", "ignored")
    assert diagnostics.is_enabled() is False
    assert captured == []


def test_enabled_from_environment(
    monkeypatch: pytest.MonkeyPatch, captured: list[dict[str, Any]]
) -> None:
    monkeypatch.setenv("BATCHPIPE_CORE__INTERNAL_LOGGING_ENABLED", "true")
    diagnostics.warn("sink", "flush error", batch_size=3)

    assert len(captured) == 1
    payload = captured[0]
    assert payload["level"] == "WARN"
    assert payload["component"] == "sink"
    assert payload["message"] == "flush error"
    assert payload["batch_size"] == 3
    assert isinstance(payload["ts"], float)


def test_debug_level(captured: list[dict[str, Any]]) -> None:
    diagnostics.configure(enabled=True)
    diagnostics.debug("worker", "tick")
    assert captured[0]["level"] == "DEBUG"


def test_rate_limit_key_suppresses_repeats(captured: list[dict[str, Any]]) -> None:
    diagnostics.configure(enabled=True)
    for _ in range(3):
        diagnostics.warn("worker", "loop error", _rate_limit_key="loop")
    diagnostics.warn("worker", "other")
    assert [p["message"] for p in captured] == ["loop error", "other"]


def test_writer_failure_is_swallowed() -> None:
    def broken(_payload: dict[str, Any]) -> None:
        raise OSError("stderr closed")

    diagnostics.configure(enabled=True)
    diagnostics.set_writer_for_tests(broken)
    diagnostics.warn("sink", "still fine")


def test_default_writer_emits_json_line(capsys: pytest.CaptureFixture[str]) -> None:
    diagnostics.configure(enabled=True)
    diagnostics.warn("pipeline", "drain timed out", remaining=2)

    err = capsys.readouterr().err.strip()
    payload = orjson.loads(err)
    assert payload["message"] == "drain timed out"
    assert payload["remaining"] == 2
