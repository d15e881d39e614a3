"""
Structured internal diagnostics for non-fatal errors.

Components report problems with ``warn(component, message, **fields)``.
Payloads are JSON lines on stderr, emitted only when internal logging is
enabled (``BATCHPIPE_CORE__INTERNAL_LOGGING_ENABLED`` or
``PipelineSettings.internal_logging_enabled``). Diagnostics never raise.
"""

from __future__ import annotations

import sys
import threading
import time
from typing import Any, Callable

import orjson

# Cached on first access; tests reset this to None for isolation
_internal_logging_enabled: bool | None = None

_RATE_LIMIT_SECONDS = 5.0
_rate_lock = threading.Lock()
_last_emitted: dict[str, float] = {}

DiagnosticWriter = Callable[[dict[str, Any]], None]


def _default_writer(payload: dict[str, Any]) -> None:
    line = orjson.dumps(payload, default=str).decode("utf-8")
    sys.stderr.write(line + "\n")
    sys.stderr.flush()


_writer: DiagnosticWriter = _default_writer


def is_enabled() -> bool:
    global _internal_logging_enabled
    if _internal_logging_enabled is None:
        try:
            from .settings import Settings

            _internal_logging_enabled = bool(Settings().core.internal_logging_enabled)
        except Exception:
            _internal_logging_enabled = False
    return _internal_logging_enabled


def configure(*, enabled: bool) -> None:
    global _internal_logging_enabled
    _internal_logging_enabled = bool(enabled)


def set_writer_for_tests(writer: DiagnosticWriter | None) -> None:
    """Replace the payload writer; ``None`` restores stderr output."""
    global _writer
    _writer = writer or _default_writer
    with _rate_lock:
        _last_emitted.clear()


def _rate_limited(key: str | None) -> bool:
    if key is None:
        return False
    now = time.monotonic()
    with _rate_lock:
        last = _last_emitted.get(key)
        if last is not None and now - last < _RATE_LIMIT_SECONDS:
            return True
        _last_emitted[key] = now
    return False


def emit(
    level: str,
    component: str,
    message: str,
    *,
    _rate_limit_key: str | None = None,
    **fields: Any,
) -> None:
    if not is_enabled():
        return
    if _rate_limited(_rate_limit_key):
        return
    payload: dict[str, Any] = {
        "ts": time.time(),
        "level": level,
        "component": component,
        "message": message,
    }
    payload.update(fields)
    try:
        _writer(payload)
    except Exception:
        # Diagnostics must never break the pipeline
        pass


def warn(
    component: str,
    message: str,
    *,
    _rate_limit_key: str | None = None,
    **fields: Any,
) -> None:
    emit("WARN", component, message, _rate_limit_key=_rate_limit_key, **fields)


def debug(component: str, message: str, **fields: Any) -> None:
    emit("DEBUG", component, message, **fields)
