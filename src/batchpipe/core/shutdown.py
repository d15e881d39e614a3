"""Exit-time drain for live pipelines.

This module provides:
- Atexit handler to drain pending messages on normal interpreter exit
- Opt-in signal handlers for SIGTERM/SIGINT graceful shutdown
- WeakSet-based pipeline registration to avoid memory leaks

The handlers are best-effort: they attempt to drain but never block longer
than the configured timeout and never raise.
"""

from __future__ import annotations

import atexit
import signal
import sys
import weakref
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from types import FrameType

    from .pipeline import BatchPipeline


_shutdown_in_progress: bool = False
_registered_pipelines: weakref.WeakSet[Any] = weakref.WeakSet()
_original_handlers: dict[int, Any] = {}


def _get_shutdown_settings() -> dict[str, Any]:
    try:
        from .settings import Settings

        core = Settings().core
        return {
            "atexit_drain_enabled": core.atexit_drain_enabled,
            "atexit_drain_timeout_ms": core.atexit_drain_timeout_ms,
        }
    except Exception:  # pragma: no cover - unreadable environment
        return {
            "atexit_drain_enabled": True,
            "atexit_drain_timeout_ms": 2000,
        }


def register_pipeline(pipeline: BatchPipeline) -> None:
    """Register a pipeline for automatic drain at exit."""
    _registered_pipelines.add(pipeline)


def unregister_pipeline(pipeline: BatchPipeline) -> None:
    """Unregister a pipeline, typically after it has fully drained."""
    _registered_pipelines.discard(pipeline)


def registered_pipelines() -> list[Any]:
    try:
        return list(_registered_pipelines)
    except Exception:  # pragma: no cover - rare GC race
        return []


def _drain_single_pipeline(pipeline: Any, timeout_ms: int) -> None:
    from .diagnostics import warn
    from .errors import DrainTimeoutError

    name = getattr(pipeline, "name", type(pipeline).__name__)
    try:
        pipeline.shutdown(wait=True, timeout_ms=timeout_ms)
    except DrainTimeoutError as exc:
        remaining = exc.result.remaining if exc.result is not None else None
        warn("shutdown", "exit drain timed out", pipeline=name, remaining=remaining)
    except Exception as exc:  # noqa: BLE001
        warn("shutdown", "exit drain failed", pipeline=name, error=str(exc))


def _atexit_handler() -> None:
    """Best-effort drain of all registered pipelines; never raises."""
    global _shutdown_in_progress

    if _shutdown_in_progress:
        return

    settings = _get_shutdown_settings()
    if not settings["atexit_drain_enabled"]:
        return

    _shutdown_in_progress = True
    default_timeout_ms = settings["atexit_drain_timeout_ms"]
    for pipeline in registered_pipelines():
        pipeline_settings = getattr(pipeline, "settings", None)
        timeout_ms = getattr(
            pipeline_settings, "atexit_drain_timeout_ms", default_timeout_ms
        )
        _drain_single_pipeline(pipeline, timeout_ms)


def _signal_handler(signum: int, _frame: FrameType | None) -> None:
    """Drain pipelines, then re-raise the signal with the default handler."""
    if _shutdown_in_progress:
        return

    _atexit_handler()

    try:
        signal.signal(signum, signal.SIG_DFL)
        signal.raise_signal(signum)
    except Exception:  # pragma: no cover - rare signal error
        sys.exit(128 + signum)


def install_signal_handlers() -> None:
    """Install SIGINT/SIGTERM handlers that drain before terminating.

    Must be called from the main thread. SIGTERM is skipped where the
    platform does not provide it.
    """
    signums = [signal.SIGINT]
    if hasattr(signal, "SIGTERM"):
        signums.append(signal.SIGTERM)
    for signum in signums:
        try:
            _original_handlers[signum] = signal.signal(signum, _signal_handler)
        except Exception:  # pragma: no cover - rare signal error
            pass


def restore_signal_handlers() -> None:
    for signum, handler in list(_original_handlers.items()):
        try:
            signal.signal(signum, handler)
        except Exception:  # pragma: no cover - rare signal error
            pass
        _original_handlers.pop(signum, None)


atexit.register(_atexit_handler)
