"""
Error taxonomy for the batched write pipeline.

Every failure the pipeline reports is a subclass of ``BatchPipeError`` and
carries a category plus a small context mapping for diagnostics. None of
these errors are fatal to the process:

- BackpressureError: bounded queue full, wait limit exhausted
- PipelineShuttingDownError: submission after shutdown was requested
- SinkWriteError: the sink failed a batch append (handled by the consumer)
- DrainTimeoutError: shutdown wait elapsed while the drain continues
- ConfigurationError: invalid settings or overrides
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from .pipeline import DrainResult


class ErrorCategory(str, Enum):
    """Coarse error categories used for diagnostics and metrics labels."""

    BACKPRESSURE = "backpressure"
    LIFECYCLE = "lifecycle"
    SINK = "sink"
    CONFIG = "config"
    SYSTEM = "system"


class BatchPipeError(Exception):
    """Base class for all pipeline errors."""

    default_category: ErrorCategory = ErrorCategory.SYSTEM

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.context:
            payload["context"] = dict(self.context)
        if self.cause is not None:
            payload["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return payload


class BackpressureError(BatchPipeError):
    """Bounded queue is full and the producer's wait limit was exceeded."""

    default_category = ErrorCategory.BACKPRESSURE


class QueueClosedError(BatchPipeError):
    """Raised by the message queue once it stops accepting new messages."""

    default_category = ErrorCategory.LIFECYCLE


class PipelineShuttingDownError(BatchPipeError):
    """Submission attempted after shutdown was requested."""

    default_category = ErrorCategory.LIFECYCLE


class SinkWriteError(BatchPipeError):
    """A sink failed to append a batch."""

    default_category = ErrorCategory.SINK


class DrainTimeoutError(BatchPipeError):
    """Shutdown wait elapsed before the drain completed.

    The consumer keeps draining in the background; ``result`` holds the
    counters observed at the moment the wait gave up.
    """

    default_category = ErrorCategory.LIFECYCLE

    def __init__(
        self,
        message: str,
        *,
        result: DrainResult | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.result = result


class ConfigurationError(BatchPipeError):
    """Settings or constructor overrides failed validation."""

    default_category = ErrorCategory.CONFIG


__all__ = [
    "ErrorCategory",
    "BatchPipeError",
    "BackpressureError",
    "QueueClosedError",
    "PipelineShuttingDownError",
    "SinkWriteError",
    "DrainTimeoutError",
    "ConfigurationError",
]
