"""
Configuration models for batchpipe using Pydantic v2 Settings.

Values come from constructor arguments or ``BATCHPIPE_``-prefixed environment
variables with ``__`` as the nested delimiter, e.g.
``BATCHPIPE_CORE__BATCH_SIZE=50``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LATEST_CONFIG_SCHEMA_VERSION = "1.0"


class PipelineSettings(BaseModel):
    """Batching, backpressure and lifecycle settings for one pipeline."""

    batch_size: int = Field(
        default=100,
        ge=1,
        description="Number of messages that triggers a size-based flush",
    )
    batch_interval_ms: int = Field(
        default=2000,
        ge=1,
        description="Maximum staleness of a partial batch before it is flushed",
    )
    queue_capacity: int | None = Field(
        default=None,
        ge=1,
        description="Backpressure bound for the message queue; None is unbounded",
    )
    poll_timeout_ms: int = Field(
        default=500,
        ge=1,
        description="Longest idle wait of the consumer before it re-checks triggers",
    )
    shutdown_timeout_ms: int | None = Field(
        default=None,
        ge=0,
        description="Default bound for shutdown(wait=True); None waits forever",
    )
    backpressure_policy: Literal["wait", "reject"] = Field(
        default="wait",
        description="Behaviour of submit() when a bounded queue is full",
    )
    backpressure_wait_ms: int | None = Field(
        default=None,
        ge=0,
        description="Maximum producer wait for queue space; None waits for space",
    )
    sink_error_policy: Literal["requeue", "drop"] = Field(
        default="drop",
        description="Whether a failed batch is retried or dropped and reported",
    )
    sink_retry_backoff_ms: int = Field(
        default=500,
        ge=0,
        description="Delay before a requeued batch is retried",
    )
    sink_retry_limit: int | None = Field(
        default=None,
        ge=1,
        description="Attempts before a requeued batch is dropped; None retries forever",
    )
    internal_logging_enabled: bool = Field(
        default=False,
        description=(
            "Emit structured diagnostics for internal errors; enabling it on "
            "any pipeline turns diagnostics on process-wide"
        ),
    )
    enable_metrics: bool = Field(
        default=False,
        description="Enable Prometheus-compatible metrics",
    )
    atexit_drain_enabled: bool = Field(
        default=True,
        description="Drain live pipelines when the interpreter exits",
    )
    atexit_drain_timeout_ms: int = Field(
        default=2000,
        ge=0,
        description="Bound for the exit-time drain of each pipeline",
    )

    @property
    def batch_interval_seconds(self) -> float:
        return self.batch_interval_ms / 1000.0

    @property
    def poll_timeout_seconds(self) -> float:
        return self.poll_timeout_ms / 1000.0

    @property
    def shutdown_timeout_seconds(self) -> float | None:
        return ms_to_seconds(self.shutdown_timeout_ms)

    @property
    def backpressure_wait_seconds(self) -> float | None:
        return ms_to_seconds(self.backpressure_wait_ms)


class SinkSettings(BaseModel):
    """Sink selection for the zero-config ``get_pipeline()``."""

    kind: Literal["stdout", "file"] = Field(default="stdout")
    file_path: Path | None = Field(
        default=None,
        description="Target file when kind is 'file'",
    )
    file_fsync: bool = Field(default=False, description="fsync after each batch")
    line_mode: Literal["text", "json"] = Field(default="text")

    @field_validator("file_path")
    @classmethod
    def _expand_path(cls, value: Path | None) -> Path | None:
        if value is None:
            return None
        return value.expanduser()


class Settings(BaseSettings):
    """Top-level configuration model with versioning and settings groups."""

    schema_version: str = Field(default=LATEST_CONFIG_SCHEMA_VERSION)

    core: PipelineSettings = Field(default_factory=PipelineSettings)
    sinks: SinkSettings = Field(default_factory=SinkSettings)

    model_config = SettingsConfigDict(
        env_prefix="BATCHPIPE_",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    def to_json(self) -> str:
        import json

        return json.dumps(self.model_dump(mode="json", exclude_none=True))

    def to_dict(self) -> dict[str, object]:
        from typing import cast

        return cast(
            dict[str, object],
            self.model_dump(mode="json", exclude_none=True),
        )


def ms_to_seconds(value: int | None) -> float | None:
    if value is None:
        return None
    return value / 1000.0
