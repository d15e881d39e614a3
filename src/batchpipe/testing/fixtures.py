"""
Pytest fixtures for pipeline tests.

Registered from the root ``conftest.py`` via ``pytest_plugins``. Requires the
``testing`` extra (pytest).
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any

import pytest

from ..core.errors import DrainTimeoutError
from ..core.pipeline import BatchPipeline
from .mocks import MockSink


@pytest.fixture
def mock_sink() -> MockSink:
    return MockSink()


@pytest.fixture
def pipeline_factory() -> Generator[Callable[..., BatchPipeline], None, None]:
    """Build pipelines that are always drained at test teardown.

    Defaults keep tests fast: short poll timeout, no exit-time registration.
    """
    created: list[BatchPipeline] = []

    def _make(sink: Any | None = None, **overrides: Any) -> BatchPipeline:
        overrides.setdefault("poll_timeout_ms", 20)
        overrides.setdefault("atexit_drain_enabled", False)
        pipeline = BatchPipeline(sink if sink is not None else MockSink(), **overrides)
        created.append(pipeline)
        return pipeline

    yield _make

    for pipeline in created:
        try:
            pipeline.shutdown(wait=True, timeout_ms=2000)
        except DrainTimeoutError:
            pass
