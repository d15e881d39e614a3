"""
Root pytest configuration: markers, shared fixtures and timing helpers.
"""

from __future__ import annotations

import os
from collections.abc import Generator

import pytest

# Shared fixtures (mock_sink, pipeline_factory)
pytest_plugins = ("batchpipe.testing.fixtures",)

_MARKERS = {
    "critical": "ordering and no-loss guarantees that must never regress",
    "integration": "end-to-end runs with real producer and consumer threads",
    "slow": "waits on the real batch interval (seconds)",
    "property": "hypothesis-driven tests",
}


def get_test_timeout(base: float, cap: float = 5.0) -> float:
    """Scale a wait bound by ``CI_TIMEOUT_MULTIPLIER`` (at most ``cap`` times).

    Read on every call so tests can monkeypatch the variable.
    """
    try:
        factor = float(os.getenv("CI_TIMEOUT_MULTIPLIER") or 1.0)
    except ValueError:
        factor = 1.0
    return base * max(1.0, min(factor, cap))


def pytest_configure(config: pytest.Config) -> None:
    for name, description in _MARKERS.items():
        config.addinivalue_line("markers", f"{name}: {description}")


@pytest.fixture(autouse=True)
def reset_diagnostics_cache() -> Generator[None, None, None]:
    """Forget the cached internal-logging flag and any captured writer.

    Pipelines built with ``internal_logging_enabled=True`` switch diagnostics
    on process-wide; without the reset later tests would inherit it.
    """
    import batchpipe.core.diagnostics as diag

    diag._internal_logging_enabled = None
    yield
    diag._internal_logging_enabled = None
    diag.set_writer_for_tests(None)
