"""
Testing utilities for batchpipe sinks and pipelines.

Mocks and validators are always available. Pytest fixtures require the
testing extra: `pip install batchpipe[testing]`

Example:
    from batchpipe.testing import MockSink, validate_sink

    def test_my_sink():
        result = validate_sink(MySink())
        assert result.valid
"""

from .mocks import MockSink, MockSinkConfig, MockSinkError, SyncMockSink
from .validators import (
    SinkProtocolError,
    SinkValidation,
    validate_sink,
    validate_sink_lifecycle,
)

__all__ = [
    "MockSink",
    "MockSinkConfig",
    "MockSinkError",
    "SyncMockSink",
    "validate_sink",
    "validate_sink_lifecycle",
    "SinkValidation",
    "SinkProtocolError",
]
