from __future__ import annotations

import sys
from typing import Sequence

from ...core.message import Message
from ...core.serialization import LineMode, encode_batch


class StdoutSink:
    """Sink that echoes each batch to stdout, one line per message.

    - ``mode="text"`` writes ``[producer][epoch-ms] payload`` lines
    - ``mode="json"`` writes one JSON object per line
    - The whole batch is written with a single write + flush
    """

    name = "stdout"

    def __init__(self, *, mode: LineMode = "text") -> None:
        if mode not in ("text", "json"):
            raise ValueError(f"unsupported stdout mode: {mode!r}")
        self._mode: LineMode = mode

    async def start(self) -> None:  # lifecycle placeholder
        return None

    async def stop(self) -> None:  # lifecycle placeholder
        return None

    async def append_batch(self, batch: Sequence[Message]) -> None:
        if not batch:
            return
        view = encode_batch(batch, self._mode)
        # Runs on the consumer's private loop; writing inline blocks nothing else
        buf = sys.stdout.buffer
        buf.write(view.data)
        buf.flush()
