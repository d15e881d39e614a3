from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Sequence

from ...core.message import Message
from ...core.serialization import LineMode, encode_batch


@dataclass
class FileSinkConfig:
    path: Path
    mode: LineMode = "text"
    fsync: bool = False
    create_dirs: bool = True


class FileSink:
    """Append-only file sink.

    Each batch is encoded to one buffer and appended with a single write,
    followed by a flush (and ``os.fsync`` when configured) so a batch is
    either fully handed to the OS or the call raises.
    """

    name = "file"

    def __init__(self, config: FileSinkConfig) -> None:
        if config.mode not in ("text", "json"):
            raise ValueError(f"unsupported file mode: {config.mode!r}")
        self._cfg = config
        self._path = Path(config.path)
        self._fh: BinaryIO | None = None

    @property
    def path(self) -> Path:
        return self._path

    async def start(self) -> None:
        self._open()

    async def stop(self) -> None:
        fh, self._fh = self._fh, None
        if fh is not None:
            fh.close()

    async def append_batch(self, batch: Sequence[Message]) -> None:
        if not batch:
            return
        fh = self._open()
        view = encode_batch(batch, self._cfg.mode)
        # Runs on the consumer's private loop; writing inline blocks nothing else
        fh.write(view.data)
        fh.flush()
        if self._cfg.fsync:
            os.fsync(fh.fileno())

    def _open(self) -> BinaryIO:
        if self._fh is None:
            if self._cfg.create_dirs:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "ab")  # noqa: SIM115
        return self._fh
