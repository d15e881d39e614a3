"""Example custom sink that stores each batch in one SQLite transaction."""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass, field
from typing import Sequence

from batchpipe import Message


@dataclass
class SQLiteSinkConfig:
    """Configuration for SQLite sink."""

    database: str = field(
        default_factory=lambda: os.getenv("BATCHPIPE_SQLITE_PATH", "batchpipe.db")
    )
    table: str = "messages"


class SQLiteSink:
    """Sync sink: the pipeline calls it inline on its consumer thread."""

    name = "sqlite"

    def __init__(self, config: SQLiteSinkConfig | None = None) -> None:
        self._config = config or SQLiteSinkConfig()
        self._conn: sqlite3.Connection | None = None

    def start(self) -> None:
        # check_same_thread=False: opened in start(), used by the consumer
        self._conn = sqlite3.connect(self._config.database, check_same_thread=False)
        self._conn.execute(
            f"CREATE TABLE IF NOT EXISTS {self._config.table} ("
            "sequence INTEGER PRIMARY KEY, producer TEXT, enqueued_at REAL, payload TEXT)"
        )
        self._conn.commit()

    def stop(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def append_batch(self, batch: Sequence[Message]) -> None:
        if self._conn is None:
            self.start()
        assert self._conn is not None
        rows = [(m.sequence, m.producer, m.enqueued_at, m.text) for m in batch]
        # One transaction per batch: all rows or none
        with self._conn:
            self._conn.executemany(
                f"INSERT OR REPLACE INTO {self._config.table} VALUES (?, ?, ?, ?)",
                rows,
            )


if __name__ == "__main__":
    from batchpipe import BatchPipeline

    with BatchPipeline(SQLiteSink(), batch_size=10) as pipeline:
        for i in range(25):
            pipeline.submit(f"row {i}")
