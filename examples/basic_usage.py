"""
Basic usage example for batchpipe.

Three producer threads submit two messages each to a pipeline that flushes
batches of five or every two seconds, whichever comes first. Output goes to
``async-logs.txt`` in the current directory and is echoed to stdout.
"""

import sys
import threading
import time
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from batchpipe import BatchPipeline, FileSink, FileSinkConfig, StdoutSink


class TeeSink:
    """Writes each batch to a file, then echoes it to stdout."""

    name = "tee"

    def __init__(self, path: Path) -> None:
        self._file = FileSink(FileSinkConfig(path=path))
        self._stdout = StdoutSink()

    async def start(self) -> None:
        await self._file.start()

    async def stop(self) -> None:
        await self._file.stop()

    async def append_batch(self, batch) -> None:
        await self._file.append_batch(batch)
        await self._stdout.append_batch(batch)


def main() -> None:
    pipeline = BatchPipeline(
        TeeSink(Path("async-logs.txt")),
        batch_size=5,
        batch_interval_ms=2000,
        on_sink_error=lambda err, batch, dropped: print(
            f"sink error ({len(batch)} messages, dropped={dropped}): {err}",
            file=sys.stderr,
        ),
    )

    def produce(n: int) -> None:
        for i in range(2):
            pipeline.submit(f"Thread {n} - Message {i}")

    threads = [
        threading.Thread(target=produce, args=(n,), name=f"Thread-{n}")
        for n in range(3)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    # The sixth message is flushed by the time trigger
    time.sleep(2.5)
    result = pipeline.shutdown(timeout_ms=5000)
    print(
        f"flushed {result.flushed} messages in {result.batches} batches "
        f"(state={result.state.value})"
    )


if __name__ == "__main__":
    main()
