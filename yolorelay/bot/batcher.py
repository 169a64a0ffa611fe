"""
Output batching for streamed assistant replies.

The pending buffer only decides *when* to flush; what gets displayed on
every flush is the cumulative transcript.
"""

import time
from typing import Callable, Optional


class OutputBatcher:
    """Accumulates output lines and signals when a flush is due."""

    def __init__(
        self,
        flush_interval: float = 1.0,
        max_buffer_size: int = 2000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.flush_interval = flush_interval
        self.max_buffer_size = max_buffer_size
        self._clock = clock
        self._chunks: list[str] = []
        self._buffer: list[str] = []
        self._buffer_length = 0
        self.last_flush_time = clock()

    @property
    def transcript(self) -> str:
        return "".join(self._chunks)

    @property
    def pending(self) -> str:
        return "".join(self._buffer)

    def push(self, line: str) -> Optional[str]:
        """
        Append a line and flush if the interval elapsed or the buffer is too big.

        Returns:
            The flushed chunk, or None if no flush happened
        """
        self._chunks.append(line)
        self._buffer.append(line)
        self._buffer_length += len(line)

        elapsed = self._clock() - self.last_flush_time
        if elapsed >= self.flush_interval or self._buffer_length > self.max_buffer_size:
            return self._flush()
        return None

    def drain(self) -> Optional[str]:
        """Flush whatever is left at end of stream."""
        return self._flush()

    def _flush(self) -> Optional[str]:
        chunk = self.pending
        if not chunk.strip():
            return None
        self._buffer.clear()
        self._buffer_length = 0
        self.last_flush_time = self._clock()
        return chunk
