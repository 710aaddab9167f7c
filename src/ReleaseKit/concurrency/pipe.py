# === NAVMAP v1 ===
# {
#   "module": "ReleaseKit.concurrency.pipe",
#   "purpose": "Bounded in-memory byte pipe connecting a producer thread to a consumer thread",
#   "sections": [
#     {
#       "id": "pipe",
#       "name": "Pipe",
#       "anchor": "function-pipe",
#       "kind": "function"
#     },
#     {
#       "id": "pipereader",
#       "name": "PipeReader",
#       "anchor": "class-pipereader",
#       "kind": "class"
#     },
#     {
#       "id": "pipewriter",
#       "name": "PipeWriter",
#       "anchor": "class-pipewriter",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Bounded in-memory byte pipe.

The publish path compresses a file on one thread while another thread streams
the compressed bytes to blob storage. :func:`Pipe` returns the two ends of a
bounded buffer shared by both threads:

- :class:`PipeWriter` blocks while the buffer is full.
- :class:`PipeReader` blocks while the buffer is empty and returns ``b""``
  once the writer closed cleanly.
- Either side may close with an error; the peer's next blocking call raises
  that error instead of waiting forever.

Both ends are :class:`io.RawIOBase` objects, so they can be wrapped by
``gzip.GzipFile`` on the producing side and handed to boto3's
``upload_fileobj`` on the consuming side.
"""

from __future__ import annotations

import io
import threading
from typing import Optional, Tuple

__all__ = ["Pipe", "PipeReader", "PipeWriter", "PipeClosedError", "DEFAULT_PIPE_CAPACITY"]

DEFAULT_PIPE_CAPACITY = 1 << 20


class PipeClosedError(BrokenPipeError):
    """Raised when writing to a pipe whose reader has gone away."""


class _PipeState:
    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("pipe capacity must be positive")
        self.capacity = capacity
        self.buffer = bytearray()
        self.cond = threading.Condition()
        self.writer_closed = False
        self.writer_error: Optional[BaseException] = None
        self.reader_closed = False
        self.reader_error: Optional[BaseException] = None


class PipeReader(io.RawIOBase):
    """Read end of a :func:`Pipe`."""

    def __init__(self, state: _PipeState) -> None:
        super().__init__()
        self._state = state

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        view = memoryview(b).cast("B")
        if not len(view):
            return 0
        state = self._state
        with state.cond:
            while not state.buffer:
                if state.reader_closed:
                    raise ValueError("read from closed pipe")
                if state.writer_error is not None:
                    raise state.writer_error
                if state.writer_closed:
                    return 0
                state.cond.wait()
            n = min(len(view), len(state.buffer))
            view[:n] = state.buffer[:n]
            del state.buffer[:n]
            state.cond.notify_all()
            return n

    def close_with_error(self, error: Optional[BaseException]) -> None:
        """Close the read side; pending and future writes raise ``error``."""
        state = self._state
        with state.cond:
            if not state.reader_closed:
                state.reader_closed = True
                state.reader_error = error
                state.buffer.clear()
            state.cond.notify_all()
        super().close()

    def close(self) -> None:
        if not self.closed:
            self.close_with_error(None)


class PipeWriter(io.RawIOBase):
    """Write end of a :func:`Pipe`."""

    def __init__(self, state: _PipeState) -> None:
        super().__init__()
        self._state = state

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        data = bytes(memoryview(b).cast("B"))
        state = self._state
        written = 0
        with state.cond:
            while written < len(data):
                if state.reader_closed:
                    raise state.reader_error or PipeClosedError("write to pipe with closed reader")
                if state.writer_closed:
                    raise ValueError("write to closed pipe")
                space = state.capacity - len(state.buffer)
                if space <= 0:
                    state.cond.wait()
                    continue
                chunk = data[written : written + space]
                state.buffer.extend(chunk)
                written += len(chunk)
                state.cond.notify_all()
        return written

    def close_with_error(self, error: Optional[BaseException]) -> None:
        """Close the write side; the reader sees EOF, or ``error`` when given."""
        state = self._state
        with state.cond:
            if not state.writer_closed:
                state.writer_closed = True
                state.writer_error = error
            state.cond.notify_all()
        super().close()

    def close(self) -> None:
        if not self.closed:
            self.close_with_error(None)


def Pipe(capacity: int = DEFAULT_PIPE_CAPACITY) -> Tuple[PipeReader, PipeWriter]:
    """Create a connected ``(reader, writer)`` pair."""
    state = _PipeState(capacity)
    return PipeReader(state), PipeWriter(state)
