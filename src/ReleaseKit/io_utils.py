"""Durable file writes: temporary file + fsync + ``os.replace``.

Either the whole file lands at its destination or nothing does. Temporary
files live next to the destination so the final rename never crosses a
filesystem boundary.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

__all__ = ["atomic_write_bytes", "fsync_directory"]


def fsync_directory(path: str | Path) -> None:
    """Flush a directory entry so a preceding rename survives a crash."""
    flag = getattr(os, "O_DIRECTORY", None)
    if flag is None:
        return
    dir_fd = os.open(path, flag)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def atomic_write_bytes(dest_path: str | Path, data: bytes, *, mode: int = 0o644) -> int:
    """Write ``data`` to ``dest_path`` atomically and return the byte count.

    Raises:
        OSError: If the temporary file cannot be written or renamed. The
            temporary file is removed before the error propagates.
    """
    dest_path = Path(dest_path)
    dest_dir = dest_path.parent
    dest_dir.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=dest_dir, prefix=".part-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, dest_path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise

    fsync_directory(dest_dir)
    return len(data)
