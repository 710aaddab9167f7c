"""SHA-256 checksum manifests in coreutils ``sha256sum -b`` format.

Each line reads ``<hex digest> *<relative/path>``; the binary-mode asterisk
keeps the file readable by ``sha256sum --check``.
"""

from __future__ import annotations

import hashlib
import os
import posixpath
from dataclasses import dataclass
from typing import Iterable, List, Optional

from ReleaseKit.concurrency import RunContext

__all__ = [
    "ManifestEntry",
    "MANIFEST_NAME",
    "format_manifest",
    "parse_manifest",
    "sha256_file",
]

MANIFEST_NAME = "checksums.txt"

_CHUNK_SIZE = 1 << 16


@dataclass(frozen=True)
class ManifestEntry:
    checksum: str
    path: str

    def line(self) -> str:
        return f"{self.checksum} *{self.path}\n"


def sha256_file(path: str | os.PathLike, ctx: Optional[RunContext] = None) -> str:
    """Return the lowercase hex SHA-256 of a file, checking ``ctx`` per chunk."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        while True:
            if ctx is not None:
                ctx.raise_if_done()
            chunk = handle.read(_CHUNK_SIZE)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def format_manifest(entries: Iterable[ManifestEntry]) -> bytes:
    return "".join(entry.line() for entry in entries).encode("utf-8")


def parse_manifest(text: str) -> List[ManifestEntry]:
    """Parse manifest lines, skipping blanks and lines without a path.

    Examples:
        >>> parse_manifest("ab12 *linux/amd64/agent\\n")
        [ManifestEntry(checksum='ab12', path='linux/amd64/agent')]
    """
    entries: List[ManifestEntry] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        checksum, _, path = line.partition(" ")
        path = path.strip().lstrip("*")
        if not path:
            continue
        entries.append(ManifestEntry(checksum=checksum, path=posixpath.normpath(path).lstrip("/")))
    return entries
