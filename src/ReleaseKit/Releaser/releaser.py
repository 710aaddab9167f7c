# === NAVMAP v1 ===
# {
#   "module": "ReleaseKit.Releaser.releaser",
#   "purpose": "Publish compiled artifacts with a checksum manifest and flip the release pointer",
#   "sections": [
#     {
#       "id": "publishparameters",
#       "name": "PublishParameters",
#       "anchor": "class-publishparameters",
#       "kind": "class"
#     },
#     {
#       "id": "releaseparameters",
#       "name": "ReleaseParameters",
#       "anchor": "class-releaseparameters",
#       "kind": "class"
#     },
#     {
#       "id": "walk-files",
#       "name": "walk_files",
#       "anchor": "function-walk-files",
#       "kind": "function"
#     },
#     {
#       "id": "releaser",
#       "name": "Releaser",
#       "anchor": "class-releaser",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Artifact publishing and release promotion.

Responsibilities
----------------
- :meth:`Releaser.publish` walks a build directory and uploads every selected
  regular file gzip-compressed under ``<app>/<version>/<relative path>``. The
  file is compressed on one thread and streamed to the store on another,
  joined by an in-memory :func:`~ReleaseKit.concurrency.Pipe`, so nothing is
  staged on disk or held whole in memory.
- After every artifact succeeded, a second traversal hashes the original
  (uncompressed) files into ``checksums.txt``, which is written next to the
  artifacts and uploaded as ``<app>/<version>/checksums.txt``.
- :meth:`Releaser.release` writes the release pointer
  ``<app>/<environment>.txt`` whose body is the version string.

Failure Semantics
-----------------
Errors propagate unchanged and nothing is rolled back: a failed publish may
leave some artifacts uploaded but never a manifest. Cancellation is observed
between files and between copied chunks.
"""

from __future__ import annotations

import gzip
import logging
import os
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ReleaseKit.Releaser.blobstore import BlobStore, S3BlobStore
from ReleaseKit.Releaser.manifest import (
    MANIFEST_NAME,
    ManifestEntry,
    format_manifest,
    sha256_file,
)
from ReleaseKit.concurrency import ErrorGroup, Pipe, RunContext
from ReleaseKit.io_utils import atomic_write_bytes

__all__ = [
    "PublishParameters",
    "ReleaseParameters",
    "Releaser",
    "IncludeFilter",
    "walk_files",
    "DEFAULT_ENVIRONMENT",
]

logger = logging.getLogger(__name__)

CONTENT_ENCODING_GZIP = "gzip"
CONTENT_TYPE_OCTET_STREAM = "application/octet-stream"
DEFAULT_ENVIRONMENT = "release"

_CHUNK_SIZE = 1 << 16

IncludeFilter = Callable[[Path, os.stat_result], bool]


@dataclass
class PublishParameters:
    """Inputs to :meth:`Releaser.publish`.

    Attributes:
        path: Build directory to walk.
        bucket: Destination bucket; empty means the releaser's default bucket.
        app: Key prefix for the application.
        version: Version segment of every key.
        include_filter: Optional predicate ``(path, stat) -> bool`` selecting files.
        tags: Optional object tags applied to artifacts and the manifest.
        write_local_manifest: Also write ``checksums.txt`` into ``path``. An
            existing root ``checksums.txt`` is skipped either way.
    """

    path: Path
    bucket: str
    app: str
    version: str
    include_filter: Optional[IncludeFilter] = None
    tags: Dict[str, str] = field(default_factory=dict)
    write_local_manifest: bool = True


@dataclass
class ReleaseParameters:
    bucket: str
    app: str
    version: str
    environment: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)


def walk_files(
    base: Path,
    include_filter: Optional[IncludeFilter] = None,
    *,
    skip: Optional[Path] = None,
) -> Iterator[Tuple[Path, str]]:
    """Yield ``(path, relative_posix_path)`` for regular files under ``base``.

    Entries are visited in lexical order per directory, directories and files
    interleaved. Symbolic links to directories are not descended into.
    """
    base = Path(base)

    def _walk(directory: Path) -> Iterator[Tuple[Path, str]]:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)
        for entry in entries:
            path = Path(entry.path)
            if entry.is_dir(follow_symlinks=False):
                yield from _walk(path)
                continue
            if not entry.is_file():
                continue
            if skip is not None and path == skip:
                continue
            if include_filter is not None and not include_filter(path, entry.stat()):
                continue
            yield path, path.relative_to(base).as_posix()

    yield from _walk(base)


class Releaser:
    """Publishes build outputs and promotes versions through a :class:`BlobStore`.

    ``default_bucket`` is used for parameters that leave ``bucket`` empty.
    """

    def __init__(self, store: BlobStore, *, default_bucket: Optional[str] = None) -> None:
        self.store = store
        self.default_bucket = default_bucket

    @classmethod
    def from_config(cls, settings) -> "Releaser":
        """Build a releaser backed by S3 from :class:`~ReleaseKit.config.ReleaserSettings`."""
        return cls(
            S3BlobStore(region=settings.region, endpoint_url=settings.endpoint_url),
            default_bucket=settings.bucket,
        )

    def _bucket(self, requested: str) -> str:
        bucket = requested or self.default_bucket
        if not bucket:
            raise ValueError("bucket is required")
        return bucket

    def publish(self, params: PublishParameters, ctx: Optional[RunContext] = None) -> List[ManifestEntry]:
        """Upload artifacts, then the checksum manifest; return the manifest entries.

        A ``checksums.txt`` already present at the root of ``params.path`` is
        never uploaded or listed, whether or not a local copy is written.
        """
        ctx = ctx or RunContext.background()
        bucket = self._bucket(params.bucket)
        base = Path(params.path)
        skip = base / MANIFEST_NAME

        for path, rel in walk_files(base, params.include_filter, skip=skip):
            ctx.raise_if_done()
            key = posixpath.join(params.app, params.version, rel)
            logger.info("Uploading: %r", key)
            self._upload_compressed(ctx, bucket, params, path, key)

        entries = self._checksums(ctx, base, params.include_filter, skip)
        manifest = format_manifest(entries)

        if params.write_local_manifest:
            logger.info("Writing: %r", str(skip))
            atomic_write_bytes(skip, manifest)

        ctx.raise_if_done()
        key = posixpath.join(params.app, params.version, MANIFEST_NAME)
        logger.info("Uploading: %r", key)
        self.store.put(bucket, key, manifest, tags=params.tags)
        return entries

    def release(self, params: ReleaseParameters, ctx: Optional[RunContext] = None) -> str:
        """Point ``<app>/<environment>.txt`` at ``params.version``; return the key."""
        ctx = ctx or RunContext.background()
        ctx.raise_if_done()
        bucket = self._bucket(params.bucket)
        environment = params.environment or DEFAULT_ENVIRONMENT
        key = posixpath.join(params.app, f"{environment}.txt")
        logger.info("Releasing: %r - %s", key, params.version)
        self.store.put(bucket, key, params.version.encode("utf-8"), tags=params.tags)
        return key

    def _upload_compressed(self, ctx: RunContext, bucket: str, params: PublishParameters, path: Path, key: str) -> None:
        reader, writer = Pipe()
        group = ErrorGroup(ctx, name="publish")

        def upload(_: RunContext) -> None:
            try:
                self.store.put(
                    bucket,
                    key,
                    reader,
                    content_encoding=CONTENT_ENCODING_GZIP,
                    content_type=CONTENT_TYPE_OCTET_STREAM,
                    tags=params.tags,
                )
            except BaseException as exc:
                reader.close_with_error(exc)
                raise
            reader.close()

        def compress(gctx: RunContext) -> None:
            try:
                with open(path, "rb") as src, gzip.GzipFile(fileobj=writer, mode="wb", mtime=0) as gz:
                    while True:
                        gctx.raise_if_done()
                        chunk = src.read(_CHUNK_SIZE)
                        if not chunk:
                            break
                        gz.write(chunk)
            except BaseException as exc:
                writer.close_with_error(exc)
                raise
            writer.close()

        group.go(upload)
        group.go(compress)
        group.wait()

    def _checksums(
        self,
        ctx: RunContext,
        base: Path,
        include_filter: Optional[IncludeFilter],
        skip: Optional[Path],
    ) -> List[ManifestEntry]:
        entries = []
        for path, rel in walk_files(base, include_filter, skip=skip):
            ctx.raise_if_done()
            entries.append(ManifestEntry(checksum=sha256_file(path, ctx), path=rel))
        return entries
