"""Download the latest (or a pinned) release of a binary for this machine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ReleaseKit.Compiler.work import host_arch, host_os
from ReleaseKit.Download import Downloader
from ReleaseKit.Releases.releases import Releases, Requirements
from ReleaseKit.concurrency import RunContext
from ReleaseKit.errors import ReleaseKitError, ReleaseNotFoundError, StageError

__all__ = ["DownloadLatestConfig", "download_latest", "DEFAULT_DOWNLOAD_DIR"]

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_DIR = "../bin"
_DOWNLOAD_TIMEOUT_S = 60.0


@dataclass
class DownloadLatestConfig:
    """Inputs to :func:`download_latest`.

    Attributes:
        base_url: Root of the release file server.
        which: Application to download.
        binary: Binary within the release; defaults to ``which``.
        pinned: Version to use instead of the current release.
        directory: Download directory.
    """

    base_url: str
    which: str
    binary: Optional[str] = None
    pinned: Optional[str] = None
    directory: str = DEFAULT_DOWNLOAD_DIR


def download_latest(
    config: DownloadLatestConfig,
    ctx: Optional[RunContext] = None,
    *,
    downloader: Optional[Downloader] = None,
    releases: Optional[Releases] = None,
) -> Path:
    """Resolve and download ``config.binary`` for the host OS and architecture.

    Returns:
        Local path of the executable (mode ``0o700``).

    Raises:
        StageError: Labelled ``version failed``, ``resolve failed`` or
            ``download (<url>) problem``.
        ReleaseNotFoundError: When the release has no such binary.
    """
    owns_releases = releases is None
    if releases is None:
        releases = Releases(f"{config.base_url.rstrip('/')}/{config.which}")
    try:
        return _download_latest(config, ctx, downloader, releases)
    finally:
        if owns_releases:
            releases.close()


def _download_latest(
    config: DownloadLatestConfig,
    ctx: Optional[RunContext],
    downloader: Optional[Downloader],
    releases: Releases,
) -> Path:
    if config.pinned:
        version = config.pinned
    else:
        try:
            version = releases.version(ctx)
        except Exception as exc:
            raise StageError("version failed", exc) from exc

    goos = host_os()
    try:
        urls = releases.resolve_urls(Requirements(version=version, os=goos, arch=host_arch()), ctx)
    except Exception as exc:
        raise StageError("resolve failed", exc) from exc

    binary = config.binary or config.which
    url = urls.get(binary)
    if url is None:
        raise ReleaseNotFoundError(f"resolve binary failed: {binary}")

    owned = downloader is None
    if downloader is None:
        try:
            downloader = Downloader(_DOWNLOAD_TIMEOUT_S, config.directory)
        except ReleaseKitError as exc:
            raise StageError("download failed", exc) from exc

    logger.info("downloading %s %s", config.which, version, extra={"url": url})
    try:
        path = downloader.download(url, 0o700, ctx)
    except Exception as exc:
        raise StageError(f"download ({url}) problem", exc) from exc
    finally:
        if owned:
            downloader.close()

    if goos == "windows" and path.suffix != ".exe":
        path = path.with_name(path.name + ".exe")
    return path
