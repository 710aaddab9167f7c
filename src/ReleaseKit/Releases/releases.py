"""Consumer-side view of a published release tree.

A release tree served over HTTP looks like::

    <base>/release.txt              -> "1.2.3-abc"
    <base>/1.2.3-abc/checksums.txt  -> "<sha256> *linux/amd64/agent" ...
    <base>/1.2.3-abc/linux/amd64/agent

:class:`Releases` reads the pointer and the manifest and turns
``(version, os, arch)`` requirements into download URLs.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import httpx

from ReleaseKit.concurrency import RunContext
from ReleaseKit.errors import ReleaseNotFoundError

__all__ = ["Releases", "Release", "Requirements", "VERSION_PATTERN", "DEFAULT_RELEASE_TYPE"]

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"\d+\.\d+\.\d+-(canary-|dev-|server-\d\.\d+-)?[0-9a-f]+")

# Pointer file read when no release type is named: ``<base>/release.txt``.
DEFAULT_RELEASE_TYPE = "release"

_DEFAULT_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class Requirements:
    """What a consumer needs: a version (empty for latest), an OS and an arch."""

    version: str = ""
    os: str = ""
    arch: str = ""

    def validate(self) -> None:
        """Raise :class:`ValueError` for a malformed version or missing platform."""
        if self.version and not VERSION_PATTERN.fullmatch(self.version):
            raise ValueError("version is invalid")
        if not self.os:
            raise ValueError("os is required")
        if not self.arch:
            raise ValueError("arch is required")


@dataclass(frozen=True)
class Release:
    url: str
    checksum: str
    version: str


class Releases:
    """Resolve versions and download URLs from a release tree at ``base_url``.

    A client passed in stays open when the resolver is closed; one created
    here is closed with it.
    """

    def __init__(self, base_url: str, client: Optional[httpx.Client] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=_DEFAULT_TIMEOUT_S, follow_redirects=True)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "Releases":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _get(self, url: str, ctx: Optional[RunContext]) -> str:
        timeout = _DEFAULT_TIMEOUT_S
        if ctx is not None:
            ctx.raise_if_done()
            remaining = ctx.remaining()
            if remaining is not None:
                timeout = min(timeout, remaining)
        response = self.client.get(url, timeout=timeout)
        if response.status_code >= 300:
            logger.debug("release lookup miss", extra={"url": url, "status": response.status_code})
            raise ReleaseNotFoundError(f"not found: {url} ({response.status_code})")
        return response.text

    def version(self, ctx: Optional[RunContext] = None, release_type: str = DEFAULT_RELEASE_TYPE) -> str:
        """Return the first line of ``<base>/<release_type>.txt``."""
        url = f"{self.base_url}/{release_type}.txt"
        lines = self._get(url, ctx).splitlines()
        if not lines or not lines[0]:
            raise ReleaseNotFoundError(f"no version in {url}")
        return lines[0]

    def _matches(self, rq: Requirements, ctx: Optional[RunContext]) -> Iterator[Tuple[str, str, str]]:
        version = rq.version or self.version(ctx)
        body = self._get(f"{self.base_url}/{version}/checksums.txt", ctx)
        for line in body.splitlines():
            if rq.os not in line or rq.arch not in line:
                continue
            checksum, _, rest = line.partition(" ")
            # Some manifests store the file as "*./path".
            filename = posixpath.normpath(rest.strip()[1:]).lstrip("/")
            yield version, checksum, filename

    def resolve_url_list(self, rq: Requirements, ctx: Optional[RunContext] = None) -> List[str]:
        urls = [f"{self.base_url}/{version}/{filename}" for version, _, filename in self._matches(rq, ctx)]
        if not urls:
            raise ReleaseNotFoundError(f"no binary for {rq.os}/{rq.arch} in release {rq.version or 'latest'}")
        return urls

    def resolve_url(self, rq: Requirements, ctx: Optional[RunContext] = None) -> str:
        """Return the first URL matching ``rq``."""
        return self.resolve_url_list(rq, ctx)[0]

    def resolve_urls(self, rq: Requirements, ctx: Optional[RunContext] = None) -> Dict[str, str]:
        """Return matching URLs keyed by binary name (without ``.exe``)."""
        result: Dict[str, str] = {}
        for url in self.resolve_url_list(rq, ctx):
            name = posixpath.basename(url)
            if name.endswith(".exe"):
                name = name[: -len(".exe")]
            result[name] = url
        return result

    def lookup(self, rq: Requirements, ctx: Optional[RunContext] = None) -> Release:
        """Return the first matching release with its checksum."""
        for version, checksum, filename in self._matches(rq, ctx):
            return Release(url=f"{self.base_url}/{version}/{filename}", checksum=checksum, version=version)
        raise ReleaseNotFoundError(f"no binary for {rq.os}/{rq.arch} in release {rq.version or 'latest'}")
