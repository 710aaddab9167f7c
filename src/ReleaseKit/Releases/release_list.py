"""In-memory view of the current releases for a long-running service.

:class:`ReleaseList` keeps the latest version of every configured release
type (``release.txt``, ``candidate.txt`` ...) and answers lookups from a
bounded cache keyed by ``version|os|arch``. Versions are reloaded by
:meth:`ReleaseList.refresh`, either on demand or from :meth:`ReleaseList.run`
on a fixed interval. Until the first refresh succeeds the list reports itself
as not ready.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Dict, Iterable, Optional, Tuple

import httpx

from ReleaseKit.Releases.releases import DEFAULT_RELEASE_TYPE, Release, Releases, Requirements
from ReleaseKit.concurrency import RunContext
from ReleaseKit.errors import ListVersionNotReadyError, ReleaseKitError

__all__ = ["ReleaseList", "CACHE_ITEM_COUNT", "REFRESH_INTERVAL_S"]

logger = logging.getLogger(__name__)

CACHE_ITEM_COUNT = 1024
REFRESH_INTERVAL_S = 60.0


class _LookupCache:
    """Thread-safe LRU mapping of lookup keys to releases."""

    def __init__(self, max_items: int) -> None:
        if max_items < 1:
            raise ValueError("cache size must be positive")
        self.max_items = max_items
        self._items: "OrderedDict[str, Release]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Release]:
        with self._lock:
            release = self._items.get(key)
            if release is not None:
                self._items.move_to_end(key)
            return release

    def put(self, key: str, release: Release) -> None:
        with self._lock:
            self._items[key] = release
            self._items.move_to_end(key)
            while len(self._items) > self.max_items:
                self._items.popitem(last=False)


def _cache_key(rq: Requirements) -> str:
    return f"{rq.version}|{rq.os}|{rq.arch}"


class ReleaseList:
    """Cached latest versions and lookups over a release tree.

    Args:
        base_url: Root of the release tree for one application.
        pinned: Version reported for every release type instead of the
            published pointers.
        release_types: Pointer files to track besides ``release``.
        client: HTTP client; one is created (and closed with the list) when
            omitted.
        cache_size: Maximum number of lookups kept.
    """

    def __init__(
        self,
        base_url: str,
        pinned: Optional[str] = None,
        release_types: Iterable[str] = (),
        *,
        client: Optional[httpx.Client] = None,
        cache_size: int = CACHE_ITEM_COUNT,
    ) -> None:
        self.releases = Releases(base_url, client=client)
        self.pinned = pinned or ""
        types = [DEFAULT_RELEASE_TYPE]
        types.extend(t for t in release_types if t and t not in types)
        self.release_types: Tuple[str, ...] = tuple(types)

        self._versions: Dict[str, str] = {t: "" for t in self.release_types}
        self._versions_lock = threading.Lock()
        self._ready = threading.Event()
        self._cache = _LookupCache(cache_size)

    @classmethod
    def create(
        cls,
        base_url: str,
        pinned: Optional[str] = None,
        release_types: Iterable[str] = (),
        ctx: Optional[RunContext] = None,
        **kwargs,
    ) -> "ReleaseList":
        """Build a list and load its versions.

        Raises:
            ListVersionNotReadyError: When the first refresh fails.
        """
        release_list = cls(base_url, pinned, release_types, **kwargs)
        try:
            release_list.refresh(ctx)
        except BaseException:
            release_list.close()
            raise
        return release_list

    def close(self) -> None:
        self.releases.close()

    def __enter__(self) -> "ReleaseList":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def ready(self) -> bool:
        return self._ready.is_set()

    def check_ready(self) -> None:
        """Raise :class:`ListVersionNotReadyError` until versions are loaded."""
        if not self.ready():
            raise ListVersionNotReadyError("list version not ready")

    def latest_for(self, release_type: str) -> str:
        """Return the pinned version, else the cached one (empty when unknown)."""
        if self.pinned:
            return self.pinned
        with self._versions_lock:
            return self._versions.get(release_type, "")

    def latest(self) -> str:
        return self.latest_for(DEFAULT_RELEASE_TYPE)

    def refresh(self, ctx: Optional[RunContext] = None) -> None:
        """Reload every tracked pointer file.

        Versions are only replaced once all of them were read. A failure
        before the list was ever ready is raised as
        :class:`ListVersionNotReadyError`; later failures propagate as they
        are and the previous versions stay in use.
        """
        fetched: Dict[str, str] = {}
        for release_type in self.release_types:
            try:
                fetched[release_type] = self.releases.version(ctx, release_type)
            except (ReleaseKitError, httpx.HTTPError) as exc:
                if not self.ready():
                    raise ListVersionNotReadyError(
                        f"failed to initialise list: {release_type}: {exc}"
                    ) from exc
                raise

        with self._versions_lock:
            for release_type, version in fetched.items():
                previous = self._versions.get(release_type)
                if version != previous:
                    logger.info(
                        "release version changed",
                        extra={"release_type": release_type, "previous": previous, "version": version},
                    )
                    self._versions[release_type] = version
        self._ready.set()

    def run(self, ctx: RunContext, interval: float = REFRESH_INTERVAL_S) -> None:
        """Refresh every ``interval`` seconds until ``ctx`` is done."""
        while not ctx.wait(interval):
            try:
                self.refresh(ctx)
            except (ReleaseKitError, httpx.HTTPError) as exc:
                if ctx.done():
                    return
                logger.warning("release list refresh failed", extra={"error": repr(exc)})

    def lookup(self, rq: Requirements, ctx: Optional[RunContext] = None) -> Release:
        """Return the release for ``rq``; an empty version means :meth:`latest`.

        Only successful lookups are cached.

        Raises:
            ValueError: For malformed requirements.
            ListVersionNotReadyError: For a latest lookup before any refresh.
            ReleaseNotFoundError: When nothing matches.
        """
        rq.validate()
        if not rq.version:
            version = self.latest()
            if not version:
                raise ListVersionNotReadyError("list version not ready")
            rq = Requirements(version=version, os=rq.os, arch=rq.arch)

        key = _cache_key(rq)
        release = self._cache.get(key)
        if release is not None:
            logger.debug("release lookup cache hit", extra={"key": key})
            return release

        release = self.releases.lookup(rq, ctx)
        self._cache.put(key, release)
        return release
