# === NAVMAP v1 ===
# {
#   "module": "ReleaseKit.Download.downloader",
#   "purpose": "Caching HTTP downloader with atomic promotion and per-attempt timeouts",
#   "sections": [
#     {
#       "id": "downloader",
#       "name": "Downloader",
#       "anchor": "class-downloader",
#       "kind": "class"
#     },
#     {
#       "id": "build-client",
#       "name": "build_client",
#       "anchor": "function-build-client",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Caching HTTP downloader.

Responsibilities
----------------
- Map a URL onto ``<cache dir>/<URL path>`` and return cached files without
  touching the network.
- Stream a miss into ``<target>.tmp``, fsync it and promote it with
  ``os.replace`` so readers never observe a partial file. Any failure removes
  the temporary file.
- Bound the whole call by ``timeout`` and every network attempt by
  ``attempt_timeout``. Attempts that time out are retried with tenacity until
  one succeeds or the overall deadline passes; every other failure (HTTP
  status, refused connection) is raised immediately.

Attempt Isolation
-----------------
The overall context honours the caller's cancellation. Each attempt runs
under :func:`~ReleaseKit.concurrency.isolated_timeout`, which keeps the
caller's values (tracing headers) but starts a fresh window capped at the
overall deadline, so a retry always gets its full budget.

The body is streamed on a daemon fetcher thread into a bounded queue. The
calling thread waits on that queue for no longer than the attempt has left,
so a server that sends headers late, or trickles the body one byte at a
time, cannot hold the attempt past its window. When the caller gives up the
fetcher is told to stop and drops its response.
"""

from __future__ import annotations

import logging
import os
import posixpath
import queue
import stat
import threading
from pathlib import Path
from typing import IO, Mapping, Optional
from urllib.parse import unquote, urlsplit

import httpx
import tenacity
from tenacity import RetryCallState, retry_if_exception_type, stop_after_delay, wait_none

from ReleaseKit.concurrency import RunContext, isolated_timeout
from ReleaseKit.errors import AttemptTimeoutError, DownloadError, HTTPStatusError
from ReleaseKit.io_utils import fsync_directory

__all__ = ["Downloader", "build_client", "DEFAULT_USER_AGENT", "TRACE_HEADERS_KEY"]

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ReleaseKit (downloader)"

# Run-context key holding a mapping of headers to propagate on every request.
TRACE_HEADERS_KEY = "trace_headers"

_CHUNK_SIZE = 1 << 16
_QUEUE_DEPTH = 16
_POLL_INTERVAL_S = 0.05

# Marks the end of a streamed body on the chunk queue.
_END = object()


def build_client(user_agent: str = DEFAULT_USER_AGENT, *, transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    """Return the shared :class:`httpx.Client` used for downloads."""
    return httpx.Client(
        headers={"User-Agent": user_agent, "Accept-Encoding": "gzip"},
        follow_redirects=True,
        transport=transport,
    )


class _StopWhenDone(tenacity.stop.stop_base):
    """Stop retrying once the overall context is cancelled or expired."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self.ctx.done()


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "download attempt %d timed out after %.1fs, retrying",
        retry_state.attempt_number,
        retry_state.seconds_since_start or 0.0,
        extra={"error": repr(exc)},
    )


def _is_cached(target: Path) -> bool:
    try:
        info = os.stat(target)
    except (FileNotFoundError, NotADirectoryError):
        return False
    return not stat.S_ISDIR(info.st_mode)


class Downloader:
    """Downloads URLs into a local cache directory.

    Examples:
        >>> downloader = Downloader(timeout=60, directory="bin")  # doctest: +SKIP
        >>> downloader.download("https://example.com/app/1.0/linux/amd64/agent", 0o755)  # doctest: +SKIP
        PosixPath('/.../bin/app/1.0/linux/amd64/agent')
    """

    def __init__(
        self,
        timeout: float,
        directory: str | os.PathLike,
        *,
        attempt_timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.attempt_timeout = attempt_timeout or timeout
        self.directory = Path(directory).absolute()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"could not create download dir: {exc}") from exc
        self.client = client or build_client(user_agent)

    @classmethod
    def from_settings(cls, settings, *, client: Optional[httpx.Client] = None) -> "Downloader":
        """Build a downloader from :class:`~ReleaseKit.config.DownloaderSettings`."""
        return cls(
            settings.timeout_s,
            settings.directory,
            attempt_timeout=settings.attempt_timeout_s,
            client=client,
            user_agent=settings.user_agent,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "Downloader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def target_path(self, raw_url: str) -> Path:
        """Return the cache path for ``raw_url``; ``..`` segments cannot escape it."""
        try:
            parts = urlsplit(raw_url)
        except ValueError as exc:
            raise DownloadError(f"cannot parse URL: {exc}", url=raw_url) from exc
        if not parts.scheme or not parts.netloc:
            raise DownloadError(f"cannot parse URL: {raw_url!r} is not absolute", url=raw_url)
        rel = posixpath.normpath("/" + unquote(parts.path)).lstrip("/")
        if not rel or rel == ".":
            raise DownloadError(f"URL {raw_url!r} has no file path", url=raw_url)
        return self.directory.joinpath(*rel.split("/"))

    def download(
        self,
        raw_url: str,
        perm: int = 0o644,
        ctx: Optional[RunContext] = None,
    ) -> Path:
        """Fetch ``raw_url`` into the cache and return the local path.

        Raises:
            DownloadError: For unparsable URLs, directory creation failures and
                transport errors.
            HTTPStatusError: For a non-2xx response.
            AttemptTimeoutError: When every attempt timed out before the
                overall deadline.
            ContextCancelledError: When ``ctx`` is already done.
            OSError: For filesystem errors in the cache (e.g. permissions).
        """
        target = self.target_path(raw_url)
        if _is_cached(target):
            logger.debug("cache hit", extra={"url": raw_url, "path": str(target)})
            return target

        overall = RunContext.with_timeout(ctx, self.timeout)
        overall.raise_if_done()

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"could not create directory: {exc}", url=raw_url) from exc

        tmp = target.with_name(target.name + ".tmp")
        try:
            fd = os.open(tmp, os.O_RDWR | os.O_CREAT | os.O_TRUNC, perm)
            with os.fdopen(fd, "wb") as handle:
                retrying = tenacity.Retrying(
                    retry=retry_if_exception_type(AttemptTimeoutError),
                    stop=stop_after_delay(self.timeout) | _StopWhenDone(overall),
                    wait=wait_none(),
                    before_sleep=_log_retry,
                    reraise=True,
                )
                retrying(self._attempt, raw_url, handle, overall)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp, target)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

        fsync_directory(target.parent)
        logger.info("downloaded %s", raw_url, extra={"path": str(target)})
        return target

    def _attempt(self, url: str, handle: IO[bytes], overall: RunContext) -> None:
        overall.raise_if_done()
        attempt = isolated_timeout(overall, self.attempt_timeout, ceiling=overall.deadline)
        handle.seek(0)
        handle.truncate()

        headers: Mapping[str, str] = attempt.value(TRACE_HEADERS_KEY) or {}
        chunks: queue.Queue = queue.Queue(maxsize=_QUEUE_DEPTH)
        stop = RunContext.with_cancel(attempt)
        fetcher = threading.Thread(
            target=self._fetch,
            args=(url, dict(headers), attempt.remaining(), chunks, stop),
            name="releasekit-download",
            daemon=True,
        )
        fetcher.start()
        try:
            while True:
                try:
                    item = chunks.get(timeout=attempt.remaining())
                except queue.Empty:
                    raise AttemptTimeoutError(f"attempt to get {url} timed out", url=url) from None
                if item is _END:
                    return
                if isinstance(item, BaseException):
                    raise item
                if attempt.expired():
                    raise AttemptTimeoutError(f"attempt to get {url} timed out", url=url)
                handle.write(item)
        finally:
            stop.cancel("attempt finished")

    def _fetch(
        self,
        url: str,
        headers: Mapping[str, str],
        window: float,
        chunks: "queue.Queue[object]",
        stop: RunContext,
    ) -> None:
        """Stream ``url`` into ``chunks`` until the body ends or ``stop`` is done."""

        def emit(item: object) -> bool:
            while not stop.done():
                try:
                    chunks.put(item, timeout=_POLL_INTERVAL_S)
                except queue.Full:
                    continue
                return True
            return False

        try:
            self._stream(url, headers, window, emit)
        except BaseException as exc:  # handed to the waiting attempt
            emit(exc)
        else:
            emit(_END)

    def _stream(self, url: str, headers: Mapping[str, str], window: float, emit) -> None:
        try:
            with self.client.stream("GET", url, headers=dict(headers), timeout=httpx.Timeout(window)) as response:
                if not response.is_success:
                    raise HTTPStatusError(url, response.status_code, response.reason_phrase)
                for chunk in response.iter_bytes(_CHUNK_SIZE):
                    if not emit(chunk):
                        return
        except httpx.TimeoutException as exc:
            raise AttemptTimeoutError(f"attempt to get {url} timed out: {exc}", url=url) from exc
        except httpx.HTTPError as exc:
            raise DownloadError(f"could not get URL {url!r}: {exc}", url=url) from exc

    def remove(self, raw_url: str) -> None:
        """Delete the cached copy of ``raw_url``; a missing file is not an error."""
        target = self.target_path(raw_url)
        try:
            os.remove(target)
        except FileNotFoundError:
            return
        logger.debug("removed cached download", extra={"url": raw_url, "path": str(target)})
