# === NAVMAP v1 ===
# {
#   "module": "ReleaseKit.errors",
#   "purpose": "Exception taxonomy shared by the compile, publish and download stages.",
#   "sections": [
#     {
#       "id": "releasekiterror",
#       "name": "ReleaseKitError",
#       "anchor": "class-releasekiterror",
#       "kind": "class"
#     },
#     {
#       "id": "workconfigerror",
#       "name": "WorkConfigError",
#       "anchor": "class-workconfigerror",
#       "kind": "class"
#     },
#     {
#       "id": "compileerror",
#       "name": "CompileError",
#       "anchor": "class-compileerror",
#       "kind": "class"
#     },
#     {
#       "id": "stageerror",
#       "name": "StageError",
#       "anchor": "class-stageerror",
#       "kind": "class"
#     },
#     {
#       "id": "downloaderror",
#       "name": "DownloadError",
#       "anchor": "class-downloaderror",
#       "kind": "class"
#     },
#     {
#       "id": "httpstatuserror",
#       "name": "HTTPStatusError",
#       "anchor": "class-httpstatuserror",
#       "kind": "class"
#     },
#     {
#       "id": "attempttimeouterror",
#       "name": "AttemptTimeoutError",
#       "anchor": "class-attempttimeouterror",
#       "kind": "class"
#     },
#     {
#       "id": "releasenotfounderror",
#       "name": "ReleaseNotFoundError",
#       "anchor": "class-releasenotfounderror",
#       "kind": "class"
#     },
#     {
#       "id": "listversionnotreadyerror",
#       "name": "ListVersionNotReadyError",
#       "anchor": "class-listversionnotreadyerror",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Exception taxonomy for the build, release and fetch pipeline.

Responsibilities
----------------
- Separate programmer errors (:class:`WorkConfigError`) from runtime failures
  so callers can let the former crash loudly during development.
- Carry enough metadata (work name, exit status, URL, HTTP status) for log
  lines and user feedback without forcing callers to parse messages.
- Label failures with the pipeline stage they came from (``build:``,
  ``upload:``) through :class:`StageError`.

Design Notes
------------
- Every wrapper is raised with ``raise ... from exc`` so the original cause
  stays reachable through ``__cause__``.
- :class:`AttemptTimeoutError` is the only retryable download failure; the
  downloader keeps it internal unless the overall deadline is exhausted.
"""

from __future__ import annotations

from typing import Sequence

__all__ = (
    "ReleaseKitError",
    "WorkConfigError",
    "CompileError",
    "StageError",
    "DownloadError",
    "HTTPStatusError",
    "AttemptTimeoutError",
    "ReleaseNotFoundError",
    "ListVersionNotReadyError",
    "ContextCancelledError",
    "DeadlineExceededError",
    "ConfigError",
)


class ReleaseKitError(Exception):
    """Base class for all ReleaseKit failures."""


class WorkConfigError(ReleaseKitError, ValueError):
    """Raised when a compile work item is missing required fields."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class CompileError(ReleaseKitError):
    """Raised when the toolchain exits with a non-zero status."""

    def __init__(self, name: str, returncode: int, command: Sequence[str] = ()) -> None:
        super().__init__(f"compiling {name!r} failed: exit status {returncode}")
        self.name = name
        self.returncode = returncode
        self.command = list(command)


class StageError(ReleaseKitError):
    """Failure labelled with the pipeline stage that produced it."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage}: {cause}")
        self.stage = stage
        self.cause = cause


class DownloadError(ReleaseKitError):
    """Raised when fetching an artifact into the local cache fails."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class HTTPStatusError(DownloadError):
    """Raised for a definitive non-2xx response; never retried."""

    def __init__(self, url: str, status_code: int, reason: str = "") -> None:
        super().__init__(f"request to {url} was {status_code} ({reason})", url=url)
        self.status_code = status_code
        self.reason = reason


class AttemptTimeoutError(DownloadError):
    """A single network attempt ran past its attempt deadline."""


class ReleaseNotFoundError(ReleaseKitError):
    """No release pointer, manifest or matching manifest entry was found."""


class ListVersionNotReadyError(ReleaseKitError):
    """Raised while a release list has not loaded its versions yet."""


class ContextCancelledError(ReleaseKitError):
    """Raised when work observes an explicitly cancelled run context."""


class DeadlineExceededError(ContextCancelledError):
    """Raised when work observes a run context whose deadline has passed."""


class ConfigError(ReleaseKitError):
    """Raised when configuration values or environment overrides are invalid."""
