"""Resolve published releases and fetch them onto the local machine."""

from .latest import DEFAULT_DOWNLOAD_DIR, DownloadLatestConfig, download_latest
from .release_list import CACHE_ITEM_COUNT, ReleaseList
from .releases import DEFAULT_RELEASE_TYPE, VERSION_PATTERN, Release, Releases, Requirements

__all__ = [
    "Releases",
    "Release",
    "Requirements",
    "VERSION_PATTERN",
    "DEFAULT_RELEASE_TYPE",
    "ReleaseList",
    "CACHE_ITEM_COUNT",
    "DownloadLatestConfig",
    "download_latest",
    "DEFAULT_DOWNLOAD_DIR",
]
