"""Caching, retrying artifact downloader."""

from .downloader import DEFAULT_USER_AGENT, TRACE_HEADERS_KEY, Downloader, build_client

__all__ = ["Downloader", "build_client", "DEFAULT_USER_AGENT", "TRACE_HEADERS_KEY"]
