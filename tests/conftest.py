"""Shared pytest fixtures for the ReleaseKit suite."""

from __future__ import annotations

import sys

import pytest

from tests.fixtures.blobstore import InMemoryBlobStore
from tests.fixtures.toolchain import ScriptToolchain


def pytest_collection_modifyitems(config, items):
    if not sys.platform.startswith("win"):
        return
    skip = pytest.mark.skip(reason="POSIX-only: relies on shebang scripts and file modes")
    for item in items:
        if "posix_only" in item.keywords:
            item.add_marker(skip)


def pytest_configure(config):
    config.addinivalue_line("markers", "posix_only: test needs POSIX file semantics")


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def script_toolchain() -> ScriptToolchain:
    return ScriptToolchain()
