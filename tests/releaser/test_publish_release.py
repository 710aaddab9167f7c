"""Tests for Releaser.publish / Releaser.release against an in-memory store."""

from __future__ import annotations

import gzip
import hashlib
import io
import os
import time
from pathlib import Path

import pytest

import ReleaseKit.Releaser.releaser as releaser_mod
from ReleaseKit.Releaser import (
    ManifestEntry,
    PublishParameters,
    Releaser,
    ReleaseParameters,
    encode_tags,
    parse_manifest,
    walk_files,
)
from ReleaseKit.concurrency import RunContext
from ReleaseKit.errors import ContextCancelledError
from tests.fixtures.blobstore import InMemoryBlobStore

FILES = {
    "linux/amd64/agent": b"linux amd64 binary" * 1000,
    "linux/arm64/agent": b"linux arm64 binary",
    "windows/amd64/agent.exe": os.urandom(4096),
    "README": b"notes",
}


@pytest.fixture
def build_dir(tmp_path: Path) -> Path:
    root = tmp_path / "build"
    for rel, data in FILES.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return root


def _params(path: Path, **kwargs) -> PublishParameters:
    kwargs.setdefault("version", "1.0.0-abc")
    return PublishParameters(path=path, bucket="bucket", app="agent", **kwargs)


def test_publish_uploads_gzipped_artifacts_then_manifest(build_dir, blob_store):
    entries = Releaser(blob_store).publish(_params(build_dir, tags={"team": "infra", "app": "agent"}))

    expected_order = ["README", "linux/amd64/agent", "linux/arm64/agent", "windows/amd64/agent.exe"]
    assert [e.path for e in entries] == expected_order
    assert blob_store.put_order == [f"agent/1.0.0-abc/{rel}" for rel in expected_order] + [
        "agent/1.0.0-abc/checksums.txt"
    ]

    for rel, data in FILES.items():
        stored = blob_store.objects[("bucket", f"agent/1.0.0-abc/{rel}")]
        assert stored.content_encoding == "gzip"
        assert stored.content_type == "application/octet-stream"
        assert stored.tags == {"team": "infra", "app": "agent"}
        assert gzip.decompress(stored.body) == data


def test_manifest_lines_hash_original_content(build_dir, blob_store):
    Releaser(blob_store).publish(_params(build_dir))

    manifest = blob_store.get("bucket", "agent/1.0.0-abc/checksums.txt").decode()
    lines = manifest.splitlines()
    assert len(lines) == len(FILES)
    for entry in parse_manifest(manifest):
        assert entry.checksum == hashlib.sha256(FILES[entry.path]).hexdigest()
    assert lines[0] == f"{hashlib.sha256(FILES['README']).hexdigest()} *README"
    assert manifest.endswith("\n")

    assert (build_dir / "checksums.txt").read_text() == manifest


def test_republish_does_not_include_previous_manifest(build_dir, blob_store):
    releaser = Releaser(blob_store)
    releaser.publish(_params(build_dir))
    entries = releaser.publish(_params(build_dir, version="1.0.1-abc"))

    assert "checksums.txt" not in [e.path for e in entries]
    assert len(entries) == len(FILES)


def test_skip_local_manifest(build_dir, blob_store):
    Releaser(blob_store).publish(_params(build_dir, write_local_manifest=False))
    assert not (build_dir / "checksums.txt").exists()
    assert ("bucket", "agent/1.0.0-abc/checksums.txt") in blob_store.objects


def test_stale_root_manifest_is_skipped_without_local_write(build_dir, blob_store):
    (build_dir / "checksums.txt").write_bytes(b"stale *README\n")

    entries = Releaser(blob_store).publish(_params(build_dir, write_local_manifest=False))

    assert "checksums.txt" not in [e.path for e in entries]
    assert blob_store.put_order.count("agent/1.0.0-abc/checksums.txt") == 1
    manifest = blob_store.get("bucket", "agent/1.0.0-abc/checksums.txt").decode()
    assert "stale" not in manifest
    assert (build_dir / "checksums.txt").read_bytes() == b"stale *README\n"


def test_nested_manifest_is_still_published(build_dir, blob_store):
    (build_dir / "linux" / "checksums.txt").write_bytes(b"nested")
    entries = Releaser(blob_store).publish(_params(build_dir, write_local_manifest=False))
    assert "linux/checksums.txt" in [e.path for e in entries]


def test_include_filter_selects_files(build_dir, blob_store):
    def only_linux(path: Path, info: os.stat_result) -> bool:
        assert info.st_size > 0
        return "linux" in path.parts

    entries = Releaser(blob_store).publish(_params(build_dir, include_filter=only_linux))

    assert [e.path for e in entries] == ["linux/amd64/agent", "linux/arm64/agent"]
    assert len(blob_store.put_order) == 3


def test_upload_failure_propagates_without_manifest(build_dir):
    store = InMemoryBlobStore(fail_on="linux/arm64/agent")

    with pytest.raises(ConnectionError, match="simulated upload failure"):
        Releaser(store).publish(_params(build_dir))

    assert "agent/1.0.0-abc/checksums.txt" not in store.put_order
    assert store.put_order == ["agent/1.0.0-abc/README", "agent/1.0.0-abc/linux/amd64/agent"]


class _RecordingStore(InMemoryBlobStore):
    """Records the error each upload ended with."""

    def __init__(self) -> None:
        super().__init__()
        self.failed = {}

    def put(self, bucket, key, body, **kwargs) -> None:
        try:
            super().put(bucket, key, body, **kwargs)
        except BaseException as exc:
            self.failed[key] = exc
            raise


def test_unreadable_source_fails_publish_and_releases_upload(build_dir, monkeypatch):
    vanished = build_dir / "linux" / "amd64" / "vanished"
    real_walk = releaser_mod.walk_files

    def walk_with_vanished(base, include_filter=None, *, skip=None):
        yield from real_walk(base, include_filter, skip=skip)
        yield vanished, "linux/amd64/vanished"

    monkeypatch.setattr(releaser_mod, "walk_files", walk_with_vanished)
    store = _RecordingStore()

    start = time.monotonic()
    with pytest.raises(FileNotFoundError):
        Releaser(store).publish(_params(build_dir))

    assert time.monotonic() - start < 5
    assert isinstance(store.failed["agent/1.0.0-abc/linux/amd64/vanished"], FileNotFoundError)
    assert "agent/1.0.0-abc/linux/amd64/vanished" not in store.put_order
    assert "agent/1.0.0-abc/checksums.txt" not in store.put_order


class _FailingSource(io.BytesIO):
    """Yields one chunk, then fails like a disk read error."""

    def read(self, size=-1):
        if self.tell():
            raise OSError(5, "Input/output error")
        return super().read(size)


def test_read_error_mid_file_fails_publish_and_releases_upload(build_dir, monkeypatch):
    real_open = open

    def flaky_open(path, mode="r", *args, **kwargs):
        if Path(path).name == "agent.exe":
            return _FailingSource(b"x" * (1 << 17))
        return real_open(path, mode, *args, **kwargs)

    monkeypatch.setattr(releaser_mod, "open", flaky_open, raising=False)
    store = _RecordingStore()

    with pytest.raises(OSError, match="Input/output error"):
        Releaser(store).publish(_params(build_dir))

    assert isinstance(store.failed["agent/1.0.0-abc/windows/amd64/agent.exe"], OSError)
    assert store.put_order == [
        "agent/1.0.0-abc/README",
        "agent/1.0.0-abc/linux/amd64/agent",
        "agent/1.0.0-abc/linux/arm64/agent",
    ]


def test_empty_bucket_uses_default_bucket(build_dir, blob_store):
    releaser = Releaser(blob_store, default_bucket="fallback")
    releaser.publish(PublishParameters(path=build_dir, bucket="", app="agent", version="1.0.0-abc"))
    releaser.release(ReleaseParameters(bucket="", app="agent", version="1.0.0-abc"))
    releaser.release(ReleaseParameters(bucket="explicit", app="agent", version="1.0.0-abc"))

    buckets = {bucket for bucket, _ in blob_store.objects}
    assert buckets == {"fallback", "explicit"}
    assert blob_store.get("fallback", "agent/release.txt") == b"1.0.0-abc"


def test_missing_bucket_is_rejected(build_dir, blob_store):
    releaser = Releaser(blob_store)
    with pytest.raises(ValueError, match="bucket is required"):
        releaser.publish(PublishParameters(path=build_dir, bucket="", app="agent", version="1.0.0-abc"))
    with pytest.raises(ValueError, match="bucket is required"):
        releaser.release(ReleaseParameters(bucket="", app="agent", version="1.0.0-abc"))
    assert blob_store.put_order == []


def test_cancelled_context_uploads_nothing(build_dir, blob_store):
    ctx = RunContext.background()
    ctx.cancel()
    with pytest.raises(ContextCancelledError):
        Releaser(blob_store).publish(_params(build_dir), ctx)
    assert blob_store.put_order == []


def test_release_writes_pointer(blob_store):
    key = Releaser(blob_store).release(
        ReleaseParameters(bucket="bucket", app="agent", version="1.0.0-abc", tags={"b": "2", "a": "1"})
    )

    assert key == "agent/release.txt"
    stored = blob_store.objects[("bucket", "agent/release.txt")]
    assert stored.body == b"1.0.0-abc"
    assert stored.tags == {"a": "1", "b": "2"}


def test_release_custom_environment(blob_store):
    Releaser(blob_store).release(
        ReleaseParameters(bucket="bucket", app="agent", version="2.0.0-def", environment="canary")
    )
    assert blob_store.get("bucket", "agent/canary.txt") == b"2.0.0-def"


def test_encode_tags():
    assert encode_tags({"team": "infra", "app": "agent x"}) == "app=agent+x&team=infra"
    assert encode_tags({}) is None
    assert encode_tags(None) is None


@pytest.mark.posix_only
def test_walk_does_not_follow_directory_symlinks(tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret").write_bytes(b"x")
    root = tmp_path / "root"
    root.mkdir()
    (root / "b").write_bytes(b"b")
    (root / "a").mkdir()
    (root / "a" / "z").write_bytes(b"z")
    (root / "link").symlink_to(outside, target_is_directory=True)

    assert [rel for _, rel in walk_files(root)] == ["a/z", "b"]


def test_parse_manifest_handles_dot_prefix_and_blanks():
    text = "\nabc *./linux/amd64/agent\ndef *darwin/arm64/agent\n"
    assert parse_manifest(text) == [
        ManifestEntry(checksum="abc", path="linux/amd64/agent"),
        ManifestEntry(checksum="def", path="darwin/arm64/agent"),
    ]
