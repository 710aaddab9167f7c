"""Tests for the parallel compile pool, driven by a script-emitting toolchain."""

from __future__ import annotations

import os
import subprocess
import time
from pathlib import Path

import pytest

from ReleaseKit.Compiler import (
    CompilerConfig,
    GoToolchain,
    ParallelCompiler,
    Work,
    binary_path,
    build_environment,
    go_binary,
    target_os,
)
from ReleaseKit.concurrency import RunContext
from ReleaseKit.errors import CompileError, ContextCancelledError, WorkConfigError


def _pool(toolchain, tmp_path=None, **kwargs) -> ParallelCompiler:
    return ParallelCompiler(CompilerConfig(base_dir=tmp_path, toolchain=toolchain, **kwargs))


@pytest.mark.posix_only
def test_compiles_every_work_item(script_toolchain, tmp_path):
    work = [Work(name=f"bin-{i}", target=str(tmp_path), source="./cmd") for i in range(5)]

    with _pool(script_toolchain, parallelism=3) as pool:
        pool.run(*work)

        for item in work:
            assert item.result == pool.dir / item.name
            assert os.access(item.result, os.X_OK)
            out = subprocess.run(
                [str(item.result), "a", "b"], capture_output=True, text=True, check=True
            )
            assert out.stdout.strip() == f"command {item.name}: a b"

    assert len(script_toolchain.commands) == 5


@pytest.mark.posix_only
def test_toolchain_runs_in_target_with_cgo_disabled(script_toolchain, tmp_path):
    build_dir = tmp_path / "build"
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    work = Work(
        name="agent",
        target=str(src_dir),
        source="./cmd/agent",
        environment=["GOOS=linux", "GOARCH=arm64"],
    )

    with _pool(script_toolchain, build_dir, ld_flags="-s -w") as pool:
        pool.run(work)

    script = work.result.read_text()
    assert "# CGO_ENABLED=0 GOOS=linux GOARCH=arm64" in script
    assert "# LDFLAGS=-s -w" in script
    assert f"# CWD={src_dir.resolve()}" in script or f"# CWD={src_dir}" in script


@pytest.mark.posix_only
def test_windows_targets_get_exe_suffix(script_toolchain, tmp_path):
    work = Work(name="agent", target=str(tmp_path), source=".", environment=["GOOS=windows"])
    with _pool(script_toolchain, tmp_path / "out") as pool:
        pool.run(work)
    assert work.result.name == "agent.exe"
    assert work.result.exists()


@pytest.mark.parametrize("missing", ["name", "target", "source"])
def test_add_rejects_incomplete_work(script_toolchain, missing):
    fields = {"name": "agent", "target": ".", "source": "./cmd"}
    fields[missing] = ""
    work = Work(**fields)

    assert isinstance(work.validate(), WorkConfigError)
    with _pool(script_toolchain) as pool:
        with pytest.raises(WorkConfigError, match=missing) as excinfo:
            pool.add(work)
    assert excinfo.value.field == missing
    assert isinstance(excinfo.value, ValueError)


def test_add_skips_already_compiled_work(script_toolchain, tmp_path):
    work = Work(name="agent", target=".", source=".", result=tmp_path / "agent")
    with _pool(script_toolchain) as pool:
        pool.add(work)
        pool.run()
    assert script_toolchain.commands == []


@pytest.mark.posix_only
def test_first_failure_cancels_running_siblings(script_toolchain, tmp_path):
    slow = [
        Work(name=f"slow-{i}", target=str(tmp_path), source=".", environment=["FAKE_SLEEP=10"])
        for i in range(2)
    ]
    failing = Work(name="broken", target=str(tmp_path), source=".", environment=["FAKE_FAIL=3"])

    start = time.monotonic()
    with _pool(script_toolchain, tmp_path / "out", parallelism=3) as pool:
        with pytest.raises(CompileError) as excinfo:
            pool.run(*slow, failing)

    assert time.monotonic() - start < 8
    assert excinfo.value.name == "broken"
    assert excinfo.value.returncode == 3
    assert all(item.result is None for item in slow)


@pytest.mark.posix_only
def test_cancelled_context_stops_run(script_toolchain, tmp_path):
    ctx = RunContext.background()
    ctx.cancel()
    work = Work(name="agent", target=str(tmp_path), source=".")
    with _pool(script_toolchain, tmp_path / "out") as pool:
        with pytest.raises(ContextCancelledError):
            pool.run(work, ctx=ctx)
    assert work.result is None


def test_cleanup_removes_owned_directory_once(script_toolchain):
    pool = _pool(script_toolchain)
    owned = pool.dir
    assert owned.is_dir()

    pool.cleanup()
    pool.cleanup()

    assert not owned.exists()
    with pytest.raises(RuntimeError):
        pool.add(Work(name="agent", target=".", source="."))


def test_cleanup_keeps_caller_directory(script_toolchain, tmp_path):
    pool = _pool(script_toolchain, tmp_path)
    pool.add(Work(name="agent", target=".", source="."))
    pool.cleanup()
    assert tmp_path.is_dir()


def test_non_positive_parallelism_falls_back_to_default(script_toolchain):
    with _pool(script_toolchain, parallelism=0) as pool:
        assert pool.parallelism == 2


def test_go_toolchain_build_command():
    work = Work(name="agent", target=".", source="./cmd/agent")
    command = GoToolchain(binary="go").command(work, Path("/out/agent"), "-s -w")
    assert command == ["go", "build", "-o", str(Path("/out/agent")), "-ldflags=-s -w", "./cmd/agent"]


def test_go_toolchain_coverage_command():
    work = Work(name="agent", target=".", source="./cmd/agent", with_coverage=True)
    command = GoToolchain(binary="go").command(work, Path("/out/agent"), "-s -w")
    assert command == [
        "go",
        "test",
        "-coverpkg=./...",
        "-c",
        "-tags",
        "testrunmain",
        "-o",
        str(Path("/out/agent")),
        "./cmd/agent",
    ]


def test_go_binary_honours_goroot():
    assert go_binary({"GOROOT": "/opt/go"}) == os.path.join("/opt/go", "bin", "go")
    assert go_binary({}) == "go"


def test_target_os_uses_last_goos_entry():
    assert target_os(["GOOS=linux", "GOARCH=amd64", "GOOS=windows"]) == "windows"


def test_binary_path_suffix():
    assert binary_path("agent", "/tmp/out", "windows") == Path("/tmp/out/agent.exe")
    assert binary_path("agent", "/tmp/out", "darwin") == Path("/tmp/out/agent")


def test_build_environment_layers_work_entries():
    env = build_environment(["GOOS=darwin", "EXTRA=1", "GOOS=linux"], base={"PATH": "/bin", "CGO_ENABLED": "1"})
    assert env == {"PATH": "/bin", "CGO_ENABLED": "0", "GOOS": "linux", "EXTRA": "1"}
