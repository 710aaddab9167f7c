# === NAVMAP v1 ===
# {
#   "module": "ReleaseKit.Compiler.parallel",
#   "purpose": "Bounded-parallel compile pool with fail-fast cancellation",
#   "sections": [
#     {
#       "id": "compilerconfig",
#       "name": "CompilerConfig",
#       "anchor": "class-compilerconfig",
#       "kind": "class"
#     },
#     {
#       "id": "parallelcompiler",
#       "name": "ParallelCompiler",
#       "anchor": "class-parallelcompiler",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Bounded-parallel compile pool.

Work items are queued with :meth:`ParallelCompiler.add` and built by
:meth:`ParallelCompiler.run`, which starts ``parallelism`` worker threads in an
:class:`~ReleaseKit.concurrency.ErrorGroup`. Workers drain the queue until it
is empty; the first failure cancels the shared context, sibling workers stop
picking up new jobs and kill their running subprocess, and ``run`` raises that
failure.

The queue belongs to the pool instance, so several pools can coexist in one
process. A pool without an explicit ``base_dir`` creates a temporary directory
and removes it in :meth:`ParallelCompiler.cleanup`.

Usage::

    with ParallelCompiler(CompilerConfig(parallelism=4)) as pool:
        pool.add(Work(name="agent", target=".", source="./cmd/agent"))
        pool.run(ctx=RunContext.with_timeout(None, 600))
"""

from __future__ import annotations

import logging
import queue
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ReleaseKit.Compiler.compiler import Compiler
from ReleaseKit.Compiler.toolchain import GoToolchain, Toolchain
from ReleaseKit.Compiler.work import Work
from ReleaseKit.concurrency import ErrorGroup, RunContext

__all__ = ["CompilerConfig", "ParallelCompiler", "DEFAULT_PARALLELISM", "DEFAULT_QUEUE_SIZE"]

logger = logging.getLogger(__name__)

DEFAULT_PARALLELISM = 2
DEFAULT_QUEUE_SIZE = 100


@dataclass
class CompilerConfig:
    """Settings for :class:`ParallelCompiler`."""

    base_dir: Optional[Path] = None
    ld_flags: str = ""
    parallelism: int = DEFAULT_PARALLELISM
    queue_size: int = DEFAULT_QUEUE_SIZE
    toolchain: Toolchain = field(default_factory=GoToolchain)

    @classmethod
    def from_settings(cls, settings, base_dir: Optional[Path] = None) -> "CompilerConfig":
        """Build from :class:`~ReleaseKit.config.CompilerSettings`."""
        return cls(
            base_dir=base_dir,
            ld_flags=settings.ld_flags,
            parallelism=settings.parallelism,
            queue_size=settings.queue_size,
        )


class ParallelCompiler:
    """Compile queued work items on a fixed number of worker threads."""

    def __init__(self, config: Optional[CompilerConfig] = None) -> None:
        config = config or CompilerConfig()
        self.parallelism = config.parallelism if config.parallelism > 0 else DEFAULT_PARALLELISM

        if config.base_dir is None:
            base_dir = Path(tempfile.mkdtemp(prefix="releasekit-build-"))
            self._owns_dir = True
        else:
            base_dir = Path(config.base_dir)
            base_dir.mkdir(parents=True, exist_ok=True)
            self._owns_dir = False

        self._compiler = Compiler(base_dir, config.ld_flags, config.toolchain)
        self._queue: "queue.Queue[Work]" = queue.Queue(maxsize=max(config.queue_size, 0))
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dir(self) -> Path:
        return self._compiler.base_dir

    def add(self, work: Work) -> None:
        """Queue ``work`` for the next :meth:`run`.

        Items whose ``result`` is already populated are skipped. Blocks while
        the queue is full.

        Raises:
            WorkConfigError: If ``name``, ``target`` or ``source`` is empty.
            RuntimeError: If the pool was cleaned up.
        """
        error = work.validate()
        if error is not None:
            raise error
        with self._lock:
            if self._closed:
                raise RuntimeError("compiler pool has been cleaned up")
        if work.result is not None:
            logger.debug("skipping already compiled work", extra={"work": work.name})
            return
        self._queue.put(work)

    def run(self, *work: Work, ctx: Optional[RunContext] = None) -> None:
        """Compile everything queued, plus ``work``; raise the first failure."""
        for item in work:
            self.add(item)

        group = ErrorGroup(ctx, name="compiler")
        for _ in range(self.parallelism):
            group.go(self._worker)
        group.wait()

    def _worker(self, ctx: RunContext) -> None:
        while not ctx.done():
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            try:
                self._compiler.compile(ctx, item)
            finally:
                self._queue.task_done()
        ctx.raise_if_done()

    def cleanup(self) -> None:
        """Drop pending work and remove an owned base directory. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
            self._queue.task_done()
        if self._owns_dir:
            shutil.rmtree(self.dir, ignore_errors=True)
            logger.debug("removed build directory", extra={"path": str(self.dir)})

    def __enter__(self) -> "ParallelCompiler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
