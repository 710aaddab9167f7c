"""Single-job compiler: run the toolchain for one work item."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from ReleaseKit.Compiler.toolchain import GoToolchain, Toolchain
from ReleaseKit.Compiler.work import Work, binary_path, target_os
from ReleaseKit.concurrency import RunContext
from ReleaseKit.errors import CompileError

__all__ = ["Compiler", "build_environment"]

logger = logging.getLogger(__name__)

_POLL_INTERVAL_S = 0.1


def build_environment(extra: List[str], base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Merge ``KEY=VALUE`` entries over the caller's environment with cgo disabled."""
    env = dict(os.environ if base is None else base)
    env["CGO_ENABLED"] = "0"
    for entry in extra:
        key, sep, value = entry.partition("=")
        if sep:
            env[key] = value
    return env


class Compiler:
    """Compiles work items into ``base_dir``."""

    def __init__(self, base_dir: Path | str, ld_flags: str = "", toolchain: Optional[Toolchain] = None):
        self.base_dir = Path(base_dir)
        self.ld_flags = ld_flags
        self.toolchain = toolchain or GoToolchain()

    def compile(self, ctx: Optional[RunContext], work: Work) -> Path:
        """Build ``work`` and return the output path.

        The subprocess inherits stdout and stderr. It is killed when ``ctx``
        is cancelled or expires.

        Raises:
            CompileError: If the toolchain exits non-zero.
            ContextCancelledError: If ``ctx`` is done before the build finishes.
            OSError: If the toolchain cannot be started.
        """
        ctx = ctx or RunContext.background()
        ctx.raise_if_done()

        cwd = os.path.abspath(work.target)
        output = binary_path(work.name, self.base_dir, target_os(work.environment))
        command = self.toolchain.command(work, output, work.ld_flags or self.ld_flags)
        env = build_environment(work.environment)
        output.parent.mkdir(parents=True, exist_ok=True)

        logger.debug("compiling", extra={"work": work.name, "command": command, "cwd": cwd})
        process = subprocess.Popen(command, cwd=cwd, env=env)
        try:
            while True:
                try:
                    returncode = process.wait(timeout=_POLL_INTERVAL_S)
                    break
                except subprocess.TimeoutExpired:
                    if ctx.done():
                        process.kill()
                        process.wait()
                        ctx.raise_if_done()
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()

        if returncode != 0:
            raise CompileError(work.name, returncode, command)

        work.result = output
        logger.info("compiled %s -> %s", work.name, output)
        return output
