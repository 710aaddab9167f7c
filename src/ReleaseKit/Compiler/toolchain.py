"""Toolchain command construction.

A toolchain turns a :class:`~ReleaseKit.Compiler.work.Work` item plus an
output path into an argv list. The compiler never hard-codes ``go``; tests
substitute a toolchain that emits small scripts instead.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Mapping, Optional, Protocol

from ReleaseKit.Compiler.work import Work

__all__ = ["Toolchain", "GoToolchain", "go_binary"]


class Toolchain(Protocol):
    """Anything that can produce the argv for one compile job."""

    def command(self, work: Work, output: Path, ld_flags: str) -> List[str]: ...


def go_binary(environ: Optional[Mapping[str, str]] = None) -> str:
    """Return ``$GOROOT/bin/go`` when ``GOROOT`` is set, else ``go`` from ``PATH``."""
    environ = os.environ if environ is None else environ
    goroot = environ.get("GOROOT")
    if goroot:
        return os.path.join(goroot, "bin", "go")
    return "go"


class GoToolchain:
    """Builds ``go build`` / ``go test -c`` command lines."""

    def __init__(self, binary: Optional[str] = None) -> None:
        self.binary = binary

    def command(self, work: Work, output: Path, ld_flags: str) -> List[str]:
        binary = self.binary or go_binary()
        if work.with_coverage:
            return [
                binary,
                "test",
                "-coverpkg=./...",
                "-c",
                "-tags",
                "testrunmain",
                "-o",
                str(output),
                work.source,
            ]
        return [binary, "build", "-o", str(output), f"-ldflags={ld_flags}", work.source]
