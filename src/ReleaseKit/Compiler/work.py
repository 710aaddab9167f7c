"""Compile work items and platform helpers."""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ReleaseKit.errors import WorkConfigError

__all__ = [
    "Work",
    "DEFAULT_PLATFORMS",
    "host_os",
    "host_arch",
    "target_os",
    "binary_path",
]

DEFAULT_PLATFORMS: Dict[str, List[str]] = {
    "linux": ["amd64", "arm", "arm64", "ppc64le", "s390x"],
    "darwin": ["amd64", "arm64"],
    "windows": ["amd64", "arm64"],
}

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "i386": "386",
    "i686": "386",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


def host_os() -> str:
    """Return the running OS using toolchain naming (``linux``, ``darwin``, ``windows``)."""
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def host_arch() -> str:
    """Return the running CPU architecture using toolchain naming."""
    machine = platform.machine().lower()
    return _ARCH_ALIASES.get(machine, machine)


@dataclass
class Work:
    """One binary to build.

    Attributes:
        name: Output binary name.
        target: Working directory the toolchain runs in.
        source: Package path handed to the toolchain.
        environment: Extra ``KEY=VALUE`` entries, e.g. ``GOOS=windows``.
        ld_flags: Linker flags overriding the compiler default when set.
        with_coverage: Build a coverage-instrumented test harness instead.
        result: Populated with the output path once the build succeeded.
    """

    name: str
    target: str
    source: str
    environment: List[str] = field(default_factory=list)
    ld_flags: str = ""
    with_coverage: bool = False
    result: Optional[Path] = None

    def validate(self) -> Optional[WorkConfigError]:
        """Return a :class:`WorkConfigError` describing the first missing field."""
        for attr in ("name", "target", "source"):
            if not getattr(self, attr):
                return WorkConfigError(f"work {attr} must be specified", field=attr)
        return None


def target_os(environment: List[str]) -> str:
    """Return the OS selected by the last ``GOOS=`` entry, else the host OS."""
    selected = host_os()
    for entry in environment:
        key, sep, value = entry.partition("=")
        if sep and key == "GOOS":
            selected = value
    return selected


def binary_path(name: str, base_dir: Path | str, goos: Optional[str] = None) -> Path:
    """Return ``base_dir/name``, adding ``.exe`` for Windows targets."""
    goos = goos or host_os()
    if goos == "windows":
        name = f"{name}.exe"
    return Path(base_dir) / name
