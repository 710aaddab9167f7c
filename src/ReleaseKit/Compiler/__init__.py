"""Parallel cross-compilation of binaries."""

from .compiler import Compiler, build_environment
from .parallel import CompilerConfig, ParallelCompiler
from .toolchain import GoToolchain, Toolchain, go_binary
from .work import DEFAULT_PLATFORMS, Work, binary_path, host_arch, host_os, target_os

__all__ = [
    "Compiler",
    "CompilerConfig",
    "ParallelCompiler",
    "GoToolchain",
    "Toolchain",
    "Work",
    "DEFAULT_PLATFORMS",
    "binary_path",
    "build_environment",
    "go_binary",
    "host_arch",
    "host_os",
    "target_os",
]
