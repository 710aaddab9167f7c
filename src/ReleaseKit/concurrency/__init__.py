"""Concurrency helpers shared by the compile, publish and download stages."""

from .context import RunContext, isolated_timeout
from .errgroup import ErrorGroup
from .pipe import Pipe, PipeClosedError, PipeReader, PipeWriter

__all__ = [
    "RunContext",
    "isolated_timeout",
    "ErrorGroup",
    "Pipe",
    "PipeReader",
    "PipeWriter",
    "PipeClosedError",
]
