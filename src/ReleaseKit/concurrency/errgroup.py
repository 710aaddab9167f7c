"""Fail-fast group of worker threads sharing one cancellable context."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from ReleaseKit.concurrency.context import RunContext

__all__ = ["ErrorGroup"]

logger = logging.getLogger(__name__)


class ErrorGroup:
    """Run callables on threads; the first failure cancels the shared context.

    Each task receives the group's child context and is expected to poll it.
    :meth:`wait` joins every thread and re-raises the first recorded error.

    Examples:
        >>> group = ErrorGroup(None, name="demo")
        >>> group.go(lambda ctx: None)
        >>> group.wait()
    """

    def __init__(self, parent: Optional[RunContext] = None, *, name: str = "errgroup") -> None:
        self.ctx = RunContext.with_cancel(parent)
        self._name = name
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error

    def go(self, fn: Callable[[RunContext], object]) -> None:
        """Start ``fn(ctx)`` on a new daemon thread."""
        index = len(self._threads)
        thread = threading.Thread(
            target=self._run,
            args=(fn,),
            name=f"{self._name}-{index}",
            daemon=True,
        )
        self._threads.append(thread)
        thread.start()

    def _run(self, fn: Callable[[RunContext], object]) -> None:
        try:
            fn(self.ctx)
        except BaseException as exc:  # noqa: BLE001 - recorded and re-raised by wait()
            with self._lock:
                first = self._error is None
                if first:
                    self._error = exc
            if first:
                logger.debug(
                    "task failed, cancelling group",
                    extra={"group": self._name, "error": repr(exc)},
                )
                self.ctx.cancel(f"{self._name}: {exc}")

    def wait(self) -> None:
        """Join all threads and raise the first error, if any."""
        for thread in self._threads:
            thread.join()
        error = self.error
        if error is not None:
            raise error
