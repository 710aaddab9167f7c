"""Run contexts: cooperative cancellation, deadlines and request-scoped values.

Long-running pipeline stages (compiler workers, upload pipes, download
attempts) poll a :class:`RunContext` instead of being interrupted. A context
can be cancelled explicitly, expire at a monotonic deadline, or inherit either
condition from its parent. It also carries a small immutable mapping of values
(tracing headers and similar) that children see unless they shadow a key.

:func:`isolated_timeout` derives a context that keeps the parent's values but
not its cancellation: the download loop uses it so that every attempt gets its
whole window even when the surrounding call is about to give up.
"""

from __future__ import annotations

import threading
import time
from types import MappingProxyType
from typing import Any, Mapping, Optional

from ReleaseKit.errors import ContextCancelledError, DeadlineExceededError

__all__ = ["RunContext", "isolated_timeout"]

_POLL_INTERVAL_S = 0.05


class RunContext:
    """Thread-safe cancellation scope with an optional deadline.

    Examples:
        >>> ctx = RunContext.with_timeout(None, 5.0)
        >>> child = RunContext.with_cancel(ctx)
        >>> child.cancel()
        >>> child.cancelled(), ctx.cancelled()
        (True, False)
    """

    def __init__(
        self,
        *,
        parent: Optional["RunContext"] = None,
        deadline: Optional[float] = None,
        values: Optional[Mapping[str, Any]] = None,
        values_from: Optional["RunContext"] = None,
    ) -> None:
        """Initialise a context.

        Args:
            parent: Context whose cancellation and deadline this one observes.
            deadline: Absolute ``time.monotonic()`` value after which the
                context is done.
            values: Values layered on top of the inherited ones.
            values_from: Context to inherit values from; defaults to ``parent``.
        """
        self._parent = parent
        self._deadline = deadline
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None

        source = values_from if values_from is not None else parent
        merged: dict[str, Any] = dict(source.values) if source is not None else {}
        if values:
            merged.update(values)
        self._values = MappingProxyType(merged)

    @classmethod
    def background(cls) -> "RunContext":
        """Return a root context that is never cancelled and never expires."""
        return cls()

    @classmethod
    def with_cancel(cls, parent: Optional["RunContext"]) -> "RunContext":
        """Return a child that can be cancelled without affecting ``parent``."""
        return cls(parent=parent)

    @classmethod
    def with_timeout(cls, parent: Optional["RunContext"], timeout: float) -> "RunContext":
        """Return a child that expires ``timeout`` seconds from now."""
        return cls(parent=parent, deadline=time.monotonic() + timeout)

    def with_values(self, **values: Any) -> "RunContext":
        """Return a child carrying ``values`` in addition to inherited ones."""
        return RunContext(parent=self, values=values)

    @property
    def values(self) -> Mapping[str, Any]:
        return self._values

    def value(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    @property
    def deadline(self) -> Optional[float]:
        """Effective deadline: the earliest of this context's and its ancestors'."""
        deadlines = []
        ctx: Optional[RunContext] = self
        while ctx is not None:
            if ctx._deadline is not None:
                deadlines.append(ctx._deadline)
            ctx = ctx._parent
        return min(deadlines) if deadlines else None

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or ``None`` without one."""
        deadline = self.deadline
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def cancel(self, reason: str = "context cancelled") -> None:
        """Cancel this context and, implicitly, every descendant."""
        with self._lock:
            if self._reason is None:
                self._reason = reason
            self._event.set()

    def cancelled(self) -> bool:
        """Return whether this context or an ancestor was cancelled explicitly."""
        ctx: Optional[RunContext] = self
        while ctx is not None:
            if ctx._event.is_set():
                return True
            ctx = ctx._parent
        return False

    def expired(self) -> bool:
        deadline = self.deadline
        return deadline is not None and time.monotonic() >= deadline

    def done(self) -> bool:
        return self.cancelled() or self.expired()

    @property
    def reason(self) -> Optional[str]:
        ctx: Optional[RunContext] = self
        while ctx is not None:
            if ctx._event.is_set():
                return ctx._reason
            ctx = ctx._parent
        if self.expired():
            return "deadline exceeded"
        return None

    def raise_if_done(self) -> None:
        """Raise :class:`ContextCancelledError` once the context is done."""
        if self.cancelled():
            raise ContextCancelledError(self.reason or "context cancelled")
        if self.expired():
            raise DeadlineExceededError("deadline exceeded")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the context is done or ``timeout`` elapses.

        Returns:
            True if the context is done.
        """
        end = None if timeout is None else time.monotonic() + timeout
        while not self.done():
            slice_s = _POLL_INTERVAL_S
            remaining = self.remaining()
            if remaining is not None:
                slice_s = min(slice_s, remaining)
            if end is not None:
                left = end - time.monotonic()
                if left <= 0:
                    return False
                slice_s = min(slice_s, left)
            self._event.wait(max(slice_s, 0.0))
        return True

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return (
            f"RunContext(done={self.done()}, remaining={self.remaining()}, "
            f"values={dict(self._values)!r})"
        )


def isolated_timeout(
    parent: Optional[RunContext],
    timeout: float,
    *,
    ceiling: Optional[float] = None,
) -> RunContext:
    """Derive a context with a fresh timer that ignores ``parent``'s cancellation.

    The returned context inherits ``parent``'s values (tracing identifiers,
    headers) but neither its explicit cancellation nor its deadline. Its own
    deadline is ``now + timeout``, capped at ``ceiling`` when one is given.

    Args:
        parent: Context to take values from; may be ``None``.
        timeout: Length of the fresh window in seconds.
        ceiling: Absolute ``time.monotonic()`` value the window may not pass.

    Returns:
        A new root-level :class:`RunContext`.
    """
    deadline = time.monotonic() + timeout
    if ceiling is not None:
        deadline = min(deadline, ceiling)
    return RunContext(deadline=deadline, values_from=parent)
