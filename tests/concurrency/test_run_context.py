"""Tests for RunContext cancellation, deadlines, values and isolated_timeout."""

from __future__ import annotations

import threading
import time

import pytest

from ReleaseKit.concurrency import RunContext, isolated_timeout
from ReleaseKit.errors import ContextCancelledError, DeadlineExceededError


def test_background_is_never_done():
    ctx = RunContext.background()
    assert not ctx.done()
    assert ctx.deadline is None
    assert ctx.remaining() is None
    ctx.raise_if_done()


def test_cancel_propagates_to_children_not_parents():
    parent = RunContext.background()
    child = RunContext.with_cancel(parent)
    grandchild = RunContext.with_cancel(child)

    child.cancel("stop")

    assert not parent.cancelled()
    assert child.cancelled()
    assert grandchild.cancelled()
    assert grandchild.reason == "stop"
    with pytest.raises(ContextCancelledError, match="stop"):
        grandchild.raise_if_done()


def test_with_timeout_expires():
    ctx = RunContext.with_timeout(None, 0.05)
    assert not ctx.done()
    time.sleep(0.1)
    assert ctx.expired()
    assert ctx.remaining() == 0.0
    with pytest.raises(DeadlineExceededError):
        ctx.raise_if_done()


def test_child_deadline_is_capped_by_parent():
    parent = RunContext.with_timeout(None, 0.5)
    child = RunContext.with_timeout(parent, 60)
    assert child.deadline == parent.deadline


def test_values_are_inherited_and_shadowed():
    root = RunContext.background().with_values(trace="abc", user="ci")
    child = root.with_values(trace="def")

    assert root.value("trace") == "abc"
    assert child.value("trace") == "def"
    assert child.value("user") == "ci"
    assert child.value("missing", "fallback") == "fallback"


def test_wait_returns_when_cancelled_from_another_thread():
    ctx = RunContext.background()
    timer = threading.Timer(0.05, ctx.cancel)
    timer.start()
    try:
        assert ctx.wait(timeout=5)
    finally:
        timer.cancel()


def test_wait_times_out_when_not_done():
    assert not RunContext.background().wait(timeout=0.05)


def test_isolated_timeout_ignores_parent_cancellation():
    parent = RunContext.background().with_values(trace="abc")
    attempt = isolated_timeout(parent, 5)

    parent.cancel()

    assert parent.done()
    assert not attempt.done()
    assert attempt.value("trace") == "abc"


def test_isolated_timeout_is_capped_by_ceiling():
    overall = RunContext.with_timeout(None, 0.2)
    attempt = isolated_timeout(overall, 30, ceiling=overall.deadline)

    assert attempt.deadline == pytest.approx(overall.deadline)
    assert attempt.remaining() <= 0.2


def test_isolated_timeout_uses_own_window_below_ceiling():
    overall = RunContext.with_timeout(None, 30)
    before = time.monotonic()
    attempt = isolated_timeout(overall, 0.5, ceiling=overall.deadline)

    assert attempt.deadline < overall.deadline
    assert attempt.deadline >= before + 0.5


def test_isolated_timeout_does_not_inherit_parent_deadline():
    parent = RunContext.with_timeout(None, 0.01)
    time.sleep(0.05)
    assert parent.expired()

    attempt = isolated_timeout(parent, 1)
    assert not attempt.expired()
