"""Tests for cancellation tokens"""

import logging
import threading
import time

import pytest

from goldsync.database.cancel import CancellationToken
from goldsync.errors import OperationCancelledError


def test_callbacks_run_once() -> None:
    token = CancellationToken()
    calls: list[str] = []
    token.on_cancel(lambda: calls.append("a"))
    token.on_cancel(lambda: calls.append("b"))

    token.cancel()
    token.cancel()

    assert calls == ["a", "b"]
    assert token.cancelled


def test_callback_registered_after_cancel_runs_immediately() -> None:
    token = CancellationToken()
    token.cancel()
    calls: list[str] = []

    token.on_cancel(lambda: calls.append("late"))

    assert calls == ["late"]


def test_unregistered_callback_does_not_run() -> None:
    token = CancellationToken()
    calls: list[str] = []
    unregister = token.on_cancel(lambda: calls.append("x"))

    unregister()
    token.cancel()

    assert calls == []


def test_failing_callback_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    token = CancellationToken()
    calls: list[str] = []

    def broken() -> None:
        raise RuntimeError("kill failed")

    token.on_cancel(broken)
    token.on_cancel(lambda: calls.append("after"))

    with caplog.at_level(logging.WARNING):
        token.cancel()

    assert calls == ["after"]
    assert "kill failed" in caplog.text


def test_raise_if_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled("sync")

    token.cancel()
    with pytest.raises(OperationCancelledError, match="sync cancelled"):
        token.raise_if_cancelled("sync")


def test_with_timeout_cancels() -> None:
    token = CancellationToken.with_timeout(0.05)
    fired = threading.Event()
    token.on_cancel(fired.set)

    assert fired.wait(timeout=5)
    assert token.cancelled


def test_dispose_stops_timeout() -> None:
    token = CancellationToken.with_timeout(0.05)
    token.dispose()

    time.sleep(0.2)

    assert not token.cancelled
