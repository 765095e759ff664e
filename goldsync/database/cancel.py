"""Cancellation tokens for long-running operations."""

import logging
import threading
from collections.abc import Callable

from goldsync.errors import OperationCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation signal.

    Callbacks registered with on_cancel run exactly once, on the thread that
    calls cancel(). A callback registered after cancellation runs immediately.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0
        self._timer: threading.Timer | None = None

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        """Create a token that cancels itself after the given number of seconds"""
        token = cls()
        timer = threading.Timer(seconds, token.cancel)
        timer.daemon = True
        token._timer = timer
        timer.start()
        return token

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def cancel(self) -> None:
        """Signal cancellation and run registered callbacks"""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
            timer = self._timer

        if timer is not None:
            timer.cancel()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to run on cancellation.

        Args:
            callback: Function without arguments

        Returns:
            Function that unregisters the callback
        """
        with self._lock:
            if not self._cancelled:
                callback_id = self._next_id
                self._next_id += 1
                self._callbacks[callback_id] = callback

                def unregister() -> None:
                    with self._lock:
                        self._callbacks.pop(callback_id, None)

                return unregister

        callback()
        return lambda: None

    def raise_if_cancelled(self, operation: str = "operation") -> None:
        """Raise OperationCancelledError if the token was cancelled"""
        if self.cancelled:
            raise OperationCancelledError(operation)

    def dispose(self) -> None:
        """Stop a pending timeout without cancelling"""
        with self._lock:
            timer = self._timer
            self._timer = None
        if timer is not None:
            timer.cancel()
