"""Cooperative cancellation tokens for blocking network calls."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from bearwatch.errors import OperationCancelled


class CancelToken:
    """One-shot, thread-safe cancellation signal.

    Callers create a token and hand it to ``BearWatch.ping``/``wrap``; cancelling
    it from another thread aborts the in-flight attempt or the pending retry
    sleep. The request executor also owns a private token per attempt, fired by
    its timeout timer.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Any = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Any:
        return self._reason

    def cancel(self, reason: Any = None) -> bool:
        """Fire the token. Returns False if it had already fired."""

        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for callback in callbacks:
            callback()
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation, immediately if already cancelled."""

        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, seconds: float) -> bool:
        """Block up to ``seconds``; return True if the token fired meanwhile."""

        return self._event.wait(timeout=max(0.0, seconds))

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._reason)


__all__ = ["CancelToken"]
