"""Cooperative cancellation shared between a job and its pipeline."""

import logging
import threading
from typing import Callable, List

from .errors import JobCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    A one-shot cancellation flag.

    Pipelines check it at every checkpoint with ``raise_if_cancelled()``.
    Blocking operations that cannot poll (a child process wait) register a
    callback with ``on_cancel()`` that interrupts them.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Fire the token and run registered callbacks once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelled("Replication cancelled by user")

    def wait(self, timeout: float = None) -> bool:
        return self._event.wait(timeout)
