"""
Cooperative cancellation for in-flight requests.

A single CancellationToken is attached to a RequestSpec and observed at every
suspension point: admission waits, retry backoff sleeps and stream reads.

Example:
    >>> token = CancellationToken()
    >>> spec = RequestSpec(method="POST", path="/chat/completions", body=body, stream=True, cancel_token=token)
    >>> threading.Timer(5.0, token.cancel).start()  # give up after 5 seconds
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from veniceai._errors import RequestCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Thread-safe, one-shot cancellation signal.

    Callbacks registered with ``add_callback`` run exactly once, on the thread
    that calls ``cancel()`` (or immediately, if the token is already cancelled).
    They are used to wake parked waiters and to abort blocking reads.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Signal cancellation. Subsequent calls are no-ops."""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback {callback!r} failed: {e}")

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block up to ``timeout`` seconds.

        Returns:
            True if the token was cancelled (possibly before the call), False on timeout.
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise RequestCancelledError if the token has been cancelled."""
        if self._event.is_set():
            message = "Request was cancelled"
            if self.reason:
                message = f"{message}: {self.reason}"
            raise RequestCancelledError(message)

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register ``callback`` to run on cancellation.

        Returns:
            A function that unregisters the callback (safe to call more than once).
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return remove

        # Already cancelled: run now, outside the lock
        callback()
        return lambda: None

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"
