"""
Admission control for the veniceai SDK.

This module bounds how many requests are in flight at once and how many
are started within a rolling time window:

- RateWindow: sliding-window counter of admission timestamps.
- AdmissionGate: concurrency ceiling + RateWindow + FIFO queue of waiters.

A request must hold a Slot for its whole lifetime (for streams, until the
last message is consumed) and release it exactly once.

Example:
    >>> from veniceai._rate_limit import AdmissionGate
    >>> gate = AdmissionGate(max_concurrent=5, requests_per_minute=60)
    >>> with gate.acquire() as slot:
    ...     response = transport.send(spec, base_url, timeout=30)
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING

from veniceai._errors import RequestCancelledError, VeniceError

if TYPE_CHECKING:
    from veniceai._cancel import CancellationToken

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


# =============================================================================
# Exceptions
# =============================================================================


class AdmissionTimeoutError(VeniceError):
    """
    Raised when a caller waits longer than ``max_wait_time`` for an admission slot.

    This is not a retry-policy concern: the caller gave up waiting, so the
    error is surfaced immediately and never retried.

    Attributes:
        waited: Time in seconds the caller waited before giving up.
        max_wait_time: The configured maximum wait time.

    Example:
        >>> try:
        ...     slot = gate.acquire(max_wait_time=5.0)
        ... except AdmissionTimeoutError as e:
        ...     print(f"Gave up after {e.waited:.1f}s")
    """

    def __init__(self, waited: float, max_wait_time: float):
        self.waited = waited
        self.max_wait_time = max_wait_time
        super().__init__(
            f"Admission timeout: waited {waited:.2f}s, max_wait_time={max_wait_time:.2f}s"
        )


# =============================================================================
# Sliding Window
# =============================================================================


class RateWindow:
    """
    Sliding-window counter of accepted requests.

    Holds the timestamps (oldest first) of requests admitted in the trailing
    ``time_window`` seconds. Entries are pruned lazily on every check.

    Not thread-safe on its own: AdmissionGate only touches it under its lock.

    Args:
        limit: Maximum number of entries allowed inside the window.
        time_window: Window length in seconds (default: 60).
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(self, limit: int, time_window: float = 60.0, clock: Clock = time.monotonic):
        assert limit > 0, "limit must be greater than 0."
        assert time_window > 0, "time_window must be greater than 0."

        self.limit = limit
        self.time_window = time_window
        self._clock = clock
        self._timestamps: deque[float] = deque()

    def prune(self, now: float | None = None) -> int:
        """Drop entries that are ``time_window`` seconds old or older. Returns the remaining count."""
        now = self._clock() if now is None else now
        cutoff = now - self.time_window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()
        return len(self._timestamps)

    def has_capacity(self, now: float | None = None) -> bool:
        return self.prune(now) < self.limit

    def record(self, now: float | None = None) -> None:
        """Append an admission timestamp."""
        self._timestamps.append(self._clock() if now is None else now)

    def time_until_available(self, now: float | None = None) -> float:
        """
        Seconds until the window has room for one more entry.

        Returns 0.0 when there is capacity right now.
        """
        now = self._clock() if now is None else now
        if self.prune(now) < self.limit:
            return 0.0
        oldest = self._timestamps[0]
        return max(0.0, oldest + self.time_window - now)

    def __len__(self) -> int:
        return len(self._timestamps)


# =============================================================================
# Admission Gate
# =============================================================================


class Slot:
    """
    Permission to have one request in flight.

    Returned by ``AdmissionGate.acquire()``; must be released exactly once,
    either explicitly or by using the slot as a context manager.
    """

    def __init__(self, gate: AdmissionGate, slot_id: int, acquired_at: float):
        self._gate = gate
        self.slot_id = slot_id
        self.acquired_at = acquired_at
        self.released = False

    def release(self) -> None:
        self._gate.release(self)

    def __enter__(self) -> Slot:
        return self

    def __exit__(self, *args: object) -> None:
        if not self.released:
            self.release()

    def __repr__(self) -> str:
        return f"Slot(id={self.slot_id}, released={self.released})"


class AdmissionGate:
    """
    Bounds concurrent requests and the request rate, queueing excess callers.

    A caller is admitted when fewer than ``max_concurrent`` slots are held
    AND fewer than ``requests_per_minute`` admissions happened in the
    trailing window. Otherwise it parks in a FIFO queue; only the caller at
    the head of the queue may be admitted, so later arrivals never overtake
    earlier ones.

    When the window is full but a concurrency slot is free, the head caller
    parks only until the oldest window entry ages out, so acquisition always
    eventually succeeds. Use ``max_wait_time`` or a CancellationToken to bound
    the wait.

    This gate is thread-safe and is meant to be shared by all callers of one
    client. Independent gates never share quota.

    Example:
        >>> gate = AdmissionGate(max_concurrent=2, requests_per_minute=30)
        >>> slot = gate.acquire()
        >>> try:
        ...     ...
        ... finally:
        ...     gate.release(slot)

    Args:
        max_concurrent: Maximum number of slots held at once.
        requests_per_minute: Maximum admissions per time window.
        time_window: Window length in seconds (default: 60).
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        max_concurrent: int = 5,
        requests_per_minute: int = 60,
        time_window: float = 60.0,
        clock: Clock = time.monotonic,
    ):
        assert max_concurrent is not None, "max_concurrent cannot be None."
        assert max_concurrent > 0, "max_concurrent must be greater than 0."
        assert requests_per_minute is not None, "requests_per_minute cannot be None."
        assert requests_per_minute > 0, "requests_per_minute must be greater than 0."

        self.max_concurrent = max_concurrent
        self.requests_per_minute = requests_per_minute
        self._clock = clock

        self._lock = threading.Lock()
        self._condition = threading.Condition(self._lock)
        self._window = RateWindow(requests_per_minute, time_window, clock)
        self._running = 0
        self._waiters: deque[object] = deque()
        self._slot_ids = itertools.count(1)

    @property
    def running_count(self) -> int:
        with self._lock:
            return self._running

    @property
    def queued_count(self) -> int:
        with self._lock:
            return len(self._waiters)

    @property
    def window_count(self) -> int:
        """Number of admissions inside the current window (after pruning)."""
        with self._lock:
            return self._window.prune()

    def acquire(
        self,
        cancel_token: CancellationToken | None = None,
        max_wait_time: float | None = None,
    ) -> Slot:
        """
        Block until a slot is available and return it.

        Args:
            cancel_token: Token that aborts the wait when cancelled.
            max_wait_time: Maximum seconds to wait. If None, waits indefinitely.

        Returns:
            The acquired Slot.

        Raises:
            RequestCancelledError: If the token is cancelled before admission.
            AdmissionTimeoutError: If max_wait_time elapses before admission.
        """
        assert max_wait_time is None or max_wait_time > 0, "max_wait_time must be > 0 or None."

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        start_time = self._clock()
        unregister = cancel_token.add_callback(self._wake_all) if cancel_token is not None else None
        try:
            with self._condition:
                # Fast path: nobody queued and capacity available
                if not self._waiters and self._can_admit():
                    return self._admit()

                ticket = object()
                self._waiters.append(ticket)
                logger.debug(
                    f"Admission queued (running={self._running}/{self.max_concurrent}, "
                    f"window={len(self._window)}/{self.requests_per_minute}, queued={len(self._waiters)})"
                )
                try:
                    while True:
                        if cancel_token is not None and cancel_token.is_cancelled:
                            raise RequestCancelledError("Request was cancelled while waiting for admission")

                        if self._waiters[0] is ticket and self._can_admit():
                            self._waiters.popleft()
                            slot = self._admit()
                            # The next head may be admissible too
                            self._condition.notify_all()
                            return slot

                        timeout = self._park_timeout(ticket)
                        if max_wait_time is not None:
                            waited = self._clock() - start_time
                            remaining = max_wait_time - waited
                            if remaining <= 0:
                                raise AdmissionTimeoutError(waited=waited, max_wait_time=max_wait_time)
                            timeout = remaining if timeout is None else min(timeout, remaining)

                        self._condition.wait(timeout)
                except BaseException:
                    if ticket in self._waiters:
                        self._waiters.remove(ticket)
                        self._condition.notify_all()
                    raise
        finally:
            if unregister is not None:
                unregister()

    def release(self, slot: Slot) -> None:
        """
        Return ``slot`` to the gate and wake queued callers.

        Raises:
            RuntimeError: If the slot was already released or belongs to another gate.
        """
        assert slot is not None, "slot cannot be None."
        with self._condition:
            if slot._gate is not self:
                raise RuntimeError(f"{slot!r} does not belong to this gate.")
            if slot.released:
                raise RuntimeError(f"{slot!r} was already released.")
            slot.released = True
            self._running -= 1
            logger.debug(
                f"Released slot {slot.slot_id} after {self._clock() - slot.acquired_at:.2f}s "
                f"(running={self._running}/{self.max_concurrent})"
            )
            self._condition.notify_all()

    def _can_admit(self) -> bool:
        return self._running < self.max_concurrent and self._window.has_capacity()

    def _admit(self) -> Slot:
        now = self._clock()
        self._running += 1
        self._window.record(now)
        slot = Slot(self, next(self._slot_ids), now)
        logger.debug(
            f"Admitted slot {slot.slot_id} (running={self._running}/{self.max_concurrent}, "
            f"window={len(self._window)}/{self.requests_per_minute})"
        )
        return slot

    def _park_timeout(self, ticket: object) -> float | None:
        """
        How long the caller may park before re-checking on its own.

        The head caller blocked only by the rate window must wake up when the
        oldest entry ages out, since no release() will notify it. Everybody
        else waits for a notification.
        """
        if self._waiters[0] is not ticket or self._running >= self.max_concurrent:
            return None
        # Small floor so a zero wait does not busy-spin on clock granularity
        return max(self._window.time_until_available(), 0.001)

    def _wake_all(self) -> None:
        with self._condition:
            self._condition.notify_all()

    def __repr__(self) -> str:
        return (
            f"AdmissionGate(max_concurrent={self.max_concurrent}, "
            f"requests_per_minute={self.requests_per_minute}, running={self._running})"
        )
