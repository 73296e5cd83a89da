"""Tests for admission control (RateWindow and AdmissionGate)."""

import threading
import time
from collections.abc import Callable

import pytest

from veniceai import (
    AdmissionGate,
    AdmissionTimeoutError,
    CancellationToken,
    RateWindow,
    RequestCancelledError,
    VeniceError,
)


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("Condition not met in time")
        time.sleep(0.005)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# =============================================================================
# RateWindow
# =============================================================================


class TestRateWindow:
    """Tests for the sliding-window counter."""

    def test_has_capacity_until_limit(self):
        clock = FakeClock()
        window = RateWindow(limit=3, time_window=60.0, clock=clock)

        for t in (0.0, 1.0, 2.0):
            clock.now = t
            assert window.has_capacity()
            window.record()

        clock.now = 2.5
        assert not window.has_capacity()
        assert len(window) == 3

    def test_entries_expire_after_window(self):
        clock = FakeClock()
        window = RateWindow(limit=3, clock=clock)
        for t in (0.0, 1.0, 2.0):
            window.record(t)

        # An entry exactly one window old is gone
        assert window.prune(60.0) == 2
        assert window.prune(61.5) == 1
        assert window.prune(200.0) == 0

    def test_time_until_available(self):
        window = RateWindow(limit=2, time_window=10.0, clock=FakeClock())
        window.record(1.0)
        assert window.time_until_available(2.0) == 0.0

        window.record(3.0)
        assert window.time_until_available(4.0) == pytest.approx(7.0)
        assert window.time_until_available(11.0) == 0.0

    def test_rejects_invalid_parameters(self):
        with pytest.raises(AssertionError):
            RateWindow(limit=0)
        with pytest.raises(AssertionError):
            RateWindow(limit=1, time_window=0)


# =============================================================================
# AdmissionGate basics
# =============================================================================


class TestAdmissionGateBasics:
    """Single-threaded behaviour of AdmissionGate."""

    def test_admits_immediately_with_capacity(self):
        gate = AdmissionGate(max_concurrent=2, requests_per_minute=10)

        first = gate.acquire()
        second = gate.acquire()

        assert gate.running_count == 2
        assert gate.window_count == 2
        assert first.slot_id != second.slot_id

        gate.release(first)
        assert gate.running_count == 1
        # Releasing does not give back rate quota
        assert gate.window_count == 2

    def test_slot_context_manager_releases(self):
        gate = AdmissionGate(max_concurrent=1)

        with gate.acquire() as slot:
            assert gate.running_count == 1

        assert slot.released
        assert gate.running_count == 0

    def test_double_release_raises(self):
        gate = AdmissionGate()
        slot = gate.acquire()
        gate.release(slot)

        with pytest.raises(RuntimeError, match="already released"):
            gate.release(slot)
        assert gate.running_count == 0

    def test_release_on_foreign_gate_raises(self):
        gate = AdmissionGate()
        other = AdmissionGate()
        slot = gate.acquire()

        with pytest.raises(RuntimeError, match="does not belong"):
            other.release(slot)

    def test_already_cancelled_token_is_rejected_without_consuming_quota(self):
        gate = AdmissionGate()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(RequestCancelledError):
            gate.acquire(cancel_token=token)

        assert gate.running_count == 0
        assert gate.window_count == 0

    def test_rejects_invalid_parameters(self):
        with pytest.raises(AssertionError):
            AdmissionGate(max_concurrent=0)
        with pytest.raises(AssertionError):
            AdmissionGate(requests_per_minute=0)


# =============================================================================
# Bounds under concurrency
# =============================================================================


class TestAdmissionGateBounds:
    """Admission and rate bounds under concurrent callers."""

    def test_running_count_never_exceeds_max_concurrent(self):
        gate = AdmissionGate(max_concurrent=3, requests_per_minute=1000)
        lock = threading.Lock()
        in_flight = 0
        peak = 0
        completed = 0

        def worker() -> None:
            nonlocal in_flight, peak, completed
            with gate.acquire():
                with lock:
                    in_flight += 1
                    peak = max(peak, in_flight)
                time.sleep(0.01)
                with lock:
                    in_flight -= 1
                    completed += 1

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert completed == 20
        assert 1 <= peak <= 3
        assert gate.running_count == 0
        assert gate.queued_count == 0

    def test_rate_bound_holds_in_every_window(self):
        window = 0.2
        gate = AdmissionGate(max_concurrent=10, requests_per_minute=3, time_window=window)
        admitted_at: list[float] = []
        lock = threading.Lock()

        def worker() -> None:
            slot = gate.acquire()
            with lock:
                admitted_at.append(slot.acquired_at)
            gate.release(slot)

        threads = [threading.Thread(target=worker) for _ in range(9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert len(admitted_at) == 9
        admitted_at.sort()
        # The (i+3)-th admission can only happen once the i-th has aged out
        for i in range(len(admitted_at) - 3):
            assert admitted_at[i + 3] - admitted_at[i] >= window - 1e-9

    def test_rate_limited_caller_eventually_admitted(self):
        gate = AdmissionGate(max_concurrent=5, requests_per_minute=2, time_window=0.15)
        gate.release(gate.acquire())
        gate.release(gate.acquire())

        start = time.monotonic()
        slot = gate.acquire()
        elapsed = time.monotonic() - start

        assert elapsed >= 0.1
        gate.release(slot)


# =============================================================================
# FIFO, timeouts and cancellation
# =============================================================================


class TestAdmissionGateQueueing:
    """Queue order, max_wait_time and cancellation."""

    def test_waiters_are_admitted_in_arrival_order(self):
        gate = AdmissionGate(max_concurrent=1, requests_per_minute=1000)
        holder = gate.acquire()
        order: list[int] = []
        lock = threading.Lock()

        def worker(n: int) -> None:
            with gate.acquire():
                with lock:
                    order.append(n)

        threads = []
        for n in range(6):
            t = threading.Thread(target=worker, args=(n,))
            t.start()
            threads.append(t)
            wait_until(lambda expected=n + 1: gate.queued_count == expected)

        gate.release(holder)
        for t in threads:
            t.join(timeout=5)

        assert order == list(range(6))

    def test_new_arrival_does_not_overtake_queue(self):
        gate = AdmissionGate(max_concurrent=1, requests_per_minute=1000)
        holder = gate.acquire()
        order: list[str] = []

        def queued() -> None:
            with gate.acquire():
                order.append("queued")

        t = threading.Thread(target=queued)
        t.start()
        wait_until(lambda: gate.queued_count == 1)

        gate.release(holder)
        with gate.acquire():
            order.append("late")
        t.join(timeout=5)

        assert order == ["queued", "late"]

    def test_max_wait_time_raises_admission_timeout(self):
        gate = AdmissionGate(max_concurrent=1)
        holder = gate.acquire()

        with pytest.raises(AdmissionTimeoutError) as exc_info:
            gate.acquire(max_wait_time=0.1)

        assert exc_info.value.waited >= 0.1
        assert exc_info.value.max_wait_time == 0.1
        assert isinstance(exc_info.value, VeniceError)
        assert gate.queued_count == 0
        assert gate.running_count == 1
        gate.release(holder)

    def test_cancel_wakes_parked_waiter(self):
        gate = AdmissionGate(max_concurrent=1)
        holder = gate.acquire()
        token = CancellationToken()
        errors: list[BaseException] = []

        def waiter() -> None:
            try:
                gate.acquire(cancel_token=token)
            except RequestCancelledError as e:
                errors.append(e)

        t = threading.Thread(target=waiter)
        t.start()
        wait_until(lambda: gate.queued_count == 1)

        token.cancel("user abort")
        t.join(timeout=2)

        assert not t.is_alive()
        assert len(errors) == 1
        assert gate.queued_count == 0
        assert gate.running_count == 1
        gate.release(holder)

    def test_cancelled_head_does_not_block_followers(self):
        gate = AdmissionGate(max_concurrent=1)
        holder = gate.acquire()
        token = CancellationToken()
        admitted = threading.Event()
        cancelled = threading.Event()

        def head() -> None:
            try:
                gate.acquire(cancel_token=token)
            except RequestCancelledError:
                cancelled.set()

        def follower() -> None:
            with gate.acquire():
                admitted.set()

        t1 = threading.Thread(target=head)
        t1.start()
        wait_until(lambda: gate.queued_count == 1)
        t2 = threading.Thread(target=follower)
        t2.start()
        wait_until(lambda: gate.queued_count == 2)

        token.cancel()
        assert cancelled.wait(2)
        gate.release(holder)

        assert admitted.wait(2)
        t1.join(timeout=2)
        t2.join(timeout=2)
        assert gate.running_count == 0
