"""Tests for CancellationToken."""

import threading
import unittest
from unittest.mock import MagicMock

from veniceai import CancellationToken, RequestCancelledError, VeniceError


class TestCancellationToken(unittest.TestCase):

    def test_initial_state(self):
        token = CancellationToken()
        self.assertFalse(token.is_cancelled)
        self.assertIsNone(token.reason)
        token.raise_if_cancelled()

    def test_raise_if_cancelled_raises_venice_error(self):
        token = CancellationToken()
        token.cancel()

        with self.assertRaises(VeniceError):
            token.raise_if_cancelled()

    def test_cancel_is_one_shot(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")

        self.assertTrue(token.is_cancelled)
        self.assertEqual(token.reason, "first")
        with self.assertRaises(RequestCancelledError) as ctx:
            token.raise_if_cancelled()
        self.assertIn("first", str(ctx.exception))

    def test_callbacks_run_once(self):
        token = CancellationToken()
        callback = MagicMock()
        token.add_callback(callback)

        token.cancel()
        token.cancel()

        callback.assert_called_once_with()

    def test_removed_callback_does_not_run(self):
        token = CancellationToken()
        callback = MagicMock()
        remove = token.add_callback(callback)

        remove()
        remove()
        token.cancel()

        callback.assert_not_called()

    def test_callback_added_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        callback = MagicMock()

        token.add_callback(callback)

        callback.assert_called_once_with()

    def test_failing_callback_does_not_stop_others(self):
        token = CancellationToken()
        second = MagicMock()
        token.add_callback(MagicMock(side_effect=RuntimeError("boom")))
        token.add_callback(second)

        token.cancel()

        second.assert_called_once_with()

    def test_wait_returns_on_cancel(self):
        token = CancellationToken()
        self.assertFalse(token.wait(0.01))

        threading.Timer(0.05, token.cancel).start()
        self.assertTrue(token.wait(2.0))


if __name__ == "__main__":
    unittest.main()
