"""
Retry utilities with exponential backoff.

Inspired by Tenacity's Retrying class, this module provides a context manager
for implementing retry logic with configurable backoff and exception handling.

The module is split in two layers:

- RetryPolicy: a pure decision function (should we retry? how long to wait?).
- Retrying: the per-call retry state and loop. It performs the backoff sleep
  on the request's cancellation token and notifies an ``on_retry`` callback.

Example:
    >>> from veniceai._retry import Retrying, RetryPolicy
    >>> policy = RetryPolicy(max_retries=3, initial_delay=0.1)
    >>> for attempt in Retrying(policy):
    ...     with attempt:
    ...         response = transport.send(spec, base_url, timeout=30)
    ...         raise_for_status(response)
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import requests

if TYPE_CHECKING:
    from veniceai._cancel import CancellationToken

logger = logging.getLogger(__name__)

# Signature of the observation hook: (error, attempt_number, delay_seconds)
OnRetryCallback = Callable[[Exception, int, float], None]


class RetryableError(Exception):
    """
    Base class for exceptions that should trigger automatic retry.

    Exceptions extending this class are automatically retried by the Retrying
    context manager without needing explicit configuration in retry_on_exceptions.

    Example:
        >>> class MyTransientError(RetryableError):
        ...     '''Custom retryable error for my service.'''
        ...     pass
    """

    pass


class MaxRetriesExceededError(Exception):
    """
    Raised when all retry attempts are exhausted.

    This exception wraps the last exception that occurred during retry attempts,
    providing access to the original error and the number of attempts made.

    Attributes:
        message: Human-readable error message.
        last_exception: The original exception from the last retry attempt.
        attempts: Total number of attempts made (1 original + retries).

    Example:
        >>> try:
        ...     client.chat(body)
        ... except MaxRetriesExceededError as e:
        ...     print(f"Failed after {e.attempts} attempts: {e.last_exception}")
    """

    def __init__(
        self,
        message: str,
        last_exception: Exception | None = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


@dataclass(frozen=True)
class RetryPolicy:
    """
    Pure retry decision function.

    Decides whether a failure is worth another attempt and how long to wait
    before it. Performs no I/O and never sleeps.

    Attributes:
        max_retries: Maximum number of retries (0 disables retries).
        initial_delay: Delay in seconds before the first retry.
        max_delay: Upper bound in seconds for any computed delay.
        multiplier: Exponential growth factor between retries.
        jitter: If True, the delay is drawn uniformly from [0, computed].
        retry_on_status_codes: HTTP status codes considered transient.
        retry_on_exceptions: Third-party exception types considered transient.
        skip_retry_on_exceptions: Exception types never retried (highest priority).
        rng: Random source used for jitter (injectable for tests).

    Example:
        >>> policy = RetryPolicy(initial_delay=0.1, multiplier=2, max_delay=10, jitter=False)
        >>> [policy.next_delay(n) for n in range(4)]
        [0.1, 0.2, 0.4, 0.8]
    """

    # Maximum Retry-After value to respect (in seconds).
    MAX_RETRY_AFTER = 60.0

    max_retries: int = 3
    initial_delay: float = 0.1
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    retry_on_status_codes: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})
    retry_on_exceptions: tuple[type[Exception], ...] = (
        requests.Timeout,
        requests.ConnectionError,
        # Connection dropped while reading the body (IncompleteRead)
        requests.exceptions.ChunkedEncodingError,
    )
    skip_retry_on_exceptions: tuple[type[Exception], ...] = ()
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def __post_init__(self) -> None:
        assert self.max_retries >= 0, f"max_retries must be >= 0, got {self.max_retries}"
        assert self.initial_delay > 0, f"initial_delay must be > 0, got {self.initial_delay}"
        assert self.max_delay >= self.initial_delay, \
            f"max_delay must be >= initial_delay, got {self.max_delay}"
        assert self.multiplier > 1, f"multiplier must be > 1, got {self.multiplier}"

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Decide whether ``error`` raised by the 0-based ``attempt`` deserves a retry.

        Logic:
            1. Never retry once ``attempt >= max_retries``
            2. Skip retry for exceptions in skip_retry_on_exceptions
            3. Never retry cancellation or admission timeouts
            4. For API errors (or RequestException with response): retry if the
               status code is in retry_on_status_codes
            5. Auto-retry if exception extends RetryableError
            6. Retry on configured exception types (requests Timeout, ConnectionError,
               ChunkedEncodingError)
        """
        if attempt >= self.max_retries:
            return False
        return self.is_retryable(error)

    def is_retryable(self, error: Exception) -> bool:
        """Classify ``error`` as transient (True) or fatal (False), ignoring the attempt budget."""
        from veniceai._errors import RequestCancelledError, VeniceApiError
        from veniceai._rate_limit import AdmissionTimeoutError

        if isinstance(error, self.skip_retry_on_exceptions):
            return False

        if isinstance(error, (RequestCancelledError, AdmissionTimeoutError)):
            return False

        status_code = self._status_code_of(error)
        if status_code is not None and isinstance(error, (VeniceApiError, requests.RequestException)):
            return status_code in self.retry_on_status_codes

        if isinstance(error, RetryableError):
            return True

        return isinstance(error, self.retry_on_exceptions)

    def next_delay(self, attempt: int) -> float:
        """
        Compute the backoff delay (seconds) after the 0-based ``attempt``.

        Delay is ``min(max_delay, initial_delay * multiplier ** attempt)``.
        With jitter enabled, a uniformly random value in ``[0, delay]`` is returned.
        """
        delay = min(self.max_delay, self.initial_delay * (self.multiplier ** attempt))
        if self.jitter:
            return self.rng.uniform(0.0, delay)
        return delay

    def delay_for(self, error: Exception, attempt: int) -> float:
        """
        Compute the wait time for ``error``, respecting Retry-After if present.

        For HTTP 429 responses with a valid Retry-After header, uses the
        maximum of the header value and the exponential backoff time.
        """
        base_wait = self.next_delay(attempt)
        if self._status_code_of(error) == 429:
            retry_after = self._parse_retry_after(error)
            if retry_after is not None:
                return max(retry_after, base_wait)
        return base_wait

    @staticmethod
    def _status_code_of(error: Exception) -> int | None:
        status_code = getattr(error, "status_code", None)
        if isinstance(status_code, int):
            return status_code
        response = getattr(error, "response", None)
        if response is not None:
            code = getattr(response, "status_code", None)
            if isinstance(code, int):
                return code
        return None

    def _parse_retry_after(self, error: Exception) -> float | None:
        """
        Parse Retry-After header from the response attached to ``error``.

        Supports numeric seconds format only. Values exceeding MAX_RETRY_AFTER
        are ignored to protect against abusive or buggy servers.
        """
        response = getattr(error, "response", None)
        if response is None:
            return None
        header = response.headers.get("Retry-After")
        if not header:
            return None
        try:
            seconds = float(header)
        except (TypeError, ValueError):
            # Retry-After value might be an HTTP-date string, which we don't support
            return None
        if seconds > self.MAX_RETRY_AFTER:
            logger.warning(
                f"Retry-After header ({seconds}s) exceeds MAX_RETRY_AFTER "
                f"({self.MAX_RETRY_AFTER}s). Using exponential backoff instead."
            )
            return None
        return max(0.0, seconds)


@dataclass(frozen=True)
class RetryAttempt:
    """
    Metadata about the current attempt within a retry loop.

    Attributes:
        attempt_number: 1-based number of the current attempt.
        max_attempts: Total attempts allowed (max_retries + 1).
    """

    attempt_number: int
    max_attempts: int

    @property
    def is_last_attempt(self) -> bool:
        """Return True if this is the last retry attempt."""
        return self.attempt_number >= self.max_attempts


class Retrying:
    """
    Per-call retry state and loop.

    One instance lives for one logical request. Iterating it yields one
    context per attempt; the loop ends when an attempt exits without an
    exception. Iterating the same instance again (e.g. to reconnect a stream
    that failed before delivering anything) continues with the remaining
    retry budget instead of starting over.

    Usage:
        >>> retrying = Retrying(policy, on_retry=print, logger_prefix="01J... | Venice")
        >>> for attempt in retrying:
        ...     with attempt:
        ...         response = transport.send(spec, base_url, timeout=30)

    Args:
        policy: The RetryPolicy deciding retryability and delays.
        cancel_token: Token observed before each attempt and during backoff.
        on_retry: Callback fired before each backoff sleep with
            ``(error, attempt_number, delay)``.
        logger_prefix: Prefix for log messages.

    Raises:
        MaxRetriesExceededError: When a transient error persists past max_retries.
        RequestCancelledError: When the token is cancelled before or between attempts.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        cancel_token: CancellationToken | None = None,
        on_retry: OnRetryCallback | None = None,
        logger_prefix: str = "",
    ):
        assert policy is not None, "policy cannot be None"

        self.policy = policy
        self.cancel_token = cancel_token
        self.on_retry = on_retry
        self.logger_prefix = logger_prefix

        self.attempt = 0
        self.last_exception: Exception | None = None
        self._succeeded = False

    @property
    def attempts_made(self) -> int:
        """Number of attempts started so far."""
        return self.attempt + 1

    @property
    def max_attempts(self) -> int:
        return self.policy.max_retries + 1

    def __iter__(self) -> Generator[_RetryContext, None, None]:
        """Yield retry contexts until an attempt succeeds."""
        self._succeeded = False
        while not self._succeeded:
            self._raise_if_cancelled()
            yield _RetryContext(self, self.attempt)

    def handle_failure(self, exception: Exception) -> None:
        """
        Record a failed attempt and either prepare the next one or give up.

        Returns normally after sleeping the backoff delay when another attempt
        is allowed. Otherwise raises: the original exception when it is not
        retryable, MaxRetriesExceededError when the budget is exhausted, or
        RequestCancelledError when the token fires before or during the sleep.
        """
        from veniceai._errors import RequestCancelledError

        self.last_exception = exception
        prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""

        if isinstance(exception, RequestCancelledError):
            raise exception
        if self.cancel_token is not None and self.cancel_token.is_cancelled:
            raise RequestCancelledError(
                f"Request cancelled after {self.attempts_made} attempt(s)"
            ) from exception

        if not self.policy.is_retryable(exception):
            exception.add_note(f"Failed after {self.attempts_made} attempt(s) (not retryable)")
            raise exception

        if not self.policy.should_retry(exception, self.attempt):
            logger.error(
                f"{prefix}Max retries ({self.policy.max_retries}) exceeded. Last error: {exception}"
            )
            raise MaxRetriesExceededError(
                message=f"Max retries exceeded after {self.attempts_made} attempt(s). Last error: {exception}",
                last_exception=exception,
                attempts=self.attempts_made,
            ) from exception

        delay = self.policy.delay_for(exception, self.attempt)
        logger.warning(
            f"{prefix}Attempt {self.attempts_made}/{self.max_attempts} failed: {exception}"
        )
        logger.warning(f"{prefix}Retrying in {delay:.2f}s...")

        if self.on_retry is not None:
            self.on_retry(exception, self.attempt + 1, delay)

        self._sleep(delay)
        self.attempt += 1

    def _sleep(self, delay: float) -> None:
        from veniceai._errors import RequestCancelledError

        if self.cancel_token is None:
            time.sleep(delay)
            return
        if self.cancel_token.wait(delay):
            raise RequestCancelledError(
                f"Request cancelled while waiting to retry (after {self.attempts_made} attempt(s))"
            ) from self.last_exception

    def _raise_if_cancelled(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()


class _RetryContext:
    """
    Context for a single retry attempt (internal).

    On success (no exception): marks the loop as finished
    On retryable exception: sleeps, suppresses exception, loop continues
    On non-retryable exception: re-raises exception, loop exits
    On exhausted retries: raises MaxRetriesExceededError
    """

    def __init__(self, retrying: Retrying, attempt: int):
        self._retrying = retrying
        self.attempt = attempt

    def __enter__(self) -> RetryAttempt:
        return RetryAttempt(
            attempt_number=self.attempt + 1,
            max_attempts=self._retrying.max_attempts,
        )

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        if exc_val is None:
            self._retrying._succeeded = True
            return False

        # Only handle Exception, not BaseException (KeyboardInterrupt, etc.)
        if not isinstance(exc_val, Exception):
            return False

        try:
            self._retrying.handle_failure(exc_val)
        except BaseException as e:
            if e is exc_val:
                # Not retryable: let the original exception propagate untouched
                return False
            raise
        return True
