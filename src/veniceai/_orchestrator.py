"""
Request orchestration for the veniceai SDK.

RequestOrchestrator composes the admission gate, the retry loop and the
transport into a single ``execute(spec)`` call:

    acquire slot -> send (retrying transient failures) -> classify status
        -> ApiResponse (slot released) | MessageStream (slot handed over)

Example:
    >>> orchestrator = RequestOrchestrator(
    ...     transport=RequestsHttpTransport(api_key="sk-..."),
    ...     gate=AdmissionGate(max_concurrent=5, requests_per_minute=60),
    ...     policy=RetryPolicy(max_retries=3),
    ...     base_url="https://api.venice.ai/api/v1",
    ... )
    >>> response = orchestrator.execute(RequestSpec(method="GET", path="/models"))
"""

from __future__ import annotations

import logging

import requests

from veniceai._errors import RequestCancelledError, VeniceApiError, raise_for_status
from veniceai._models import ApiResponse, RequestSpec
from veniceai._rate_limit import AdmissionGate
from veniceai._retry import OnRetryCallback, Retrying, RetryPolicy
from veniceai._stream import MessageStream
from veniceai._transport import HttpTransport
from veniceai._utils import is_timeout_exception

logger = logging.getLogger(__name__)


class RequestOrchestrator:
    """
    Runs requests under admission control and retry.

    Every call holds one admission slot from admission until it is finished.
    The slot is kept across retries of the same call, so a retry never queues
    behind newer callers. For buffered calls the slot is released before
    ``execute`` returns or raises; for streaming calls it is handed to the
    returned MessageStream, which releases it when the stream ends.

    Args:
        transport: The HttpTransport used to reach the API.
        gate: AdmissionGate shared by every caller of this orchestrator.
        policy: RetryPolicy deciding retryability and backoff.
        base_url: API base URL.
        request_timeout: Default per-request timeout in seconds.
        max_wait_time: Maximum seconds to wait for admission (None waits forever).
        on_retry: Callback fired before each backoff sleep with
            ``(error, attempt_number, delay)``.
    """

    def __init__(
        self,
        transport: HttpTransport,
        gate: AdmissionGate,
        policy: RetryPolicy,
        base_url: str,
        request_timeout: float = 60.0,
        max_wait_time: float | None = None,
        on_retry: OnRetryCallback | None = None,
    ):
        assert transport is not None, "transport cannot be None."
        assert gate is not None, "gate cannot be None."
        assert policy is not None, "policy cannot be None."
        assert base_url, "base_url cannot be empty."
        assert request_timeout > 0, "request_timeout must be greater than 0."

        self.transport = transport
        self.gate = gate
        self.policy = policy
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.max_wait_time = max_wait_time
        self.on_retry = on_retry

    def execute(self, spec: RequestSpec) -> ApiResponse | MessageStream:
        """
        Execute ``spec`` and return its result.

        Returns:
            ApiResponse for buffered requests, MessageStream when ``spec.stream`` is True.

        Raises:
            RequestCancelledError: If the spec's token is cancelled at any wait point.
            AdmissionTimeoutError: If no slot was granted within max_wait_time.
            MaxRetriesExceededError: If a transient failure persisted past max_retries.
            VeniceApiError: On the first non-retryable HTTP error (4xx and friends).
        """
        assert spec, "🌀 Sanity check | Request spec can not be None."
        assert spec.id, "🌀 Sanity check | Request spec ID can not be None."

        prefix = spec.log_prefix
        if spec.cancel_token is not None:
            spec.cancel_token.raise_if_cancelled()

        slot = self.gate.acquire(cancel_token=spec.cancel_token, max_wait_time=self.max_wait_time)
        retrying = Retrying(
            self.policy,
            cancel_token=spec.cancel_token,
            on_retry=self.on_retry,
            logger_prefix=prefix,
        )

        handed_off = False
        try:
            http_response = self._send_with_retry(spec, retrying)

            if spec.stream:
                stream = MessageStream(
                    spec=spec,
                    http_response=http_response,
                    retrying=retrying,
                    reopen=lambda: self._send_with_retry(spec, retrying),
                    release=slot.release,
                )
                handed_off = True
                logger.info(f"{prefix} | Stream opened (attempt {retrying.attempts_made})")
                return stream

            response = ApiResponse(
                spec=spec,
                status_code=http_response.status_code,
                headers=dict(http_response.headers),
                content=http_response.content,
                attempts=retrying.attempts_made,
            )
            logger.info(
                f"{prefix} | ✅ Response received (HTTP {response.status_code}, "
                f"{response.attempts} attempt(s))"
            )
            return response

        except RequestCancelledError:
            logger.info(f"{prefix} | 🚫 Request cancelled")
            raise
        except Exception as e:
            if is_timeout_exception(e):
                logger.error(f"{prefix} | ⏱️ Request timed out: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))
            else:
                logger.error(f"{prefix} | ❌ Request failed: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))
            raise
        finally:
            if not handed_off:
                slot.release()

    def _send_with_retry(self, spec: RequestSpec, retrying: Retrying) -> requests.Response:
        """
        Send ``spec`` until it yields a 2xx response or the retry loop gives up.

        Continues the attempt count already recorded in ``retrying``, so a
        stream reconnect spends the same budget as the initial handshake.
        """
        prefix = spec.log_prefix
        timeout = spec.timeout or self.request_timeout

        for attempt_ctx in retrying:
            with attempt_ctx as attempt:
                logger.info(
                    f"{prefix} | {spec.method} {spec.path} "
                    f"(attempt {attempt.attempt_number}/{attempt.max_attempts})..."
                )
                http_response = self.transport.send(spec, self.base_url, timeout)
                assert isinstance(http_response, requests.Response), \
                    f"🌀 Sanity check | Object returned by `send` method is not an instance of `requests.Response`. ({http_response.__class__})"

                if spec.cancel_token is not None and spec.cancel_token.is_cancelled:
                    http_response.close()
                    spec.cancel_token.raise_if_cancelled()

                try:
                    raise_for_status(http_response)
                except VeniceApiError:
                    http_response.close()
                    raise
                return http_response

        # Should never reach here - Retrying raises MaxRetriesExceededError
        raise RuntimeError(
            "Unexpected error while sending the request: "
            "reached end of `_send_with_retry` method without returning a response."
        )
