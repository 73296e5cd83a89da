"""
Exception hierarchy for the veniceai SDK.

Every error raised by the SDK extends VeniceError. Transient conditions
(network failures, timeouts, rate limiting, capacity) additionally extend
RetryableError so the Retrying loop picks them up without configuration.

HTTP error responses are mapped to typed errors by ``raise_for_status``:

    400, 422 -> VeniceValidationError
    401      -> VeniceAuthError
    402      -> VenicePaymentRequiredError
    403      -> VenicePermissionError
    404      -> VeniceNotFoundError
    429      -> VeniceRateLimitError      (retryable)
    503      -> VeniceCapacityError       (retryable)
    5xx      -> VeniceServerError         (retryable via status code)
    other    -> VeniceApiError
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from veniceai._retry import RetryableError

logger = logging.getLogger(__name__)


class VeniceError(Exception):
    """Base class for all veniceai SDK errors."""

    pass


class RequestCancelledError(VeniceError):
    """
    Raised when the caller cancels a request through its CancellationToken.

    Cancellation always wins: it is raised instead of any pending retry,
    admission wait or stream read.
    """

    pass


# =============================================================================
# Transport-level errors (no HTTP response)
# =============================================================================


class VeniceNetworkError(VeniceError, RetryableError):
    """Raised when the connection to the API fails before a response is received."""

    def __init__(self, message: str = "Network error occurred"):
        super().__init__(message)


class VeniceTimeoutError(VeniceError, RetryableError):
    """Raised when the API does not answer within the request timeout."""

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message)


# =============================================================================
# API errors (HTTP response with non-2xx status)
# =============================================================================


class VeniceApiError(VeniceError):
    """
    Raised when the API answers with a non-2xx status code.

    Attributes:
        status_code: The HTTP status code.
        details: Optional structured error details sent by the server.
        response: The HTTP response, when available.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        details: Any = None,
        response: requests.Response | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.details = details
        self.response = response

    def __str__(self) -> str:
        return f"HTTP {self.status_code}: {super().__str__()}"


class VeniceValidationError(VeniceApiError):
    """Request rejected as malformed (HTTP 400 / 422)."""


class VeniceAuthError(VeniceApiError):
    """Authentication failed (HTTP 401)."""


class VenicePaymentRequiredError(VeniceApiError):
    """Insufficient balance to complete the request (HTTP 402)."""


class VenicePermissionError(VeniceApiError):
    """The API key lacks permission for the operation (HTTP 403)."""


class VeniceNotFoundError(VeniceApiError):
    """Unknown endpoint or model (HTTP 404)."""


class VeniceRateLimitError(VeniceApiError, RetryableError):
    """Server-side rate limit exceeded (HTTP 429). Honors Retry-After when retried."""


class VeniceCapacityError(VeniceApiError, RetryableError):
    """The model is at capacity (HTTP 503)."""


class VeniceServerError(VeniceApiError):
    """
    Unexpected server failure (HTTP 5xx).

    Retryability is decided by the policy's status code list, so 501 or 505
    are not retried while 500, 502 and 504 are.
    """


# =============================================================================
# Streaming errors
# =============================================================================


class StreamInterruptedError(VeniceError):
    """
    Raised when a stream fails after messages were already delivered.

    Partial results cannot be un-yielded, so this error is never retried.

    Attributes:
        delivered: Number of messages yielded before the failure.
        cause: The underlying exception.
    """

    def __init__(self, message: str, delivered: int, cause: Exception | None = None):
        super().__init__(message)
        self.delivered = delivered
        self.cause = cause


_STATUS_ERRORS: dict[int, type[VeniceApiError]] = {
    400: VeniceValidationError,
    401: VeniceAuthError,
    402: VenicePaymentRequiredError,
    403: VenicePermissionError,
    404: VeniceNotFoundError,
    422: VeniceValidationError,
    429: VeniceRateLimitError,
    503: VeniceCapacityError,
}


def error_from_response(response: requests.Response) -> VeniceApiError:
    """
    Build the typed error for a non-2xx response.

    The Venice API reports errors as ``{"error": "...", "details": {...}}``;
    bodies that are not JSON fall back to a generic message.
    """
    status_code = response.status_code
    message = f"HTTP error {status_code}"
    details: Any = None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error_field = payload.get("error")
        if isinstance(error_field, dict):
            message = str(error_field.get("message", message))
        elif error_field:
            message = str(error_field)
        details = payload.get("details")

    error_class = _STATUS_ERRORS.get(status_code)
    if error_class is None:
        error_class = VeniceServerError if status_code >= 500 else VeniceApiError
    return error_class(message, status_code=status_code, details=details, response=response)


def raise_for_status(response: requests.Response) -> None:
    """Raise the typed VeniceApiError for ``response`` if its status is not 2xx."""
    if 200 <= response.status_code < 300:
        return
    raise error_from_response(response)
