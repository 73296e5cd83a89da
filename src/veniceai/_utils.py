"""
Utility functions for the veniceai SDK.

This module provides internal helper functions used throughout the client.
These functions are not part of the public API and may change without notice.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

logger = logging.getLogger(__name__)

# Headers whose values must never reach the logs
SENSITIVE_HEADERS = frozenset({"authorization", "x-api-key", "cookie", "set-cookie"})


def sanitize_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    """
    Return a copy of ``headers`` safe to log.

    Bearer credentials keep their scheme so the log still tells which kind of
    auth was sent; every other sensitive value is fully masked.

    Example:
        >>> sanitize_headers({"Authorization": "Bearer sk-123", "Accept": "application/json"})
        {'Authorization': 'Bearer [REDACTED]', 'Accept': 'application/json'}
    """
    if not headers:
        return {}

    sanitized: dict[str, str] = {}
    for name, value in headers.items():
        if name.lower() not in SENSITIVE_HEADERS:
            sanitized[name] = value
        elif isinstance(value, str) and value.lower().startswith("bearer "):
            sanitized[name] = "Bearer [REDACTED]"
        else:
            sanitized[name] = "[REDACTED]"
    return sanitized


def is_timeout_exception(exc: BaseException) -> bool:
    """
    Determine if an exception indicates a timeout condition.

    This is the single source of truth for identifying timeout exceptions,
    including exceptions wrapped in MaxRetriesExceededError.

    Supported timeout exceptions:
        - requests.Timeout: HTTP request timeout
        - VeniceTimeoutError: Transport-level timeout
        - AdmissionTimeoutError: Gave up waiting for an admission slot
        - TimeoutError: Python built-in
        - MaxRetriesExceededError: If last_exception is a timeout (recursive)
    """
    # Lazy imports to avoid circular dependencies
    import requests

    from veniceai._errors import VeniceTimeoutError
    from veniceai._rate_limit import AdmissionTimeoutError
    from veniceai._retry import MaxRetriesExceededError

    timeout_exceptions_types = (
        requests.Timeout,
        VeniceTimeoutError,
        AdmissionTimeoutError,
        TimeoutError,
    )

    if isinstance(exc, timeout_exceptions_types):
        return True

    if isinstance(exc, MaxRetriesExceededError):
        last_exc = exc.last_exception
        if last_exc is not None:
            return is_timeout_exception(last_exc)

    return False
