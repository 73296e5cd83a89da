"""
HTTP transport abstraction for the veniceai SDK.

The transport is the only component that touches the network. It sends one
RequestSpec and returns the raw ``requests.Response``; status classification,
retries and admission control all live above it.

Available implementations:
    - RequestsHttpTransport: Default transport backed by a ``requests.Session``.

Example:
    >>> from veniceai._transport import RequestsHttpTransport
    >>> transport = RequestsHttpTransport(api_key="sk-...")
    >>> response = transport.send(spec, "https://api.venice.ai/api/v1", timeout=30)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, override

import requests

from veniceai._errors import VeniceNetworkError, VeniceTimeoutError
from veniceai._utils import sanitize_headers

if TYPE_CHECKING:
    from veniceai._models import RequestSpec

logger = logging.getLogger(__name__)


class HttpTransport(ABC):
    """
    Abstract base class for HTTP transports.

    Implement this class to plug in a different HTTP stack, add tracing, or
    replay recorded responses in tests.

    Contract:
        - Return the response for any HTTP status; never raise for 4xx/5xx.
        - Open the response with streaming enabled when ``spec.stream`` is True,
          so the body is read incrementally by the caller.
        - Raise VeniceTimeoutError / VeniceNetworkError (or the underlying
          ``requests`` exceptions) when no response could be obtained.

    Example:
        >>> class RecordingTransport(HttpTransport):
        ...     def send(self, spec, base_url, timeout):
        ...         return recorded[spec.path]
    """

    @abstractmethod
    def send(
        self,
        spec: RequestSpec,
        base_url: str,
        timeout: float,
    ) -> requests.Response:
        """
        Send ``spec`` to ``base_url`` and return the HTTP response.

        Args:
            spec: The request to send.
            base_url: API base URL, without trailing slash.
            timeout: Request timeout in seconds.

        Returns:
            The HTTP response (body not yet consumed for streams).
        """
        pass

    def close(self) -> None:
        """Release pooled connections. No-op by default."""
        pass


class RequestsHttpTransport(HttpTransport):
    """
    Transport implementation backed by ``requests``.

    Attaches ``Authorization: Bearer <api_key>`` to every request and reuses
    connections through a ``requests.Session``. Timeouts and connection
    failures are translated into the SDK's retryable errors.

    Args:
        api_key: Venice AI API key. If None, no Authorization header is sent.
        session: Optional pre-configured session (proxies, adapters, ...).
        user_agent: Value of the User-Agent header.
    """

    DEFAULT_USER_AGENT = "veniceai-python"

    def __init__(
        self,
        api_key: str | None = None,
        session: requests.Session | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self._api_key = api_key
        self._session = session or requests.Session()
        self._user_agent = user_agent

    def _default_headers(self, spec: RequestSpec) -> dict[str, str]:
        headers = {
            "User-Agent": self._user_agent,
            "Accept": "text/event-stream" if spec.stream else "application/json",
        }
        if spec.body is not None:
            headers["Content-Type"] = "application/json"
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @override
    def send(
        self,
        spec: RequestSpec,
        base_url: str,
        timeout: float,
    ) -> requests.Response:
        """
        Send the request through the underlying session.

        Raises:
            AssertionError: If base_url is empty or timeout is invalid.
            VeniceTimeoutError: If the server did not answer in time.
            VeniceNetworkError: If the connection failed.
        """
        assert base_url, "base_url cannot be empty."
        assert timeout is not None, "Timeout cannot be None."
        assert timeout > 0, "Timeout must be greater than 0."

        url = f"{base_url.rstrip('/')}/{spec.path.lstrip('/')}"
        headers = {**self._default_headers(spec), **spec.headers}
        logger.debug(
            f"{spec.log_prefix} | {spec.method} {url} (stream={spec.stream}) "
            f"headers={sanitize_headers(headers)}"
        )

        try:
            return self._session.request(
                spec.method,
                url,
                json=spec.body,
                headers=headers,
                timeout=timeout,
                stream=spec.stream,
            )
        except requests.Timeout as e:
            raise VeniceTimeoutError(f"Request timed out after {timeout}s: {e}") from e
        except requests.ConnectionError as e:
            raise VeniceNetworkError(f"Network error: {e}") from e

    @override
    def close(self) -> None:
        self._session.close()
