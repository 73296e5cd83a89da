"""
Data models for the veniceai SDK.

This module contains the data classes used to describe a request to the
Venice AI API and the buffered response it produces.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from ulid import ULID

if TYPE_CHECKING:
    from veniceai._cancel import CancellationToken


@dataclass(frozen=True)
class RequestSpec:
    """
    Immutable description of one logical API call.

    Attributes:
        method: HTTP method (GET, POST, ...).
        path: Endpoint path relative to the base URL (e.g. "/chat/completions").
        headers: Extra headers merged over the transport defaults (stored read-only).
        body: JSON-serializable request body, or None.
        stream: Whether the response is an incremental event stream.
        cancel_token: Optional token that aborts the call at any wait point.
        timeout: Per-request timeout in seconds. If None, the client default applies.
        id: Unique identifier for this request. Auto-generated as ULID if not provided.

    Example:
        >>> spec = RequestSpec(
        ...     method="POST",
        ...     path="/chat/completions",
        ...     body={"model": "llama-3.3-70b", "messages": [{"role": "user", "content": "Hi"}]},
        ... )
    """
    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    stream: bool = False
    cancel_token: CancellationToken | None = field(default=None, compare=False)
    timeout: float | None = None
    id: str = field(default_factory=lambda: str(ULID()))

    def __post_init__(self) -> None:
        assert self.id, "Request ID cannot be empty."
        assert self.method, "Request method cannot be empty."
        assert self.path, "Request path cannot be empty."
        assert self.timeout is None or self.timeout > 0, "Request timeout must be greater than 0."
        # Read-only copy so the caller cannot mutate a submitted request
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def log_prefix(self) -> str:
        """Fixed-width prefix used by every log line about this request."""
        return f"{self.id[:26]:<26} | Venice"


@dataclass(frozen=True)
class ApiResponse:
    """
    Fully buffered response of a non-streaming call.

    Attributes:
        spec: The request that produced this response.
        status_code: The HTTP status code (always 2xx).
        headers: Response headers.
        content: Raw response body.
        attempts: Number of attempts it took to obtain this response.

    Example:
        >>> response = client.chat(body)
        >>> print(response.json()["choices"][0]["message"]["content"])
    """
    spec: RequestSpec
    status_code: int
    headers: dict[str, str]
    content: bytes
    attempts: int = 1

    @property
    def text(self) -> str:
        """Body decoded as UTF-8."""
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """
        Parse the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON.
        """
        return json.loads(self.content)
