"""
Venice AI SDK for Python.

A client-side runtime for the Venice AI API with admission control
(concurrency and per-minute quotas), retry with exponential backoff, and
incremental decoding of streamed responses.

Quick Start:
    >>> from veniceai import VeniceClient
    >>> client = VeniceClient(api_key="sk-...")
    >>> response = client.chat({
    ...     "model": "llama-3.3-70b",
    ...     "messages": [{"role": "user", "content": "Hello!"}],
    ... })
    >>> print(response.json()["choices"][0]["message"]["content"])

Streaming:
    >>> with client.chat_stream(body) as stream:
    ...     for text in stream.text_stream:
    ...         print(text, end="", flush=True)

Global Configuration:
    >>> from veniceai import VENICE
    >>> VENICE.configure(
    ...     client={"api_key": "sk-..."},
    ...     retry={"max_retries": 5},
    ...     admission={"max_concurrent": 2, "requests_per_minute": 20},
    ... )

Main Classes:
    - VeniceClient: Client facade for the Venice AI endpoints.
    - ClientOptions: Per-client configuration overrides.
    - RequestSpec: Immutable description of one API call.
    - ApiResponse: Buffered response of a non-streaming call.
    - MessageStream: Consume-once iterator over a streamed response.
    - StreamEvent / StreamEventType: A decoded streaming message.
    - CancellationToken: Cooperative cancellation signal.

Runtime:
    - RequestOrchestrator: Composes admission, retry and transport.
    - AdmissionGate / RateWindow / Slot: Client-side admission control.
    - RetryPolicy / Retrying: Retry decisions and the retry loop.
    - FrameDecoder: Incremental decoder for event-stream frames.
    - HttpTransport / RequestsHttpTransport: The HTTP boundary.

Errors:
    - VeniceError: Base class of the SDK errors below, except MaxRetriesExceededError.
    - VeniceApiError and subclasses: Typed HTTP error responses.
    - VeniceNetworkError / VeniceTimeoutError: No response obtained.
    - MaxRetriesExceededError: Transient failure persisted past max_retries (plain Exception).
    - AdmissionTimeoutError: Gave up waiting for admission.
    - StreamInterruptedError: Stream failed after delivering messages.
    - RequestCancelledError: The call was cancelled.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("veniceai")

from veniceai._cancel import CancellationToken
from veniceai._client import ClientOptions, VeniceClient
from veniceai._config import (
    VENICE,
    AdmissionConfig,
    ClientConfig,
    ConfigEntry,
    ConfigEnvVarError,
    ConfigValidationError,
    RetryConfig,
    SdkConfig,
    VeniceConfig,
)
from veniceai._errors import (
    RequestCancelledError,
    StreamInterruptedError,
    VeniceApiError,
    VeniceAuthError,
    VeniceCapacityError,
    VeniceError,
    VeniceNetworkError,
    VeniceNotFoundError,
    VenicePaymentRequiredError,
    VenicePermissionError,
    VeniceRateLimitError,
    VeniceServerError,
    VeniceTimeoutError,
    VeniceValidationError,
)
from veniceai._models import ApiResponse, RequestSpec
from veniceai._orchestrator import RequestOrchestrator
from veniceai._rate_limit import (
    AdmissionGate,
    AdmissionTimeoutError,
    RateWindow,
    Slot,
)
from veniceai._retry import (
    MaxRetriesExceededError,
    RetryableError,
    RetryAttempt,
    Retrying,
    RetryPolicy,
)
from veniceai._stream import (
    FrameDecoder,
    MessageStream,
    StreamEvent,
    StreamEventType,
)
from veniceai._transport import HttpTransport, RequestsHttpTransport

__all__ = [
    "__version__",
    # Client
    "VeniceClient",
    "ClientOptions",
    "RequestSpec",
    "ApiResponse",
    "CancellationToken",
    # Configuration
    "VENICE",
    "VeniceConfig",
    "SdkConfig",
    "ClientConfig",
    "RetryConfig",
    "AdmissionConfig",
    "ConfigEntry",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # Runtime
    "RequestOrchestrator",
    "AdmissionGate",
    "RateWindow",
    "Slot",
    "Retrying",
    "RetryPolicy",
    "RetryAttempt",
    "RetryableError",
    "FrameDecoder",
    "MessageStream",
    "StreamEvent",
    "StreamEventType",
    "HttpTransport",
    "RequestsHttpTransport",
    # Errors
    "VeniceError",
    "VeniceApiError",
    "VeniceValidationError",
    "VeniceAuthError",
    "VenicePaymentRequiredError",
    "VenicePermissionError",
    "VeniceNotFoundError",
    "VeniceRateLimitError",
    "VeniceCapacityError",
    "VeniceServerError",
    "VeniceNetworkError",
    "VeniceTimeoutError",
    "MaxRetriesExceededError",
    "AdmissionTimeoutError",
    "StreamInterruptedError",
    "RequestCancelledError",
]
