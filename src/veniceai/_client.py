"""
Venice AI client.

This module provides a synchronous, thread-safe client for the Venice AI API,
supporting buffered calls (chat completions, image generation, model listing)
and streamed chat completions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from veniceai._models import ApiResponse, RequestSpec
from veniceai._orchestrator import RequestOrchestrator
from veniceai._rate_limit import AdmissionGate
from veniceai._retry import OnRetryCallback, RetryPolicy
from veniceai._stream import MessageStream
from veniceai._transport import HttpTransport, RequestsHttpTransport

if TYPE_CHECKING:
    from veniceai._cancel import CancellationToken
    from veniceai._config import VeniceConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientOptions:
    """
    Configuration options for VeniceClient.

    Fields set to None will use values from global config (VENICE.config).

    Attributes:
        request_timeout: HTTP request timeout in seconds.
        max_retries: Maximum number of retries for failed calls.
            Use 0 to disable retries (single attempt only).
            Use 3 for 4 total attempts (1 original + 3 retries).
        initial_delay: Delay in seconds before the first retry.
        max_delay: Upper bound in seconds for any backoff delay.
        backoff_multiplier: Growth factor between consecutive delays.
        use_jitter: Randomize each delay uniformly in [0, delay].
        max_concurrent: Maximum number of requests in flight at once.
        requests_per_minute: Maximum requests started per time window.
        time_window: Length in seconds of the rolling window.
        max_wait_time: Maximum seconds to wait for admission.

    Example:
        >>> # Use all defaults from config
        >>> client = VeniceClient(api_key="sk-...")
        >>>
        >>> # Tighter quotas and no retries for this client only
        >>> options = ClientOptions(max_concurrent=1, requests_per_minute=10, max_retries=0)
        >>> client = VeniceClient(api_key="sk-...", options=options)
    """
    request_timeout: float | None = None
    max_retries: int | None = None
    initial_delay: float | None = None
    max_delay: float | None = None
    backoff_multiplier: float | None = None
    use_jitter: bool | None = None
    max_concurrent: int | None = None
    requests_per_minute: int | None = None
    time_window: float | None = None
    max_wait_time: float | None = None

    def with_defaults_from(self, cfg: VeniceConfig) -> ClientOptions:
        """
        Returns a new ClientOptions with None values filled from config.

        User-provided values take precedence; None values use config defaults.
        A resolved ``max_wait_time`` may still be None (wait indefinitely).

        Example:
            >>> options = ClientOptions(request_timeout=120)
            >>> resolved = options.with_defaults_from(VENICE.config)
            >>> resolved.request_timeout  # 120 (user-defined)
        """
        def pick(value: Any, default: Any) -> Any:
            return value if value is not None else default

        return ClientOptions(
            request_timeout=pick(self.request_timeout, cfg.client.request_timeout),
            max_retries=pick(self.max_retries, cfg.retry.max_retries),
            initial_delay=pick(self.initial_delay, cfg.retry.initial_delay),
            max_delay=pick(self.max_delay, cfg.retry.max_delay),
            backoff_multiplier=pick(self.backoff_multiplier, cfg.retry.backoff_multiplier),
            use_jitter=pick(self.use_jitter, cfg.retry.use_jitter),
            max_concurrent=pick(self.max_concurrent, cfg.admission.max_concurrent),
            requests_per_minute=pick(self.requests_per_minute, cfg.admission.requests_per_minute),
            time_window=pick(self.time_window, cfg.admission.time_window),
            max_wait_time=pick(self.max_wait_time, cfg.admission.max_wait_time),
        )

    def to_retry_policy(self) -> RetryPolicy:
        """Build the RetryPolicy described by these (resolved) options."""
        assert self.max_retries is not None, \
            "🌀 Sanity check | max_retries must be set after with_defaults_from()"
        assert self.initial_delay is not None and self.max_delay is not None, \
            "🌀 Sanity check | delays must be set after with_defaults_from()"
        assert self.backoff_multiplier is not None and self.use_jitter is not None, \
            "🌀 Sanity check | backoff settings must be set after with_defaults_from()"

        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            multiplier=self.backoff_multiplier,
            jitter=self.use_jitter,
        )

    def to_admission_gate(self) -> AdmissionGate:
        """Build a new AdmissionGate described by these (resolved) options."""
        assert self.max_concurrent is not None and self.requests_per_minute is not None, \
            "🌀 Sanity check | admission limits must be set after with_defaults_from()"
        assert self.time_window is not None, \
            "🌀 Sanity check | time_window must be set after with_defaults_from()"

        return AdmissionGate(
            max_concurrent=self.max_concurrent,
            requests_per_minute=self.requests_per_minute,
            time_window=self.time_window,
        )


class VeniceClient:
    """
    Synchronous client for the Venice AI API.

    Every call goes through one shared AdmissionGate (concurrency and
    per-minute quota), is retried on transient failures, and can be cancelled
    through a CancellationToken. The client is thread-safe: share one
    instance across threads to share its quotas.

    Example:
        >>> from veniceai import VeniceClient
        >>> client = VeniceClient(api_key="sk-...")
        >>> response = client.chat({
        ...     "model": "llama-3.3-70b",
        ...     "messages": [{"role": "user", "content": "What is SOLID?"}],
        ... })
        >>> print(response.json()["choices"][0]["message"]["content"])
        >>>
        >>> with client.chat_stream({"model": "llama-3.3-70b", "messages": messages}) as stream:
        ...     for text in stream.text_stream:
        ...         print(text, end="", flush=True)

    Attributes:
        base_url: The base URL for the Venice AI API.
        options: Resolved configuration options.
        gate: The AdmissionGate bounding this client's traffic.
        transport: HTTP transport for API calls (default: RequestsHttpTransport).
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        options: ClientOptions | None = None,
        transport: HttpTransport | None = None,
        gate: AdmissionGate | None = None,
        on_retry: OnRetryCallback | None = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Venice AI API key. If None, uses VENICE.config.client.api_key.
                Ignored when a custom transport is given.
            base_url: Base URL for the API. If None, uses VENICE.config.client.base_url.
            options: Configuration options for the client. Partial options are
                merged with config defaults via with_defaults_from().
            transport: Custom HttpTransport. If None, uses RequestsHttpTransport.
            gate: AdmissionGate to use. Pass the same gate to several clients to
                make them share one quota. If None, the client creates its own.
            on_retry: Callback fired before each retry with
                ``(error, attempt_number, delay)``.
        """
        from veniceai._config import VENICE
        cfg = VENICE.config

        resolved_options = (options or ClientOptions()).with_defaults_from(cfg)

        if base_url is None:
            base_url = cfg.client.base_url
        if api_key is None:
            api_key = cfg.client.api_key

        if transport is None:
            if not api_key:
                logger.warning("⚠️ No Venice API key configured. Requests will be sent without Authorization.")
            transport = RequestsHttpTransport(api_key=api_key)

        assert base_url, "Venice base_url cannot be empty."
        assert resolved_options.request_timeout is not None, \
            "🌀 Sanity check | request_timeout must be set after with_defaults_from()"

        self.base_url = base_url.rstrip("/")
        self.options = resolved_options
        self.transport: HttpTransport = transport
        self.gate = gate or resolved_options.to_admission_gate()
        self.orchestrator = RequestOrchestrator(
            transport=transport,
            gate=self.gate,
            policy=resolved_options.to_retry_policy(),
            base_url=self.base_url,
            request_timeout=resolved_options.request_timeout,
            max_wait_time=resolved_options.max_wait_time,
            on_retry=on_retry,
        )

    def request(self, spec: RequestSpec) -> ApiResponse | MessageStream:
        """
        Execute an arbitrary request.

        Returns:
            ApiResponse, or MessageStream when ``spec.stream`` is True.
        """
        return self.orchestrator.execute(spec)

    def chat(
        self,
        body: dict[str, Any],
        cancel_token: CancellationToken | None = None,
    ) -> ApiResponse:
        """
        Create a chat completion and wait for the full response (blocking).

        Args:
            body: Chat completion payload (model, messages, ...).
            cancel_token: Optional token to cancel the call.

        Returns:
            ApiResponse with the completion JSON.
        """
        assert body, "Chat body cannot be empty."
        spec = RequestSpec(
            method="POST",
            path="/chat/completions",
            body={**body, "stream": False},
            cancel_token=cancel_token,
        )
        response = self.orchestrator.execute(spec)
        assert isinstance(response, ApiResponse), "🌀 Sanity check | Buffered call returned a stream."
        return response

    def chat_stream(
        self,
        body: dict[str, Any],
        cancel_token: CancellationToken | None = None,
    ) -> MessageStream:
        """
        Create a streamed chat completion.

        The returned stream holds an admission slot until it is consumed or
        closed; use it as a context manager.

        Args:
            body: Chat completion payload (model, messages, ...). ``stream`` is forced to True.
            cancel_token: Optional token to cancel the call, including mid-stream.

        Returns:
            MessageStream yielding StreamEvents.
        """
        assert body, "Chat body cannot be empty."
        spec = RequestSpec(
            method="POST",
            path="/chat/completions",
            body={**body, "stream": True},
            stream=True,
            cancel_token=cancel_token,
        )
        stream = self.orchestrator.execute(spec)
        assert isinstance(stream, MessageStream), "🌀 Sanity check | Streaming call returned a buffered response."
        return stream

    def generate_image(
        self,
        body: dict[str, Any],
        cancel_token: CancellationToken | None = None,
    ) -> ApiResponse:
        """
        Generate an image (blocking).

        Args:
            body: Image generation payload (model, prompt, size, ...).
            cancel_token: Optional token to cancel the call.
        """
        assert body, "Image body cannot be empty."
        spec = RequestSpec(
            method="POST",
            path="/image/generate",
            body=body,
            cancel_token=cancel_token,
        )
        response = self.orchestrator.execute(spec)
        assert isinstance(response, ApiResponse), "🌀 Sanity check | Buffered call returned a stream."
        return response

    def list_models(self, type: str | None = None) -> ApiResponse:
        """
        List available models.

        Args:
            type: Optional model type filter (e.g. "text", "image").
        """
        path = "/models" if type is None else f"/models?{urlencode({'type': type})}"
        response = self.orchestrator.execute(RequestSpec(method="GET", path=path))
        assert isinstance(response, ApiResponse), "🌀 Sanity check | Buffered call returned a stream."
        return response

    def close(self) -> None:
        """Release the transport's pooled connections."""
        self.transport.close()

    def __enter__(self) -> VeniceClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
