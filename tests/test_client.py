"""Tests for VeniceClient and ClientOptions."""

import json
import os
import unittest
from unittest.mock import MagicMock, patch

import requests

from veniceai import (
    VENICE,
    AdmissionGate,
    ApiResponse,
    CancellationToken,
    ClientOptions,
    HttpTransport,
    MessageStream,
    RequestsHttpTransport,
    RequestSpec,
    VeniceClient,
)

CLEAN_ENV = {k: v for k, v in os.environ.items() if not k.startswith("VENICE_")}


def reset_clean() -> None:
    with patch.dict(os.environ, CLEAN_ENV, clear=True):
        VENICE.reset()


def make_response(body: dict | None = None, chunks: list[bytes] | None = None) -> MagicMock:
    response = MagicMock(spec=requests.Response)
    response.status_code = 200
    response.headers = {"Content-Type": "application/json"}
    response.content = json.dumps(body or {}).encode()
    response.json.return_value = body or {}
    if chunks is not None:
        response.iter_content.return_value = iter(chunks)
    return response


class TestClientOptions(unittest.TestCase):
    """Tests for ClientOptions resolution."""

    def setUp(self):
        reset_clean()

    def tearDown(self):
        reset_clean()

    def test_with_defaults_from_fills_none_fields(self):
        resolved = ClientOptions(request_timeout=120, max_concurrent=1).with_defaults_from(VENICE.config)

        self.assertEqual(resolved.request_timeout, 120)
        self.assertEqual(resolved.max_concurrent, 1)
        self.assertEqual(resolved.max_retries, 3)
        self.assertEqual(resolved.requests_per_minute, 60)
        self.assertIsNone(resolved.max_wait_time)

    def test_with_defaults_from_follows_global_config(self):
        VENICE.configure(retry={"max_retries": 0}, admission={"max_wait_time": 5})

        resolved = ClientOptions().with_defaults_from(VENICE.config)

        self.assertEqual(resolved.max_retries, 0)
        self.assertEqual(resolved.max_wait_time, 5)

    def test_zero_is_not_treated_as_missing(self):
        VENICE.configure(retry={"max_retries": 5})
        resolved = ClientOptions(max_retries=0).with_defaults_from(VENICE.config)
        self.assertEqual(resolved.max_retries, 0)

    def test_to_retry_policy(self):
        options = ClientOptions(
            max_retries=2, initial_delay=0.5, max_delay=4.0, backoff_multiplier=3.0, use_jitter=False,
        ).with_defaults_from(VENICE.config)

        policy = options.to_retry_policy()

        self.assertEqual(policy.max_retries, 2)
        self.assertEqual(policy.initial_delay, 0.5)
        self.assertEqual(policy.max_delay, 4.0)
        self.assertEqual(policy.multiplier, 3.0)
        self.assertFalse(policy.jitter)

    def test_to_retry_policy_requires_resolved_options(self):
        with self.assertRaises(AssertionError):
            ClientOptions().to_retry_policy()


class TestVeniceClient(unittest.TestCase):
    """Tests for the endpoint helpers of VeniceClient."""

    def setUp(self):
        reset_clean()
        self.transport = MagicMock(spec=HttpTransport)
        self.transport.send.return_value = make_response({"ok": True})
        self.client = VeniceClient(
            transport=self.transport,
            options=ClientOptions(max_retries=0),
        )

    def tearDown(self):
        reset_clean()

    def sent_spec(self):
        return self.transport.send.call_args.args[0]

    def test_uses_configured_base_url(self):
        self.assertEqual(self.client.base_url, "https://api.venice.ai/api/v1")
        self.client.list_models()
        self.assertEqual(self.transport.send.call_args.args[1], "https://api.venice.ai/api/v1")

    def test_chat_forces_buffered_request(self):
        body = {"model": "llama-3.3-70b", "messages": [{"role": "user", "content": "Hi"}], "stream": True}

        response = self.client.chat(body)

        self.assertIsInstance(response, ApiResponse)
        spec = self.sent_spec()
        self.assertEqual((spec.method, spec.path, spec.stream), ("POST", "/chat/completions", False))
        self.assertFalse(spec.body["stream"])
        # Caller's dict is not mutated
        self.assertTrue(body["stream"])

    def test_chat_stream_returns_message_stream(self):
        self.transport.send.return_value = make_response(chunks=[
            b'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n',
            b'data: {"choices": [{"delta": {"content": "lo"}}]}\n\ndata: [DONE]\n\n',
        ])

        with self.client.chat_stream({"model": "m", "messages": []}) as stream:
            self.assertIsInstance(stream, MessageStream)
            self.assertEqual(list(stream.text_stream), ["Hel", "lo"])

        spec = self.sent_spec()
        self.assertTrue(spec.stream)
        self.assertTrue(spec.body["stream"])
        self.assertEqual(self.client.gate.running_count, 0)

    def test_generate_image(self):
        token = CancellationToken()
        self.client.generate_image({"model": "flux", "prompt": "a lighthouse"}, cancel_token=token)

        spec = self.sent_spec()
        self.assertEqual((spec.method, spec.path), ("POST", "/image/generate"))
        self.assertEqual(spec.body["prompt"], "a lighthouse")
        self.assertIs(spec.cancel_token, token)

    def test_list_models_with_type_filter(self):
        self.client.list_models(type="image")
        self.assertEqual(self.sent_spec().path, "/models?type=image")

        self.client.list_models()
        self.assertEqual(self.sent_spec().path, "/models")
        self.assertEqual(self.sent_spec().method, "GET")

    def test_empty_body_is_rejected(self):
        with self.assertRaises(AssertionError):
            self.client.chat({})

    def test_close_closes_transport(self):
        with self.client:
            pass
        self.transport.close.assert_called_once()


class TestVeniceClientWiring(unittest.TestCase):
    """Tests for how VeniceClient builds its collaborators."""

    def setUp(self):
        reset_clean()

    def tearDown(self):
        reset_clean()

    def test_default_transport_uses_configured_api_key(self):
        VENICE.configure(client={"api_key": "sk-configured"})

        client = VeniceClient()

        self.assertIsInstance(client.transport, RequestsHttpTransport)
        headers = client.transport._default_headers(RequestSpec(method="GET", path="/models"))
        self.assertEqual(headers["Authorization"], "Bearer sk-configured")

    def test_gate_is_built_from_options(self):
        client = VeniceClient(
            api_key="sk-test",
            options=ClientOptions(max_concurrent=2, requests_per_minute=30, time_window=10.0),
        )

        self.assertEqual(client.gate.max_concurrent, 2)
        self.assertEqual(client.gate.requests_per_minute, 30)

    def test_clients_can_share_one_gate(self):
        gate = AdmissionGate(max_concurrent=1)
        transport = MagicMock(spec=HttpTransport)
        transport.send.return_value = make_response()

        first = VeniceClient(transport=transport, gate=gate)
        second = VeniceClient(transport=transport, gate=gate)
        first.list_models()
        second.list_models()

        self.assertIs(first.gate, second.gate)
        self.assertEqual(gate.window_count, 2)

    def test_on_retry_is_forwarded(self):
        on_retry = MagicMock()
        client = VeniceClient(api_key="sk-test", on_retry=on_retry)
        self.assertIs(client.orchestrator.on_retry, on_retry)


if __name__ == "__main__":
    unittest.main()
