"""Tests for HTTP error mapping."""

import unittest
from unittest.mock import MagicMock

import requests

from veniceai import (
    AdmissionTimeoutError,
    MaxRetriesExceededError,
    RequestCancelledError,
    RetryableError,
    StreamInterruptedError,
    VeniceApiError,
    VeniceAuthError,
    VeniceCapacityError,
    VeniceError,
    VeniceNotFoundError,
    VenicePaymentRequiredError,
    VenicePermissionError,
    VeniceRateLimitError,
    VeniceServerError,
    VeniceValidationError,
)
from veniceai._errors import error_from_response, raise_for_status


def make_response(status_code: int, body=None) -> MagicMock:
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = body
    return response


class TestErrorFromResponse(unittest.TestCase):
    """Tests for error_from_response()."""

    def test_status_codes_map_to_typed_errors(self):
        cases = {
            400: VeniceValidationError,
            401: VeniceAuthError,
            402: VenicePaymentRequiredError,
            403: VenicePermissionError,
            404: VeniceNotFoundError,
            422: VeniceValidationError,
            429: VeniceRateLimitError,
            500: VeniceServerError,
            502: VeniceServerError,
            503: VeniceCapacityError,
            418: VeniceApiError,
        }
        for status_code, expected in cases.items():
            with self.subTest(status_code=status_code):
                error = error_from_response(make_response(status_code))
                self.assertIs(type(error), expected)
                self.assertEqual(error.status_code, status_code)

    def test_string_error_field(self):
        error = error_from_response(make_response(400, {"error": "Invalid model", "details": {"model": "x"}}))

        self.assertEqual(str(error), "HTTP 400: Invalid model")
        self.assertEqual(error.details, {"model": "x"})

    def test_nested_error_message(self):
        error = error_from_response(make_response(401, {"error": {"message": "Bad key", "code": "auth"}}))
        self.assertEqual(str(error), "HTTP 401: Bad key")

    def test_non_json_body_falls_back_to_generic_message(self):
        response = make_response(502)
        error = error_from_response(response)

        self.assertEqual(str(error), "HTTP 502: HTTP error 502")
        self.assertIsNone(error.details)
        self.assertIs(error.response, response)

    def test_only_transient_statuses_are_retryable_by_type(self):
        self.assertIsInstance(error_from_response(make_response(429)), RetryableError)
        self.assertIsInstance(error_from_response(make_response(503)), RetryableError)
        self.assertNotIsInstance(error_from_response(make_response(500)), RetryableError)
        self.assertNotIsInstance(error_from_response(make_response(401)), RetryableError)

    def test_every_api_error_is_a_venice_error(self):
        self.assertIsInstance(error_from_response(make_response(404)), VeniceError)

    def test_error_hierarchy(self):
        self.assertTrue(issubclass(AdmissionTimeoutError, VeniceError))
        self.assertTrue(issubclass(StreamInterruptedError, VeniceError))
        self.assertTrue(issubclass(RequestCancelledError, VeniceError))
        self.assertFalse(issubclass(MaxRetriesExceededError, VeniceError))

    def test_max_retries_error_wraps_last_venice_error(self):
        last = error_from_response(make_response(503))
        error = MaxRetriesExceededError("Max retries exceeded", last_exception=last, attempts=4)

        self.assertIsInstance(error.last_exception, VeniceError)
        self.assertEqual(error.attempts, 4)


class TestRaiseForStatus(unittest.TestCase):
    """Tests for raise_for_status()."""

    def test_success_statuses_do_not_raise(self):
        for status_code in (200, 201, 204):
            raise_for_status(make_response(status_code))

    def test_error_status_raises(self):
        with self.assertRaises(VeniceNotFoundError):
            raise_for_status(make_response(404, {"error": "Model not found"}))


if __name__ == "__main__":
    unittest.main()
