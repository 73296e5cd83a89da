"""Tests for RequestSpec."""

import unittest

from veniceai import RequestSpec


class TestRequestSpec(unittest.TestCase):
    """Tests for the immutable request description."""

    def test_headers_are_read_only(self):
        spec = RequestSpec(method="GET", path="/models", headers={"Accept": "application/xml"})

        with self.assertRaises(TypeError):
            spec.headers["Accept"] = "text/plain"
        self.assertEqual(spec.headers["Accept"], "application/xml")

    def test_headers_are_copied_from_caller(self):
        headers = {"Accept": "application/xml"}
        spec = RequestSpec(method="GET", path="/models", headers=headers)

        headers["Accept"] = "text/plain"
        headers["X-Extra"] = "1"

        self.assertEqual(dict(spec.headers), {"Accept": "application/xml"})

    def test_default_headers_are_empty(self):
        spec = RequestSpec(method="GET", path="/models")
        self.assertEqual(len(spec.headers), 0)

    def test_each_spec_gets_an_id(self):
        first = RequestSpec(method="GET", path="/models")
        second = RequestSpec(method="GET", path="/models")
        self.assertNotEqual(first.id, second.id)

    def test_invalid_timeout_is_rejected(self):
        with self.assertRaises(AssertionError):
            RequestSpec(method="GET", path="/models", timeout=0)


if __name__ == "__main__":
    unittest.main()
