from __future__ import annotations

import sys
import unittest
from pathlib import Path

import httpx

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from ai.endpoint_probe import OFFICIAL_OPENAI_BASE_URL, is_valid_http_url, normalize_base_url, probe_endpoint


class NormalizeBaseUrlTest(unittest.TestCase):
    def test_normalization(self) -> None:
        self.assertEqual(normalize_base_url(""), OFFICIAL_OPENAI_BASE_URL)
        self.assertEqual(normalize_base_url(" https://api.example.com/ "), "https://api.example.com/v1")
        self.assertEqual(normalize_base_url("https://api.example.com/v1"), "https://api.example.com/v1")
        self.assertEqual(
            normalize_base_url("https://api.example.com/v1/chat/completions"),
            "https://api.example.com/v1",
        )
        self.assertEqual(
            normalize_base_url("https://dashscope.aliyuncs.com/compatible-mode"),
            "https://dashscope.aliyuncs.com/compatible-mode/v1",
        )

    def test_url_validation(self) -> None:
        self.assertTrue(is_valid_http_url("http://localhost:8080/v1"))
        self.assertFalse(is_valid_http_url("ftp://example.com"))
        self.assertFalse(is_valid_http_url("example.com"))


class ProbeEndpointTest(unittest.TestCase):
    def test_success_sends_bearer_token(self) -> None:
        seen: list[httpx.Request] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        result = probe_endpoint("https://api.example.com", " sk-test ", transport=httpx.MockTransport(_handler))

        self.assertTrue(result.ok)
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.url, "https://api.example.com/v1/models")
        self.assertEqual(seen[0].method, "GET")
        self.assertEqual(seen[0].headers["Authorization"], "Bearer sk-test")

    def test_no_authorization_without_key(self) -> None:
        seen: list[httpx.Request] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        probe_endpoint("https://api.example.com/v1", transport=httpx.MockTransport(_handler))
        self.assertNotIn("Authorization", seen[0].headers)

    def test_http_error_is_reported(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="invalid api key"))
        result = probe_endpoint("https://api.example.com/v1", "bad", transport=transport)
        self.assertFalse(result.ok)
        self.assertEqual(result.status_code, 401)
        self.assertIn("invalid api key", result.detail)

    def test_transport_error_is_reported(self) -> None:
        def _handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = probe_endpoint("https://api.example.com/v1", transport=httpx.MockTransport(_handler))
        self.assertFalse(result.ok)
        self.assertEqual(result.status_code, 0)
        self.assertIn("connection refused", result.detail)

    def test_invalid_url_short_circuits(self) -> None:
        def _handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = probe_endpoint("not a url", transport=httpx.MockTransport(_handler))
        self.assertFalse(result.ok)
        self.assertEqual(result.detail, "invalid base URL")


if __name__ == "__main__":
    unittest.main()
