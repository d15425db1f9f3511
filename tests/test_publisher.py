#!/usr/bin/env python3
"""
Trace Publisher Tests

Verifies fire-and-forget semantics:
- Publisher never raises exceptions
- Payload is the trace wire format
- Timeout is passed through
- The publisher's own request is never traced

Run: python3 tests/test_publisher.py
"""

import json
import socket
import sys
import urllib.error
import urllib.request
from unittest.mock import MagicMock, patch

from tylo_lens.interceptors.urllib import install_urllib_interceptor
from tylo_lens.observability.lens import TyloLens
from tylo_lens.observability.publisher import build_trace_payload, post_json, publish_trace


def create_test_lens() -> TyloLens:
    lens = TyloLens(app={"name": "publisher-test", "environment": "test"})
    chat = lens.wrap_llm("m", lambda request: {"outputText": "ok", "usage": {"inputTokens": 3, "outputTokens": 1}})
    chat("hello")
    return lens


def mock_response(status: int = 200) -> MagicMock:
    response = MagicMock()
    response.status = status
    response.read.return_value = b'{"ok": true}'
    response.__enter__ = MagicMock(return_value=response)
    response.__exit__ = MagicMock(return_value=False)
    return response


def test_trace_payload_construction():
    """Test: Payload is the camelCase trace document."""
    print("=" * 60)
    print("TEST: Trace payload construction")
    print("=" * 60)

    trace = create_test_lens().get_trace()
    payload = build_trace_payload(trace)

    assert payload["traceId"] == trace.trace_id
    assert payload["app"]["name"] == "publisher-test"
    assert "startedAt" in payload
    assert payload["spans"][0]["usage"]["totalTokens"] == 4
    # Round-trips through json
    json.dumps(payload)

    print("  ✅ PASSED\n")


def test_publisher_posts_json():
    """Test: One POST with JSON body, headers and timeout."""
    print("=" * 60)
    print("TEST: Publisher posts JSON")
    print("=" * 60)

    trace = create_test_lens().get_trace()

    with patch("urllib.request.urlopen") as mock_urlopen:
        mock_urlopen.return_value = mock_response()

        assert publish_trace("http://localhost:9999/traces", trace, headers={"x-api-key": "k"}, timeout_ms=500)

        mock_urlopen.assert_called_once()
        request = mock_urlopen.call_args.args[0]
        assert request.get_method() == "POST"
        assert request.full_url == "http://localhost:9999/traces"
        assert request.get_header("Content-type") == "application/json"
        assert request.get_header("X-api-key") == "k"
        assert json.loads(request.data)["traceId"] == trace.trace_id
        assert mock_urlopen.call_args.kwargs["timeout"] == 0.5

    print("  ✅ PASSED\n")


def test_non_2xx_returns_false():
    with patch("urllib.request.urlopen") as mock_urlopen:
        mock_urlopen.return_value = mock_response(status=204)
        assert post_json("http://localhost:9999", {"a": 1}) is True

        mock_urlopen.return_value = mock_response(status=302)
        assert post_json("http://localhost:9999", {"a": 1}) is False


def test_publisher_never_raises_on_connection_error():
    """Test: Publisher never raises even with connection errors."""
    print("=" * 60)
    print("TEST: Publisher never raises on connection error")
    print("=" * 60)

    trace = create_test_lens().get_trace()

    with patch("urllib.request.urlopen") as mock_urlopen:
        mock_urlopen.side_effect = urllib.error.URLError("Connection refused")

        # This should NOT raise
        assert publish_trace("http://localhost:9999", trace) is False
        print("  ✓ No exception raised on URLError")

    print("  ✅ PASSED\n")


def test_publisher_never_raises_on_timeout():
    """Test: Publisher never raises on timeout."""
    with patch("urllib.request.urlopen") as mock_urlopen:
        mock_urlopen.side_effect = socket.timeout("timed out")
        assert post_json("http://localhost:9999", {}) is False


def test_publisher_never_raises_on_bad_payload():
    """Test: Unserializable payloads are logged, not raised."""
    with patch("urllib.request.urlopen") as mock_urlopen:
        assert post_json("http://localhost:9999", {"value": object()}) is False
        mock_urlopen.assert_not_called()


def test_publisher_requests_are_not_traced():
    """Test: The SDK's own POST does not show up as a span."""
    lens = create_test_lens()
    fake_open = MagicMock(return_value=mock_response())

    with patch.object(urllib.request.OpenerDirector, "open", fake_open):
        interceptor = install_urllib_interceptor(lens)
        try:
            assert post_json("http://localhost:9999", {"a": 1})
        finally:
            interceptor.uninstall()

    assert fake_open.call_count == 1
    assert [s.kind.value for s in lens.get_trace().spans] == ["llm"]


def run_all_tests():
    """Run all publisher tests."""
    print("\n" + "=" * 60)
    print("   TRACE PUBLISHER TEST SUITE")
    print("=" * 60 + "\n")

    tests = [
        test_trace_payload_construction,
        test_publisher_posts_json,
        test_non_2xx_returns_false,
        test_publisher_never_raises_on_connection_error,
        test_publisher_never_raises_on_timeout,
        test_publisher_never_raises_on_bad_payload,
        test_publisher_requests_are_not_traced,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            test()
            passed += 1
        except AssertionError as e:
            print(f"  ❌ FAILED: {e}\n")
            failed += 1
        except Exception as e:
            print(f"  ❌ ERROR: {e}\n")
            failed += 1

    print("=" * 60)
    print(f"   RESULTS: {passed} passed, {failed} failed")
    print("=" * 60 + "\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
