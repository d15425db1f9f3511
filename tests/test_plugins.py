"""
Plugin Tests

Auto-trace, exporter registration, global network instrumentation,
realtime webhook debouncing and the tiktoken estimator swap.
"""

import asyncio
import logging
import time
import urllib.request
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest
import tiktoken

from tylo_lens.cost.tokens import estimate_tokens
from tylo_lens.observability.events import EventType
from tylo_lens.plugins import (
    AutoTracePlugin,
    ExporterPlugin,
    NetworkInstrumentationPlugin,
    RealtimeWebhookPlugin,
    TiktokenTokenizerPlugin,
)


FAKE_ENCODING = SimpleNamespace(encode=lambda text: text.split())


def _finish_span(lens, name="step"):
    with lens.span(kind="tool", name=name):
        pass


# ============================================================
# AUTO-TRACE
# ============================================================

@pytest.mark.asyncio
async def test_auto_trace_exports_after_idle(lens, recorder, events):
    """Test: trace is ended, exported and flushed once spans go quiet."""
    print("=" * 60)
    print("TEST: Auto-trace idle export")
    print("=" * 60)

    lens.add_exporter(recorder)
    lens.use(AutoTracePlugin(idle_ms=20, flush_on_export=True))

    _finish_span(lens, "first")
    await asyncio.sleep(0.005)
    _finish_span(lens, "second")
    await asyncio.sleep(0.15)

    trace = lens.get_trace()
    assert trace.ended_at is not None
    assert [e for e in events if e[0] == EventType.EXPORT] == [(EventType.EXPORT, None)]
    assert len(recorder.traces) == 1
    assert [s.name for s in recorder.traces[0].spans] == ["first", "second"]

    print("  ✅ PASSED\n")


@pytest.mark.asyncio
async def test_auto_trace_cancelled_by_new_trace(lens, events):
    lens.use(AutoTracePlugin(idle_ms=30))

    _finish_span(lens)
    lens.start_trace()
    await asyncio.sleep(0.1)

    assert lens.get_trace().ended_at is None
    assert (EventType.EXPORT, None) not in events


def test_auto_trace_without_event_loop(lens):
    """Test: outside asyncio the timer runs on a thread."""
    lens.use(AutoTracePlugin(idle_ms=10))
    _finish_span(lens)

    deadline = time.monotonic() + 2
    while lens.get_trace().ended_at is None and time.monotonic() < deadline:
        time.sleep(0.01)
    assert lens.get_trace().ended_at is not None


@pytest.mark.asyncio
async def test_auto_trace_dispose_cancels_timer(lens, events):
    lens.use(AutoTracePlugin(idle_ms=20))
    _finish_span(lens)
    lens.dispose()
    await asyncio.sleep(0.08)
    assert lens.get_trace().ended_at is None


# ============================================================
# EXPORTER
# ============================================================

@pytest.mark.asyncio
async def test_exporter_plugin_registers(lens, recorder):
    plugin = ExporterPlugin(recorder)
    assert plugin.name == "exporter:recording"

    lens.use(plugin)
    assert lens.exporters == [recorder]

    trace = await lens.export_and_flush()
    assert recorder.traces == [trace]


# ============================================================
# NETWORK INSTRUMENTATION
# ============================================================

def _offline_handle_request(self, request):
    return httpx.Response(200, content=b"pong")


async def _offline_handle_async_request(self, request):
    return httpx.Response(200, content=b"pong")


@pytest.fixture
def offline_httpx():
    with patch.object(httpx.HTTPTransport, "handle_request", _offline_handle_request), \
            patch.object(httpx.AsyncHTTPTransport, "handle_async_request", _offline_handle_async_request):
        yield


def test_network_plugin_traces_plain_clients(lens, offline_httpx):
    """Test: every httpx.Client is traced until dispose restores the transport."""
    print("=" * 60)
    print("TEST: Network instrumentation")
    print("=" * 60)

    lens.use(NetworkInstrumentationPlugin(capture_response_body=True))
    assert httpx.HTTPTransport.handle_request is not _offline_handle_request

    with httpx.Client() as client:
        assert client.get("https://api.example.com/ping").text == "pong"

    span = lens.get_trace().spans[0]
    assert span.name == "http.request"
    assert span.output.response.body == "pong"

    lens.dispose()
    assert httpx.HTTPTransport.handle_request is _offline_handle_request
    assert httpx.AsyncHTTPTransport.handle_async_request is _offline_handle_async_request

    print("  ✅ PASSED\n")


@pytest.mark.asyncio
async def test_network_plugin_traces_async_clients(lens, offline_httpx):
    lens.use(NetworkInstrumentationPlugin(should_trace=lambda url: "skip" not in url))

    async with httpx.AsyncClient() as client:
        await client.get("https://api.example.com/skip")
        await client.get("https://api.example.com/keep")

    assert [s.input.request.url for s in lens.get_trace().spans] == ["https://api.example.com/keep"]


def test_network_plugin_urllib(lens):
    fake_open = MagicMock(return_value=MagicMock(status=201))
    with patch.object(urllib.request.OpenerDirector, "open", fake_open):
        lens.use(NetworkInstrumentationPlugin(httpx=False, urllib=True))
        urllib.request.build_opener().open("https://api.example.com/legacy")
        lens.dispose()
        assert urllib.request.OpenerDirector.open is fake_open

    span = lens.get_trace().spans[0]
    assert span.name == "http.urllib"
    assert span.output.response.status == 201


# ============================================================
# REALTIME WEBHOOK
# ============================================================

@pytest.mark.asyncio
async def test_realtime_webhook_debounces_bursts(lens):
    """Test: a burst of span events yields one snapshot push."""
    print("=" * 60)
    print("TEST: Realtime webhook debounce")
    print("=" * 60)

    with patch("tylo_lens.plugins.realtime_webhook.post_json", return_value=True) as mock_post:
        lens.use(RealtimeWebhookPlugin("http://localhost:9999/live", headers={"x-key": "k"}, debounce_ms=20))

        with lens.span(kind="tool", name="stream") as handle:
            for i in range(5):
                handle.update(output={"text": "x" * i})
        await asyncio.sleep(0.2)

        assert mock_post.call_count == 1
        url, payload = mock_post.call_args.args
        assert url == "http://localhost:9999/live"
        assert payload["traceId"] == lens.get_trace().trace_id
        assert payload["spans"][0]["name"] == "stream"
        assert mock_post.call_args.kwargs["headers"] == {"x-key": "k"}

        # Next burst, next push
        _finish_span(lens, "later")
        await asyncio.sleep(0.2)
        assert mock_post.call_count == 2

    print("  ✅ PASSED\n")


@pytest.mark.asyncio
async def test_realtime_webhook_final_push_optional(lens):
    with patch("tylo_lens.plugins.realtime_webhook.post_json", return_value=True) as mock_post:
        lens.use(RealtimeWebhookPlugin("http://localhost:9999/live", debounce_ms=10, include_final=False))
        lens.export_trace()
        await asyncio.sleep(0.1)
        mock_post.assert_not_called()


def test_realtime_webhook_without_event_loop(lens):
    """Test: outside asyncio the push runs on the timer thread."""
    with patch("tylo_lens.plugins.realtime_webhook.post_json", return_value=False) as mock_post:
        lens.use(RealtimeWebhookPlugin("http://localhost:9999/live", debounce_ms=10))
        _finish_span(lens)

        deadline = time.monotonic() + 2
        while mock_post.call_count == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert mock_post.call_count == 1


@pytest.mark.asyncio
async def test_realtime_webhook_dispose_cancels_pending_push(lens):
    with patch("tylo_lens.plugins.realtime_webhook.post_json", return_value=True) as mock_post:
        lens.use(RealtimeWebhookPlugin("http://localhost:9999/live", debounce_ms=30))
        _finish_span(lens)
        lens.dispose()
        await asyncio.sleep(0.1)
        mock_post.assert_not_called()


# ============================================================
# TIKTOKEN
# ============================================================

def test_tiktoken_plugin_swaps_estimator(lens):
    """Test: counts come from the encoding; dispose restores the heuristic."""
    lens.use(TiktokenTokenizerPlugin(encoding=FAKE_ENCODING))

    assert lens.token_estimator("one two three") == 3
    assert lens.token_estimator("") == 0

    lens.wrap_llm("test-model", lambda request: {"outputText": "a b"})("x y z w")
    assert lens.get_trace().spans[0].usage.total_tokens == 6

    lens.dispose()
    assert lens.token_estimator is estimate_tokens


def test_tiktoken_unknown_model_uses_encoding_name(lens):
    with patch.object(tiktoken, "encoding_for_model", side_effect=KeyError("nope")), \
            patch.object(tiktoken, "get_encoding", return_value=FAKE_ENCODING) as get_encoding:
        lens.use(TiktokenTokenizerPlugin(model="my-finetune", encoding_name="o200k_base"))

    get_encoding.assert_called_once_with("o200k_base")
    assert lens.token_estimator("a b") == 2


def test_tiktoken_load_failure_falls_back(lens, caplog):
    """Test: no encoding available means the heuristic stays in place."""
    with patch.object(tiktoken, "get_encoding", side_effect=RuntimeError("offline")):
        with caplog.at_level(logging.WARNING):
            lens.use(TiktokenTokenizerPlugin())

    assert "tiktoken unavailable" in caplog.text
    assert lens.token_estimator is estimate_tokens


def test_tiktoken_encode_error_falls_back(lens):
    def broken(text):
        raise ValueError("special token")

    lens.use(TiktokenTokenizerPlugin(encoding=SimpleNamespace(encode=broken)))
    assert lens.token_estimator("abcdefgh") == estimate_tokens("abcdefgh")
