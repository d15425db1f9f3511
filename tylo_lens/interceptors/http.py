"""
HTTP (httpx) Interceptor

Traces requests sent through an httpx transport as ``http`` spans.

Two ways in:
- Explicit: ``httpx.Client(transport=TracingTransport(lens))``
- Global: NetworkInstrumentationPlugin patches httpx.HTTPTransport /
  httpx.AsyncHTTPTransport with trace_request / trace_async_request

Server-sent event responses are replaced by a tee stream: every chunk still
reaches the caller, a copy feeds SSECapture, and the span ends when the
stream is exhausted or closed.
"""

import logging
import zlib
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Dict, Iterator, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from tylo_lens.core.config import settings
from tylo_lens.interceptors.patching import instrumentation_suppressed
from tylo_lens.interceptors.sse import SSECapture
from tylo_lens.schemas.trace import RequestInfo, ResponseInfo, SpanInput, SpanKind, SpanOutput, SpanStart

if TYPE_CHECKING:
    from tylo_lens.observability.lens import SpanHandle, TyloLens


logger = logging.getLogger(__name__)

TRACED_EXTENSION = "tylo_lens.traced"


class HttpInterceptorOptions(BaseModel):
    """Capture switches for HTTP spans. Bodies and headers are opt-in."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    should_trace: Optional[Callable[[str], bool]] = None
    capture_request_body: bool = False
    capture_response_body: bool = False
    capture_sse: bool = False
    # Ceiling defaults come from TYLO_LENS_SSE_MAX_BYTES / TYLO_LENS_SSE_MAX_EVENTS
    sse_max_bytes: int = Field(default_factory=lambda: settings.sse_max_bytes)
    sse_max_events: int = Field(default_factory=lambda: settings.sse_max_events)
    redact_headers: bool = True
    span_name: str = "http.request"


def is_event_stream(response: httpx.Response) -> bool:
    return "text/event-stream" in response.headers.get("content-type", "").lower()


def _request_body(request: httpx.Request) -> Optional[str]:
    try:
        content = request.content
    except httpx.RequestNotRead:
        return None
    if not content:
        return None
    return content.decode("utf-8", errors="replace")


def _should_trace(request: httpx.Request, options: HttpInterceptorOptions) -> bool:
    if instrumentation_suppressed() or request.extensions.get(TRACED_EXTENSION):
        return False
    if options.should_trace is not None and not options.should_trace(str(request.url)):
        return False
    return True


def _start_http_span(lens: "TyloLens", request: httpx.Request, options: HttpInterceptorOptions) -> "SpanHandle":
    # Mark so a wrapped transport under a patched one is not traced twice
    request.extensions = {**request.extensions, TRACED_EXTENSION: True}
    return lens.start_span(SpanStart(
        kind=SpanKind.HTTP,
        name=options.span_name,
        input=SpanInput(request=RequestInfo(
            url=str(request.url),
            method=request.method,
            headers=None if options.redact_headers else dict(request.headers),
            body=_request_body(request) if options.capture_request_body else None,
        )),
    ))


def _decode_body(response: httpx.Response, raw: bytes) -> Optional[str]:
    try:
        return httpx.Response(response.status_code, headers=response.headers, content=raw).text
    except Exception as e:
        logger.debug(f"[HTTP] response body not captured: {e}")
        return None


def _rebuffered(response: httpx.Response, raw: bytes) -> httpx.Response:
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=httpx.ByteStream(raw),
        extensions=response.extensions,
    )


# ============================================================
# SSE TEE
# ============================================================

def _content_encodings(response: httpx.Response) -> List[str]:
    values = response.headers.get_list("content-encoding", split_commas=True)
    return [value.strip().lower() for value in values if value.strip().lower() not in ("", "identity")]


class ContentDecoder:
    """
    Incremental Content-Encoding decoder for the captured copy of a stream.

    The caller still receives the encoded bytes and decodes them through
    httpx as usual. Supports gzip and deflate, layered in header order.
    """

    def __init__(self, encodings: List[str]):
        self._decompressors: List[Any] = []
        # Last applied encoding is undone first
        for encoding in reversed(encodings):
            if encoding in ("gzip", "x-gzip"):
                self._decompressors.append(zlib.decompressobj(zlib.MAX_WBITS | 16))
            elif encoding == "deflate":
                self._decompressors.append(zlib.decompressobj())
            else:
                raise ValueError(f"unsupported content-encoding: {encoding}")

    def decode(self, data: bytes) -> bytes:
        for decompressor in self._decompressors:
            data = decompressor.decompress(data)
        return data

    def flush(self) -> bytes:
        data = b""
        for decompressor in self._decompressors:
            data = decompressor.decompress(data) + decompressor.flush()
        return data


class _SSETap:
    """Shared state between a tee stream and its span."""

    def __init__(self, handle: "SpanHandle", options: HttpInterceptorOptions, encodings: Optional[List[str]] = None):
        self._handle = handle
        self._capture = SSECapture(max_bytes=options.sse_max_bytes, max_events=options.sse_max_events)
        self._capturing = True
        self._error: Optional[str] = None
        self._decoder: Optional[ContentDecoder] = None
        try:
            self._decoder = ContentDecoder(encodings or [])
        except ValueError as e:
            logger.debug(f"[HTTP] event stream not captured: {e}")
            self._capturing = False
            self._error = str(e)

    def feed(self, chunk: bytes) -> None:
        if not self._capturing:
            return
        try:
            self._consume(self._decoder.decode(chunk))
        except Exception as e:
            self._capturing = False
            self._error = str(e)

    def _consume(self, data: bytes) -> None:
        if not data:
            return
        delta = self._capture.feed(data)
        if delta:
            self._handle.update(output={"text": self._capture.text})
        if self._capture.truncated:
            self._capturing = False

    def fail(self, error: BaseException) -> None:
        self._error = str(error) or type(error).__name__

    def finish(self) -> None:
        if self._handle.ended:
            return
        if self._capturing:
            try:
                self._consume(self._decoder.flush())
            except Exception as e:
                self._error = str(e)
            self._capturing = False
        meta: Dict[str, Any] = {}
        if self._error is not None:
            meta["sseError"] = self._error
        if self._capture.truncated:
            meta["sseTruncated"] = True
        self._handle.end(meta=meta or None)


class TeeStream(httpx.SyncByteStream):
    def __init__(self, stream: httpx.SyncByteStream, tap: _SSETap):
        self._stream = stream
        self._tap = tap

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._stream:
                self._tap.feed(chunk)
                yield chunk
        except Exception as e:
            self._tap.fail(e)
            self._tap.finish()
            raise
        self._tap.finish()

    def close(self) -> None:
        try:
            self._stream.close()
        finally:
            self._tap.finish()


class AsyncTeeStream(httpx.AsyncByteStream):
    def __init__(self, stream: httpx.AsyncByteStream, tap: _SSETap):
        self._stream = stream
        self._tap = tap

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._stream:
                self._tap.feed(chunk)
                yield chunk
        except Exception as e:
            self._tap.fail(e)
            self._tap.finish()
            raise
        self._tap.finish()

    async def aclose(self) -> None:
        try:
            await self._stream.aclose()
        finally:
            self._tap.finish()


# ============================================================
# REQUEST TRACING
# ============================================================

def trace_request(
    lens: "TyloLens",
    request: httpx.Request,
    send: Callable[[httpx.Request], httpx.Response],
    options: Optional[HttpInterceptorOptions] = None,
) -> httpx.Response:
    """Send request through ``send`` inside an http span."""
    options = options or HttpInterceptorOptions()
    if not _should_trace(request, options):
        return send(request)

    handle = _start_http_span(lens, request, options)
    try:
        response = send(request)

        if options.capture_sse and is_event_stream(response):
            handle.update(output={"response": {"status": response.status_code}})
            handle.detach()
            tee = TeeStream(response.stream, _SSETap(handle, options, _content_encodings(response)))
            return httpx.Response(
                response.status_code, headers=response.headers, stream=tee, extensions=response.extensions
            )

        body = None
        if options.capture_response_body:
            if response.is_stream_consumed:
                body = response.text
            else:
                raw = b"".join(response.iter_raw())
                response.close()
                body = _decode_body(response, raw)
                response = _rebuffered(response, raw)
    except BaseException as e:
        handle.end(error=e)
        raise

    handle.end(output=SpanOutput(response=ResponseInfo(status=response.status_code, body=body)))
    return response


async def trace_async_request(
    lens: "TyloLens",
    request: httpx.Request,
    send: Callable[[httpx.Request], Awaitable[httpx.Response]],
    options: Optional[HttpInterceptorOptions] = None,
) -> httpx.Response:
    options = options or HttpInterceptorOptions()
    if not _should_trace(request, options):
        return await send(request)

    handle = _start_http_span(lens, request, options)
    try:
        response = await send(request)

        if options.capture_sse and is_event_stream(response):
            handle.update(output={"response": {"status": response.status_code}})
            handle.detach()
            tee = AsyncTeeStream(response.stream, _SSETap(handle, options, _content_encodings(response)))
            return httpx.Response(
                response.status_code, headers=response.headers, stream=tee, extensions=response.extensions
            )

        body = None
        if options.capture_response_body:
            if response.is_stream_consumed:
                body = response.text
            else:
                raw = b"".join([chunk async for chunk in response.aiter_raw()])
                await response.aclose()
                body = _decode_body(response, raw)
                response = _rebuffered(response, raw)
    except BaseException as e:
        handle.end(error=e)
        raise

    handle.end(output=SpanOutput(response=ResponseInfo(status=response.status_code, body=body)))
    return response


# ============================================================
# TRANSPORTS
# ============================================================

class TracingTransport(httpx.BaseTransport):
    """
    httpx transport decorator.

    Usage:
        client = httpx.Client(transport=TracingTransport(lens, capture_sse=True))
    """

    def __init__(
        self,
        lens: "TyloLens",
        transport: Optional[httpx.BaseTransport] = None,
        options: Optional[HttpInterceptorOptions] = None,
        **kwargs: Any,
    ):
        self._lens = lens
        self._transport = transport or httpx.HTTPTransport()
        self._options = options or HttpInterceptorOptions(**kwargs)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return trace_request(self._lens, request, self._transport.handle_request, self._options)

    def close(self) -> None:
        self._transport.close()


class AsyncTracingTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        lens: "TyloLens",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        options: Optional[HttpInterceptorOptions] = None,
        **kwargs: Any,
    ):
        self._lens = lens
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._options = options or HttpInterceptorOptions(**kwargs)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await trace_async_request(self._lens, request, self._transport.handle_async_request, self._options)

    async def aclose(self) -> None:
        await self._transport.aclose()
