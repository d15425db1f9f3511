# Interceptors Package
from tylo_lens.interceptors.http import (
    AsyncTracingTransport,
    HttpInterceptorOptions,
    TracingTransport,
    trace_async_request,
    trace_request,
)
from tylo_lens.interceptors.mcp import TracedMCPClient
from tylo_lens.interceptors.patching import Patch, suppress_instrumentation
from tylo_lens.interceptors.sse import SSECapture, SSEState, extract_delta_text
from tylo_lens.interceptors.urllib import install_urllib_interceptor

__all__ = [
    "AsyncTracingTransport",
    "HttpInterceptorOptions",
    "Patch",
    "SSECapture",
    "SSEState",
    "TracedMCPClient",
    "TracingTransport",
    "extract_delta_text",
    "install_urllib_interceptor",
    "suppress_instrumentation",
    "trace_async_request",
    "trace_request",
]
