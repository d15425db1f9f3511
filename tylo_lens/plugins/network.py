"""
Network Instrumentation Plugin

Global patch mode: every httpx client (sync and async) and, optionally,
every urllib opener in the process produces http spans until dispose().
"""

import functools
import logging
from typing import TYPE_CHECKING, Callable, List, Optional

import httpx

from tylo_lens.interceptors.http import HttpInterceptorOptions, trace_async_request, trace_request
from tylo_lens.interceptors.patching import Patch
from tylo_lens.interceptors.urllib import install_urllib_interceptor
from tylo_lens.plugins.base import Disposer, LensPlugin

if TYPE_CHECKING:
    from tylo_lens.observability.lens import PluginContext


logger = logging.getLogger(__name__)


class NetworkInstrumentationPlugin(LensPlugin):
    """
    Args:
        httpx: Patch httpx.HTTPTransport / httpx.AsyncHTTPTransport
        urllib: Patch urllib.request.OpenerDirector.open
        should_trace: Optional URL filter
    """

    name = "instrumentation:network"

    def __init__(
        self,
        httpx: bool = True,
        urllib: bool = False,
        capture_request_body: bool = False,
        capture_response_body: bool = False,
        capture_sse: bool = False,
        sse_max_bytes: Optional[int] = None,
        sse_max_events: Optional[int] = None,
        redact_headers: bool = True,
        should_trace: Optional[Callable[[str], bool]] = None,
    ):
        self.enable_httpx = httpx
        self.enable_urllib = urllib
        self.options = HttpInterceptorOptions(
            should_trace=should_trace,
            capture_request_body=capture_request_body,
            capture_response_body=capture_response_body,
            capture_sse=capture_sse,
            redact_headers=redact_headers,
            **{k: v for k, v in (("sse_max_bytes", sse_max_bytes), ("sse_max_events", sse_max_events)) if v is not None},
        )

    def setup(self, context: "PluginContext") -> Optional[Disposer]:
        patches: List[Patch] = []
        options = self.options

        try:
            if self.enable_httpx:
                patches.append(Patch(httpx.HTTPTransport, "handle_request", _sync_factory(context, options)).install())
                patches.append(
                    Patch(httpx.AsyncHTTPTransport, "handle_async_request", _async_factory(context, options)).install()
                )
            if self.enable_urllib:
                patches.append(install_urllib_interceptor(
                    context,
                    capture_request_body=options.capture_request_body,
                    redact_headers=options.redact_headers,
                    should_trace=options.should_trace,
                ))
        except Exception:
            _unwind(patches)
            raise

        logger.info(f"[NETWORK] instrumented {len(patches)} transport method(s)")
        return functools.partial(_unwind, patches)


def _sync_factory(context: "PluginContext", options: HttpInterceptorOptions):
    def factory(original):
        def handle_request(transport, request):
            return trace_request(context, request, functools.partial(original, transport), options)
        return handle_request
    return factory


def _async_factory(context: "PluginContext", options: HttpInterceptorOptions):
    def factory(original):
        async def handle_async_request(transport, request):
            return await trace_async_request(context, request, functools.partial(original, transport), options)
        return handle_async_request
    return factory


def _unwind(patches: List[Patch]) -> None:
    # Reverse order so stacked patches on the same attribute restore cleanly
    while patches:
        patches.pop().uninstall()
