"""
urllib Interceptor

Global patch of urllib.request.OpenerDirector.open, so urlopen() and every
opener built with build_opener() produce ``http`` spans.

Response bodies are not captured: the response object is handed back to
the caller untouched.
"""

import urllib.error
import urllib.request
from typing import TYPE_CHECKING, Any, Callable, Optional

from tylo_lens.interceptors.patching import Patch, instrumentation_suppressed
from tylo_lens.schemas.trace import RequestInfo, ResponseInfo, SpanInput, SpanKind, SpanOutput, SpanStart

if TYPE_CHECKING:
    from tylo_lens.observability.lens import TyloLens


def _describe(fullurl: Any, data: Any):
    """(url, method, headers, body) for a str url or a Request object."""
    if isinstance(fullurl, urllib.request.Request):
        body = fullurl.data if data is None else data
        method = fullurl.get_method() if data is None else ("POST" if fullurl.method is None else fullurl.method)
        return fullurl.full_url, method, dict(fullurl.header_items()), body
    return str(fullurl), "POST" if data is not None else "GET", {}, data


def _body_text(body: Any) -> Optional[str]:
    if isinstance(body, str):
        return body
    if isinstance(body, (bytes, bytearray)):
        return bytes(body).decode("utf-8", errors="replace")
    return None


def install_urllib_interceptor(
    lens: "TyloLens",
    capture_request_body: bool = False,
    redact_headers: bool = True,
    should_trace: Optional[Callable[[str], bool]] = None,
    span_name: str = "http.urllib",
) -> Patch:
    """
    Start tracing urllib requests.

    Returns:
        The installed Patch; call uninstall() to restore the original method.
    """

    def factory(original_open):
        def traced_open(self, fullurl, data=None, *args, **kwargs):
            if instrumentation_suppressed():
                return original_open(self, fullurl, data, *args, **kwargs)
            url, method, headers, body = _describe(fullurl, data)
            if should_trace is not None and not should_trace(url):
                return original_open(self, fullurl, data, *args, **kwargs)

            handle = lens.start_span(SpanStart(
                kind=SpanKind.HTTP,
                name=span_name,
                input=SpanInput(request=RequestInfo(
                    url=url,
                    method=method,
                    headers=None if redact_headers else headers,
                    body=_body_text(body) if capture_request_body else None,
                )),
            ))
            try:
                response = original_open(self, fullurl, data, *args, **kwargs)
            except urllib.error.HTTPError as e:
                handle.end(output=SpanOutput(response=ResponseInfo(status=e.code)), error=e)
                raise
            except BaseException as e:
                handle.end(error=e)
                raise

            status = getattr(response, "status", None) or response.getcode()
            handle.end(output=SpanOutput(response=ResponseInfo(status=status)))
            return response

        return traced_open

    return Patch(urllib.request.OpenerDirector, "open", factory).install()
