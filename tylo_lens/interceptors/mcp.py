"""
MCP Client Interceptor

Proxy around an MCP client. ``request(method, params)`` and
``call_tool(name, arguments)`` become ``mcp`` spans; every other attribute
is delegated to the wrapped client untouched.
"""

import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Dict, Optional

from tylo_lens.schemas.trace import SpanInput, SpanKind, SpanStart

if TYPE_CHECKING:
    from tylo_lens.observability.lens import SpanHandle, TyloLens


TOOLS_CALL_METHOD = "tools/call"


class TracedMCPClient:
    """
    Usage:
        client = TracedMCPClient(session, lens, client_name="files")
        result = await client.call_tool("read_file", {"path": "README.md"})
    """

    def __init__(self, client: Any, lens: "TyloLens", client_name: str = "mcp", capture_params: bool = False):
        self._client = client
        self._lens = lens
        self._client_name = client_name
        self._capture_params = capture_params

    @property
    def wrapped(self) -> Any:
        return self._client

    def __getattr__(self, name: str) -> Any:
        return getattr(self._client, name)

    def request(self, method: str, params: Any = None) -> Any:
        return self._traced(self._client.request, (method, params), method, params, {})

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        return self._traced(
            self._client.call_tool, (name, arguments), TOOLS_CALL_METHOD, arguments, {"tool": name}
        )

    # --- internals ---

    def _start(self, method: str, params: Any, extra_meta: Dict[str, Any]) -> "SpanHandle":
        return self._lens.start_span(SpanStart(
            kind=SpanKind.MCP,
            name=f"{self._client_name}.request",
            input=SpanInput(messages=params) if self._capture_params and params is not None else None,
            meta={"method": method, **extra_meta},
        ))

    def _traced(self, target, args, method: str, params: Any, extra_meta: Dict[str, Any]) -> Any:
        if inspect.iscoroutinefunction(target):
            return self._traced_async(target, args, method, params, extra_meta)

        handle = self._start(method, params, extra_meta)
        try:
            result = target(*args)
        except BaseException as e:
            handle.end(error=e)
            raise
        if inspect.isawaitable(result):
            return self._finish_awaitable(handle, result)
        handle.end()
        return result

    async def _traced_async(self, target, args, method: str, params: Any, extra_meta: Dict[str, Any]) -> Any:
        handle = self._start(method, params, extra_meta)
        return await self._finish_awaitable(handle, target(*args))

    async def _finish_awaitable(self, handle: "SpanHandle", awaitable: Awaitable[Any]) -> Any:
        try:
            result = await awaitable
        except BaseException as e:
            handle.end(error=e)
            raise
        handle.end()
        return result
