"""
TyloLens Engine

Single source of truth for the active trace, the span stack, exporters and
plugin teardown.

DESIGN RULES:
- One active trace per instance; start_trace() replaces it
- All span paths (wrap_llm, interceptors, manual) go through start_span()
- update() merges, end() overwrites (meta always merges)
- Exporter / listener / disposer failures are logged, never raised
- Trace and span-stack mutation is serialized by one re-entrant lock
- Failures of the instrumented call are recorded and re-raised unchanged
"""

import asyncio
import functools
import inspect
import logging
import math
import threading
from contextlib import asynccontextmanager, contextmanager
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    TypeVar,
    Union,
)

from tylo_lens.core.errors import TraceNotStartedError
from tylo_lens.cost.estimator import compute_cost
from tylo_lens.cost.model_pricing import normalize_pricing
from tylo_lens.cost.tokens import TokenEstimator, estimate_tokens
from tylo_lens.ethics.pii import collect_pii_evidence, redact_pii, risk_from_findings, scan_for_pii
from tylo_lens.observability.events import EventBus, EventHandler, EventType, LensEvent, Subscription
from tylo_lens.schemas.options import CaptureConfig, EthicsConfig, LensOptions
from tylo_lens.schemas.trace import (
    PiiReport,
    Safety,
    Span,
    SpanAnalysis,
    SpanEnd,
    SpanInput,
    SpanKind,
    SpanOutput,
    SpanStart,
    SpanUpdate,
    Trace,
    Usage,
)
from tylo_lens.utils.ids import random_id
from tylo_lens.utils.time import duration_ms, monotonic_ms, now_utc

if TYPE_CHECKING:
    import httpx

    from tylo_lens.interceptors.mcp import TracedMCPClient
    from tylo_lens.interceptors.patching import Patch


logger = logging.getLogger(__name__)

T = TypeVar("T")

INPUT_TOKEN_KEYS = ("inputTokens", "input_tokens", "promptTokens", "prompt_tokens", "input")
OUTPUT_TOKEN_KEYS = ("outputTokens", "output_tokens", "completionTokens", "completion_tokens", "output")
TOTAL_TOKEN_KEYS = ("totalTokens", "total_tokens", "total")
OUTPUT_TEXT_KEYS = ("outputText", "output_text", "text")


# ============================================================
# HELPERS
# ============================================================

def _lookup(source: Any, keys: Tuple[str, ...]) -> Any:
    """First non-None value among keys, from a mapping or an object."""
    if source is None:
        return None
    for key in keys:
        if isinstance(source, Mapping):
            value = source.get(key)
        else:
            value = getattr(source, key, None)
        if value is not None:
            return value
    return None


def _finite(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_usage(declared: Any, prompt_text: str, output_text: str, estimator: TokenEstimator) -> Usage:
    """
    Prefer declared token counts, estimate the missing ones.

    Estimates always run on the raw (unredacted) text.
    """
    input_tokens = _finite(_lookup(declared, INPUT_TOKEN_KEYS))
    output_tokens = _finite(_lookup(declared, OUTPUT_TOKEN_KEYS))
    total_tokens = _finite(_lookup(declared, TOTAL_TOKEN_KEYS))

    if input_tokens is None:
        input_tokens = estimator(prompt_text)
    if output_tokens is None:
        output_tokens = estimator(output_text)
    if total_tokens is None:
        total_tokens = input_tokens + output_tokens

    return Usage(
        input_tokens=max(0, int(input_tokens)),
        output_tokens=max(0, int(output_tokens)),
        total_tokens=max(0, int(total_tokens)),
    )


def _error_message(error: Any) -> str:
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)


def _extract_call_input(args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Tuple[str, Any]:
    """Find prompt text and messages in the wrapped call's arguments."""
    if "prompt" in kwargs or "messages" in kwargs:
        prompt = kwargs.get("prompt")
        return (prompt if isinstance(prompt, str) else ""), kwargs.get("messages")
    if not args:
        return "", None
    first = args[0]
    if isinstance(first, str):
        return first, None
    prompt = _lookup(first, ("prompt",))
    return (prompt if isinstance(prompt, str) else ""), _lookup(first, ("messages",))


# ============================================================
# SPAN HANDLE
# ============================================================

class SpanHandle:
    """
    Live handle on one open span.

    update() is incremental, end() is authoritative and happens once.
    """

    def __init__(self, lens: "TyloLens", trace: Trace, span: Span):
        self._lens = lens
        self._trace = trace
        self._span = span
        self._start_ms = monotonic_ms()
        self._ended = False

    @property
    def span(self) -> Span:
        return self._span

    @property
    def ended(self) -> bool:
        return self._ended

    def detach(self) -> None:
        """
        Take the span off the stack while leaving it open.

        Used for responses that keep streaming after the call returned, so
        later spans do not nest under them.
        """
        self._lens._pop_span(self._span.id)

    def update(self, update: Optional[SpanUpdate] = None, **fields: Any) -> None:
        """Merge a partial update into the span and emit span.update."""
        if update is None:
            if not fields:
                return
            update = SpanUpdate.model_validate(fields)
        with self._lens._lock:
            self._merge(update)

    def _merge(self, update: SpanUpdate) -> None:
        if self._ended:
            logger.debug(f"[LENS] update ignored, span {self._span.id} already ended")
            return

        span = self._span
        if update.output is not None:
            previous = span.output.model_dump(exclude_none=True) if span.output else {}
            patch = update.output.model_dump(exclude_unset=True)
            merged = {**previous, **patch}
            if patch.get("response") is not None:
                merged["response"] = {**previous.get("response", {}), **patch["response"]}
            span.output = SpanOutput.model_validate(merged)

        if update.usage is not None:
            base = span.usage.model_dump() if span.usage else Usage().model_dump()
            patch = update.usage.model_dump(exclude_unset=True)
            merged = {**base, **{k: v for k, v in patch.items() if v is not None}}
            if patch.get("total_tokens") is None:
                merged["total_tokens"] = merged["input_tokens"] + merged["output_tokens"]
            span.usage = Usage(**merged)

        if update.analysis is not None:
            previous = span.analysis.model_dump(exclude_none=True) if span.analysis else {}
            span.analysis = SpanAnalysis(**{**previous, **update.analysis.model_dump(exclude_unset=True)})

        if update.meta:
            span.meta = {**(span.meta or {}), **update.meta}

        self._lens._emit(LensEvent(EventType.SPAN_UPDATE, self._trace, span=span, update=update))

    def end(self, end: Optional[SpanEnd] = None, **fields: Any) -> None:
        """Stamp timing, overwrite final values, pop the stack, emit span.end."""
        if end is None:
            end = SpanEnd.model_validate(fields)
        with self._lens._lock:
            self._finish(end)

    def _finish(self, end: SpanEnd) -> None:
        if self._ended:
            logger.debug(f"[LENS] span {self._span.id} already ended")
            return
        self._ended = True

        span = self._span
        span.end_time = now_utc()
        span.duration_ms = duration_ms(self._start_ms, monotonic_ms())

        if end.output is not None:
            span.output = end.output
        if end.usage is not None:
            span.usage = end.usage
        if end.cost is not None:
            span.cost = end.cost
        if end.safety is not None:
            span.safety = end.safety
        if end.analysis is not None:
            span.analysis = end.analysis
        if end.meta:
            span.meta = {**(span.meta or {}), **end.meta}
        if end.error is not None:
            span.meta = {**(span.meta or {}), "error": _error_message(end.error)}

        self._lens._pop_span(span.id)
        self._lens._emit(LensEvent(EventType.SPAN_END, self._trace, span=span))


# ============================================================
# PLUGIN CONTEXT
# ============================================================

class PluginContext:
    """Capabilities handed to plugin.setup()."""

    def __init__(self, lens: "TyloLens"):
        self._lens = lens

    def on(self, event_type: EventType | str, handler: EventHandler) -> Subscription:
        return self._lens.on(event_type, handler)

    def add_exporter(self, exporter: Any) -> None:
        self._lens.add_exporter(exporter)

    def start_trace(self) -> Trace:
        return self._lens.start_trace()

    def get_trace(self) -> Trace:
        return self._lens.get_trace()

    def end_trace(self) -> Trace:
        return self._lens.end_trace()

    def export_trace(self) -> Trace:
        return self._lens.export_trace()

    async def flush(self, trace: Optional[Trace] = None) -> None:
        await self._lens.flush(trace)

    async def export_and_flush(self) -> Trace:
        return await self._lens.export_and_flush()

    @property
    def token_estimator(self) -> TokenEstimator:
        return self._lens.token_estimator

    def set_token_estimator(self, estimator: TokenEstimator) -> None:
        self._lens.set_token_estimator(estimator)

    def start_span(self, start: Optional[SpanStart] = None, **fields: Any) -> SpanHandle:
        return self._lens.start_span(start, **fields)


# ============================================================
# ENGINE
# ============================================================

class TyloLens:
    """
    Trace/span engine.

    Usage:
        lens = TyloLens(app={"name": "my-app", "environment": "dev"})
        lens.use(TransparencyPlugin())
        lens.add_exporter(ConsoleExporter())

        chat = lens.wrap_llm("openai:gpt-4o", call_model)
        result = await chat({"prompt": "hello"})

        await lens.export_and_flush()
    """

    def __init__(self, options: Optional[LensOptions] = None, **kwargs: Any):
        if options is None:
            options = LensOptions(**kwargs)
        elif kwargs:
            options = options.model_copy(update=kwargs)

        self._app = options.app
        self._ethics: EthicsConfig = options.ethics
        self._pricing = normalize_pricing(options.pricing)
        self._token_estimator: TokenEstimator = options.token_estimator or estimate_tokens
        self._auto_start_trace = options.auto_start_trace
        self._auto_flush_on_export = options.auto_flush_on_export

        self._trace: Optional[Trace] = None
        self._span_stack: List[str] = []
        # Plugin timers may fire on a thread when no event loop is running
        self._lock = threading.RLock()
        self._bus = EventBus()
        self._exporters: List[Any] = []
        self._plugin_disposers: List[Tuple[str, Callable[[], None]]] = []
        self._pending_flushes: Set[asyncio.Task] = set()

        for exporter in options.exporters:
            self.add_exporter(exporter)
        for plugin in options.plugins:
            self.use(plugin)

    @classmethod
    def from_settings(cls, **overrides: Any) -> "TyloLens":
        """Create an engine configured from TYLO_LENS_* environment settings."""
        return cls(LensOptions.from_settings(**overrides))

    # --- configuration ---

    @property
    def app(self):
        return self._app

    @property
    def exporters(self) -> List[Any]:
        return list(self._exporters)

    @property
    def span_stack(self) -> List[str]:
        """Snapshot of open span ids, bottom first."""
        return list(self._span_stack)

    @property
    def current_span_id(self) -> Optional[str]:
        return self._span_stack[-1] if self._span_stack else None

    @property
    def token_estimator(self) -> TokenEstimator:
        return self._token_estimator

    def set_token_estimator(self, estimator: TokenEstimator) -> None:
        self._token_estimator = estimator

    # --- events ---

    def on(self, event_type: EventType | str, handler: EventHandler) -> Subscription:
        """Subscribe to an event. Returns the handle used to unsubscribe."""
        return self._bus.subscribe(event_type, handler)

    def _emit(self, event: LensEvent) -> None:
        self._bus.emit(event)

    # --- trace lifecycle ---

    def start_trace(self) -> Trace:
        with self._lock:
            trace = Trace(trace_id=random_id("trace"), app=self._app, started_at=now_utc())
            self._trace = trace
            self._span_stack.clear()
            self._emit(LensEvent(EventType.TRACE_START, trace))
        return trace

    def get_trace(self) -> Trace:
        with self._lock:
            if self._trace is None:
                if not self._auto_start_trace:
                    raise TraceNotStartedError()
                return self.start_trace()
            return self._trace

    def _active_trace(self) -> Trace:
        """Trace that new spans go into: an ended trace is replaced in auto-start mode."""
        with self._lock:
            if self._trace is None or self._trace.ended_at is not None:
                if not self._auto_start_trace:
                    raise TraceNotStartedError()
                return self.start_trace()
            return self._trace

    def end_trace(self) -> Trace:
        with self._lock:
            trace = self.get_trace()
            if trace.ended_at is None:
                trace.ended_at = now_utc()
            self._emit(LensEvent(EventType.TRACE_END, trace))
        return trace

    def export_trace(self) -> Trace:
        with self._lock:
            trace = self.end_trace()
            self._emit(LensEvent(EventType.EXPORT, trace))
        # Exporters run outside the lock
        if self._auto_flush_on_export:
            self._schedule_flush(trace)
        return trace

    async def export_and_flush(self) -> Trace:
        trace = self.export_trace()
        await self.flush(trace)
        return trace

    async def flush(self, trace: Optional[Trace] = None) -> None:
        """Hand the trace to every exporter, in order. Never raises."""
        trace = trace or self.get_trace()
        for exporter in list(self._exporters):
            name = getattr(exporter, "name", type(exporter).__name__)
            try:
                result = exporter.export(trace)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # Exporter failures are logged, never raised
                logger.warning(f"[LENS] exporter '{name}' failed: {e}")

    def _schedule_flush(self, trace: Trace) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.flush(trace))
            return
        task = loop.create_task(self.flush(trace))
        self._pending_flushes.add(task)
        task.add_done_callback(self._pending_flushes.discard)

    # --- exporters & plugins ---

    def add_exporter(self, exporter: Any) -> None:
        self._exporters.append(exporter)

    def use(self, plugin: Any) -> None:
        """Run plugin.setup(context) now; keep its disposer for dispose()."""
        dispose = plugin.setup(PluginContext(self))
        if callable(dispose):
            self._plugin_disposers.append((getattr(plugin, "name", type(plugin).__name__), dispose))

    def dispose(self) -> None:
        """Tear down plugins, drop subscriptions and exporters. Trace state is kept."""
        disposers, self._plugin_disposers = self._plugin_disposers, []
        for name, dispose in disposers:
            try:
                dispose()
            except Exception as e:
                logger.warning(f"[LENS] plugin '{name}' dispose failed: {e}")
        self._bus.clear()
        self._exporters.clear()

    # --- spans ---

    def start_span(self, start: Optional[SpanStart] = None, **fields: Any) -> SpanHandle:
        """
        Open a span in the active trace.

        The parent is start.parent_id when given, else the innermost open span.
        """
        if start is None:
            start = SpanStart.model_validate(fields)
        with self._lock:
            trace = self._active_trace()
            parent_id = start.parent_id if start.parent_id is not None else self.current_span_id

            span = Span(
                id=random_id(SpanKind(start.kind).value),
                trace_id=trace.trace_id,
                parent_id=parent_id,
                kind=start.kind,
                name=start.name,
                model=start.model,
                start_time=now_utc(),
                input=start.input,
                meta=dict(start.meta) if start.meta else None,
            )
            trace.spans.append(span)
            handle = SpanHandle(self, trace, span)
            # span.start listeners still see the parent as current
            self._emit(LensEvent(EventType.SPAN_START, trace, span=span))
            self._span_stack.append(span.id)
        return handle

    def _pop_span(self, span_id: str) -> None:
        with self._lock:
            if self._span_stack and self._span_stack[-1] == span_id:
                self._span_stack.pop()
                return
            for index in range(len(self._span_stack) - 1, -1, -1):
                if self._span_stack[index] == span_id:
                    del self._span_stack[index]
                    logger.warning(f"[LENS] span {span_id} ended out of order; removed from the middle of the stack")
                    return

    @contextmanager
    def span(self, start: Optional[SpanStart] = None, **fields: Any) -> Iterator[SpanHandle]:
        """Context manager: nested spans opened inside get this span as parent."""
        handle = self.start_span(start, **fields)
        try:
            yield handle
        except BaseException as e:
            handle.end(error=e)
            raise
        else:
            handle.end()

    @asynccontextmanager
    async def aspan(self, start: Optional[SpanStart] = None, **fields: Any) -> AsyncIterator[SpanHandle]:
        handle = self.start_span(start, **fields)
        try:
            yield handle
        except BaseException as e:
            handle.end(error=e)
            raise
        else:
            handle.end()

    def with_span(self, start: SpanStart, fn: Callable[[], T]) -> Union[T, Awaitable[T]]:
        """
        Run fn inside a span.

        Returns fn's result, or an awaitable of it when fn is a coroutine
        function. Errors end the span and are re-raised.
        """
        if inspect.iscoroutinefunction(fn):
            return self._with_span_async(start, fn)
        with self.span(start):
            return fn()

    async def _with_span_async(self, start: SpanStart, fn: Callable[[], Awaitable[T]]) -> T:
        async with self.aspan(start):
            return await fn()

    # --- LLM wrapping ---

    def wrap_llm(
        self,
        model: str,
        fn: Callable[..., Any],
        name: str = "llm.call",
        capture: Optional[Union[CaptureConfig, Mapping[str, bool]]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Callable[..., Any]:
        """
        Wrap a model call so every invocation produces one llm span.

        The wrapper has fn's signature and returns fn's result unchanged. The
        prompt is read from a ``prompt`` keyword, a first positional string,
        or a ``prompt`` key/attribute of the first argument. The result's
        ``outputText`` / ``output_text`` / ``text`` and ``usage`` are read the
        same way. When fn is not a coroutine function but returns an
        awaitable, the wrapper returns an awaitable too and the span ends
        once it resolves.
        """
        overrides = dict(capture) if isinstance(capture, Mapping) else (
            capture.model_dump() if capture is not None else {}
        )

        def resolve_capture() -> CaptureConfig:
            defaults = self._ethics.capture
            return CaptureConfig(
                prompts=overrides.get("prompts", defaults.prompts),
                outputs=overrides.get("outputs", defaults.outputs),
            )

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                flags = resolve_capture()
                raw_prompt, messages = _extract_call_input(args, kwargs)
                handle = self._begin_llm_span(model, name, meta, flags, raw_prompt, messages)
                try:
                    pending = fn(*args, **kwargs)
                except BaseException as e:
                    handle.end(error=e)
                    raise
                return await self._await_llm_result(handle, model, flags, raw_prompt, pending)

            return async_wrapper

        @functools.wraps(fn)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            flags = resolve_capture()
            raw_prompt, messages = _extract_call_input(args, kwargs)
            handle = self._begin_llm_span(model, name, meta, flags, raw_prompt, messages)
            try:
                result = fn(*args, **kwargs)
            except BaseException as e:
                handle.end(error=e)
                raise
            # async __call__, partials and lambdas returning a coroutine
            if inspect.isawaitable(result):
                return self._await_llm_result(handle, model, flags, raw_prompt, result)
            self._finish_llm_span(handle, model, flags, raw_prompt, result)
            return result

        return sync_wrapper

    async def _await_llm_result(
        self,
        handle: SpanHandle,
        model: str,
        flags: CaptureConfig,
        raw_prompt: str,
        pending: Awaitable[Any],
    ) -> Any:
        try:
            result = await pending
        except BaseException as e:
            handle.end(error=e)
            raise
        self._finish_llm_span(handle, model, flags, raw_prompt, result)
        return result

    def _record_text(self, raw: str, enabled: bool) -> Optional[str]:
        """Copy of a text as it may be stored on the span."""
        if not enabled or not raw:
            return None
        if self._ethics.redact_pii:
            return redact_pii(raw, self._ethics.redaction_mode)
        return raw

    def _begin_llm_span(
        self,
        model: str,
        name: str,
        meta: Optional[Dict[str, Any]],
        flags: CaptureConfig,
        raw_prompt: str,
        messages: Any,
    ) -> SpanHandle:
        return self.start_span(SpanStart(
            kind=SpanKind.LLM,
            name=name,
            model=model,
            input=SpanInput(prompt=self._record_text(raw_prompt, flags.prompts), messages=messages),
            meta=meta,
        ))

    def _finish_llm_span(
        self,
        handle: SpanHandle,
        model: str,
        flags: CaptureConfig,
        raw_prompt: str,
        result: Any,
    ) -> None:
        candidate = _lookup(result, OUTPUT_TEXT_KEYS)
        raw_output = candidate if isinstance(candidate, str) else ""

        usage = normalize_usage(_lookup(result, ("usage",)), raw_prompt, raw_output, self._token_estimator)
        cost = compute_cost(model, usage, self._pricing)
        safety = self._safety_for(raw_prompt, raw_output)

        handle.end(SpanEnd(
            output=SpanOutput(text=self._record_text(raw_output, flags.outputs)),
            usage=usage,
            cost=cost,
            safety=safety,
        ))

    def _safety_for(self, prompt: str, output: str) -> Safety:
        """Scan raw prompt+output jointly; evidence is collected per field."""
        findings = scan_for_pii("\n".join(t for t in (prompt, output) if t))
        evidence_config = self._ethics.pii_evidence

        evidence = None
        if evidence_config.enabled:
            evidence = []
            for field, text in (("prompt", prompt), ("output", output)):
                evidence += collect_pii_evidence(
                    text,
                    field,
                    mode=self._ethics.redaction_mode,
                    include_raw_match=evidence_config.include_raw_match,
                    context_chars=evidence_config.context_chars,
                )

        return Safety(
            pii=PiiReport(findings=findings, has_findings=bool(findings), evidence=evidence),
            risk=risk_from_findings(findings),
        )

    # --- interceptor shortcuts ---

    def wrap_http_transport(self, transport: Optional["httpx.BaseTransport"] = None, **options: Any):
        """httpx transport that traces requests sent through it."""
        from tylo_lens.interceptors.http import HttpInterceptorOptions, TracingTransport
        return TracingTransport(self, transport, HttpInterceptorOptions(**options))

    def wrap_async_http_transport(self, transport: Optional["httpx.AsyncBaseTransport"] = None, **options: Any):
        from tylo_lens.interceptors.http import AsyncTracingTransport, HttpInterceptorOptions
        return AsyncTracingTransport(self, transport, HttpInterceptorOptions(**options))

    def wrap_mcp(self, client: Any, client_name: str = "mcp", capture_params: bool = False) -> "TracedMCPClient":
        from tylo_lens.interceptors.mcp import TracedMCPClient
        return TracedMCPClient(client, self, client_name=client_name, capture_params=capture_params)

    def install_urllib(self, **options: Any) -> "Patch":
        """Globally trace urllib.request; uninstall() the returned patch to restore."""
        from tylo_lens.interceptors.urllib import install_urllib_interceptor
        return install_urllib_interceptor(self, **options)
