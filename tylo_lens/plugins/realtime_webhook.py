"""
Realtime Webhook Plugin

Pushes trace snapshots to a URL while the trace is still running.

DESIGN RULES:
- Debounced: bursts of updates collapse into one push
- At most one push in flight; changes during a push schedule one more
- Pushes are fire-and-forget and never raise into the host app
"""

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Dict, Optional

from tylo_lens.core.errors import LensError
from tylo_lens.observability.events import EventType
from tylo_lens.observability.publisher import DEFAULT_TIMEOUT_MS, build_trace_payload, post_json
from tylo_lens.plugins.base import Disposer, LensPlugin, TimerHandle, call_later

if TYPE_CHECKING:
    from tylo_lens.observability.lens import PluginContext


logger = logging.getLogger(__name__)


class RealtimeWebhookPlugin(LensPlugin):
    name = "realtime:webhook"

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        debounce_ms: float = 250,
        include_final: bool = True,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        self.url = url
        self.headers = headers or {}
        self.debounce_ms = debounce_ms
        self.include_final = include_final
        self.timeout_ms = timeout_ms

    def setup(self, context: "PluginContext") -> Optional[Disposer]:
        lock = threading.Lock()
        state = {"timer": None, "inflight": False, "pending": False, "disposed": False}

        def schedule(_event=None) -> None:
            with lock:
                if state["timer"] is not None or state["disposed"]:
                    return
                state["timer"] = call_later(self.debounce_ms, push)

        def finished() -> None:
            with lock:
                state["inflight"] = False
                again = state["pending"]
            if again:
                schedule()

        def push() -> None:
            with lock:
                state["timer"] = None
                if state["inflight"]:
                    state["pending"] = True
                    return
                state["inflight"] = True
                state["pending"] = False

            try:
                payload = build_trace_payload(context.get_trace())
            except (LensError, ValueError) as e:
                logger.warning(f"[REALTIME] snapshot failed: {e}")
                finished()
                return

            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                post_json(self.url, payload, headers=self.headers, timeout_ms=self.timeout_ms)
                finished()
                return

            future = loop.run_in_executor(
                None, lambda: post_json(self.url, payload, headers=self.headers, timeout_ms=self.timeout_ms)
            )
            future.add_done_callback(lambda _f: finished())

        subscriptions = [
            context.on(EventType.SPAN_UPDATE, schedule),
            context.on(EventType.SPAN_END, schedule),
        ]
        if self.include_final:
            subscriptions.append(context.on(EventType.TRACE_END, schedule))
            subscriptions.append(context.on(EventType.EXPORT, schedule))

        def dispose() -> None:
            for subscription in subscriptions:
                subscription()
            with lock:
                state["disposed"] = True
                timer: Optional[TimerHandle] = state["timer"]
                state["timer"] = None
            if timer is not None:
                timer.cancel()

        return dispose
