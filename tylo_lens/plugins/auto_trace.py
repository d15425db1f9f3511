"""
Auto-Trace Plugin

Ends and exports the active trace once no span has ended for ``idle_ms``.
A new trace.start cancels the pending export.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Set

from tylo_lens.observability.events import EventType
from tylo_lens.plugins.base import Disposer, LensPlugin, TimerHandle, call_later, spawn

if TYPE_CHECKING:
    from tylo_lens.observability.lens import PluginContext


logger = logging.getLogger(__name__)


class AutoTracePlugin(LensPlugin):
    name = "auto-trace"

    def __init__(self, idle_ms: float = 1500, flush_on_export: bool = False):
        self.idle_ms = idle_ms
        self.flush_on_export = flush_on_export

    def setup(self, context: "PluginContext") -> Optional[Disposer]:
        timer: Optional[TimerHandle] = None
        tasks: Set[asyncio.Task] = set()

        def cancel() -> None:
            nonlocal timer
            if timer is not None:
                timer.cancel()
                timer = None

        def fire() -> None:
            nonlocal timer
            timer = None
            try:
                if self.flush_on_export:
                    spawn(context.export_and_flush(), tasks)
                else:
                    context.export_trace()
            except Exception as e:
                logger.warning(f"[AUTO-TRACE] idle export failed: {e}")

        def schedule(_event) -> None:
            nonlocal timer
            cancel()
            timer = call_later(self.idle_ms, fire)

        off_end = context.on(EventType.SPAN_END, schedule)
        off_start = context.on(EventType.TRACE_START, lambda _event: cancel())

        def dispose() -> None:
            off_end()
            off_start()
            cancel()

        return dispose
