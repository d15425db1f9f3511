"""
Event Bus

Typed publish/subscribe between the engine and plugins.

DESIGN RULES:
- Synchronous delivery, in subscription order
- A failing handler is logged and skipped, never propagated
- subscribe() returns a handle; the handle is the only way to unsubscribe
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from tylo_lens.schemas.trace import Span, SpanUpdate, Trace


logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TRACE_START = "trace.start"
    TRACE_END = "trace.end"
    SPAN_START = "span.start"
    SPAN_UPDATE = "span.update"
    SPAN_END = "span.end"
    EXPORT = "export"


@dataclass(frozen=True)
class LensEvent:
    """Event payload: always the trace, plus span / update delta where relevant."""
    type: EventType
    trace: Trace
    span: Optional[Span] = None
    update: Optional[SpanUpdate] = None


EventHandler = Callable[[LensEvent], None]


class Subscription:
    """
    Opaque handle returned by EventBus.subscribe().

    Call it (or .unsubscribe()) to remove the handler. Idempotent.
    """

    def __init__(self, bus: "EventBus", event_type: EventType, handler: EventHandler):
        self._bus = bus
        self._event_type = event_type
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._bus._remove(self._event_type, self)

    def __call__(self) -> None:
        self.unsubscribe()


class EventBus:
    """Registry of subscriptions keyed by event type."""

    def __init__(self):
        self._subscriptions: Dict[EventType, List[Subscription]] = {}

    def subscribe(self, event_type: EventType | str, handler: EventHandler) -> Subscription:
        event_type = EventType(event_type)
        subscription = Subscription(self, event_type, handler)
        self._subscriptions.setdefault(event_type, []).append(subscription)
        return subscription

    def emit(self, event: LensEvent) -> None:
        # Copy: handlers may unsubscribe while we iterate
        for subscription in list(self._subscriptions.get(event.type, ())):
            if not subscription.active:
                continue
            try:
                subscription._handler(event)
            except Exception as e:
                name = getattr(subscription._handler, "__qualname__", repr(subscription._handler))
                logger.warning(f"[LENS] listener {name} for '{event.type.value}' failed: {e}")

    def listener_count(self, event_type: Optional[EventType | str] = None) -> int:
        if event_type is None:
            return sum(len(subs) for subs in self._subscriptions.values())
        return len(self._subscriptions.get(EventType(event_type), ()))

    def clear(self) -> None:
        for subs in self._subscriptions.values():
            for subscription in subs:
                subscription._active = False
        self._subscriptions.clear()

    def _remove(self, event_type: EventType, subscription: Subscription) -> None:
        subs = self._subscriptions.get(event_type)
        if not subs:
            return
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            del self._subscriptions[event_type]
