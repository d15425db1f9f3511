# Observability Package
from tylo_lens.observability.events import EventBus, EventType, LensEvent, Subscription
from tylo_lens.observability.lens import PluginContext, SpanHandle, TyloLens
from tylo_lens.observability.sink import ConsoleExporter, FileExporter, JsonExporter, TraceExporter, WebhookExporter

__all__ = [
    "ConsoleExporter",
    "EventBus",
    "EventType",
    "FileExporter",
    "JsonExporter",
    "LensEvent",
    "PluginContext",
    "SpanHandle",
    "Subscription",
    "TraceExporter",
    "TyloLens",
    "WebhookExporter",
]
