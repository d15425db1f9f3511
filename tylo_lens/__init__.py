# Tylo-Lens: tracing, cost and PII signals for LLM, HTTP and MCP calls
from tylo_lens.core.errors import LensError, TraceNotStartedError, UnsupportedEnvironmentError
from tylo_lens.cost import DEFAULT_PRICING, ModelPrice, compute_cost, estimate_tokens
from tylo_lens.ethics import (
    annotate_transparency,
    compute_transparency,
    generate_compliance_report,
    redact_pii,
    scan_for_pii,
)
from tylo_lens.interceptors import (
    AsyncTracingTransport,
    Patch,
    SSECapture,
    TracedMCPClient,
    TracingTransport,
    install_urllib_interceptor,
)
from tylo_lens.observability import (
    ConsoleExporter,
    EventType,
    FileExporter,
    JsonExporter,
    LensEvent,
    SpanHandle,
    TraceExporter,
    TyloLens,
    WebhookExporter,
)
from tylo_lens.plugins import (
    AutoTracePlugin,
    ExporterPlugin,
    LensPlugin,
    NetworkInstrumentationPlugin,
    RealtimeWebhookPlugin,
    TiktokenTokenizerPlugin,
    TransparencyPlugin,
)
from tylo_lens.schemas.options import CaptureConfig, EthicsConfig, LensOptions, PiiEvidenceConfig
from tylo_lens.schemas.trace import AppInfo, Span, SpanEnd, SpanKind, SpanStart, SpanUpdate, Trace, Usage

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_PRICING",
    "AppInfo",
    "AsyncTracingTransport",
    "AutoTracePlugin",
    "CaptureConfig",
    "ConsoleExporter",
    "EthicsConfig",
    "EventType",
    "ExporterPlugin",
    "FileExporter",
    "JsonExporter",
    "LensError",
    "LensEvent",
    "LensOptions",
    "LensPlugin",
    "ModelPrice",
    "NetworkInstrumentationPlugin",
    "Patch",
    "PiiEvidenceConfig",
    "RealtimeWebhookPlugin",
    "SSECapture",
    "Span",
    "SpanEnd",
    "SpanHandle",
    "SpanKind",
    "SpanStart",
    "SpanUpdate",
    "TiktokenTokenizerPlugin",
    "Trace",
    "TraceExporter",
    "TraceNotStartedError",
    "TracedMCPClient",
    "TracingTransport",
    "TransparencyPlugin",
    "TyloLens",
    "UnsupportedEnvironmentError",
    "Usage",
    "WebhookExporter",
    "annotate_transparency",
    "compute_cost",
    "compute_transparency",
    "estimate_tokens",
    "generate_compliance_report",
    "install_urllib_interceptor",
    "redact_pii",
    "scan_for_pii",
]
