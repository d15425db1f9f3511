# Schemas Package
from tylo_lens.schemas.trace import (
    AppInfo,
    Cost,
    PiiEvidence,
    PiiFinding,
    PiiReport,
    RequestInfo,
    ResponseInfo,
    RiskLevel,
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
    TraceAnalysis,
    TransparencyRecord,
    TransparencyWeights,
    Usage,
)

__all__ = [
    "AppInfo",
    "Cost",
    "PiiEvidence",
    "PiiFinding",
    "PiiReport",
    "RequestInfo",
    "ResponseInfo",
    "RiskLevel",
    "Safety",
    "Span",
    "SpanAnalysis",
    "SpanEnd",
    "SpanInput",
    "SpanKind",
    "SpanOutput",
    "SpanStart",
    "SpanUpdate",
    "Trace",
    "TraceAnalysis",
    "TransparencyRecord",
    "TransparencyWeights",
    "Usage",
]
