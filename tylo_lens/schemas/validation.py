"""
Trace Payload Validation

Structural checks on untrusted trace JSON (CLI validator, ingestion API).
Lighter than Trace.model_validate(): reports the first problem as a short
human-readable message.
"""

from typing import Any, Optional


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def validate_trace_payload(trace: Any) -> Optional[str]:
    """
    Check a decoded trace JSON document.

    Returns:
        None when valid, otherwise the first problem found
    """
    if not isinstance(trace, dict):
        return "Trace must be an object"
    if not _is_text(trace.get("traceId")):
        return "Missing traceId"
    app = trace.get("app")
    if not isinstance(app, dict):
        return "Missing app"
    if not _is_text(app.get("name")):
        return "Missing app.name"
    if not _is_text(trace.get("startedAt")):
        return "Missing startedAt"
    spans = trace.get("spans")
    if not isinstance(spans, list):
        return "Missing spans[]"

    for span in spans:
        if not isinstance(span, dict):
            return "Span must be an object"
        for field in ("id", "traceId", "kind", "name", "startTime"):
            if not _is_text(span.get(field)):
                return f"Span missing {field}"
    return None
