"""
Compliance Report

Markdown summary of a finished trace for human review.
Downstream utility only: reads the trace, never mutates it.
"""

from typing import List

from tylo_lens.ethics.pii import findings_by_type
from tylo_lens.schemas.trace import Trace


def generate_compliance_report(trace: Trace) -> str:
    """Render a Markdown compliance report for a trace."""
    spans = trace.spans
    total_tokens = sum(s.usage.total_tokens for s in spans if s.usage)
    total_cost = sum(s.cost.total for s in spans if s.cost)
    pii_by_type = findings_by_type(f for s in spans if s.safety for f in s.safety.pii.findings)

    lines: List[str] = [
        "# Tylo-Lens Compliance Report",
        "",
        f"- Trace ID: `{trace.trace_id}`",
        f"- App: **{trace.app.name}**",
    ]
    if trace.app.environment:
        lines.append(f"- Environment: `{trace.app.environment}`")
    lines.append(f"- Started: `{trace.started_at.isoformat()}`")
    if trace.ended_at:
        lines.append(f"- Ended: `{trace.ended_at.isoformat()}`")

    lines += [
        "",
        "## Summary",
        f"- Spans: **{len(spans)}**",
        f"- Total tokens (estimated/declared): **{total_tokens}**",
        f"- Total cost (estimated): **{total_cost:.6f}**",
    ]
    transparency = trace.analysis.transparency if trace.analysis else None
    if transparency:
        lines.append(f"- Transparency score: **{transparency.score_scaled:.1f}/100**")

    lines += ["", "## PII Findings"]
    if not pii_by_type:
        lines.append("No PII patterns detected.")
    else:
        for pii_type, count in pii_by_type.items():
            lines.append(f"- {pii_type}: **{count}**")
        lines += [
            "",
            "> Note: Regex-based detection can generate false positives. Treat this as a signal, not a verdict.",
        ]

    lines += [
        "",
        "## Recommendations",
        "- Default to redaction in production environments.",
        "- Avoid storing raw prompts/outputs unless users explicitly consent.",
        "- Add allowlists/denylists for org-specific secrets (API keys, internal IDs).",
    ]
    return "\n".join(lines)
