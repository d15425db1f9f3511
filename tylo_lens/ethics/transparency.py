"""
Transparency Scorer

Composite, token-normalized score combining output clarity with a PII
penalty:

    T = (Σ clarity·output_tokens·W_clarity − Σ pii_count·1000·W_pii) / max(1, tokens)

DESIGN RULES:
- Runs once per export, over the trace as it is at that moment
- Backfills every span's analysis with its own contribution
- Prefers declared usage / computed safety; estimates or re-scans otherwise
"""

import math
import re
from typing import Optional

from tylo_lens.cost.tokens import TokenEstimator, estimate_tokens
from tylo_lens.ethics.pii import scan_for_pii, total_findings
from tylo_lens.schemas.trace import (
    Span,
    SpanAnalysis,
    Trace,
    TraceAnalysis,
    TransparencyRecord,
    TransparencyWeights,
)


PII_PENALTY_PER_FINDING = 1000

FORMULA = (
    "T_score = (Σ(C_clarity · W_c) − Σ(P_pii · W_p)) / T_tokens, "
    "where C_clarity = clarity(output) · output_tokens and P_pii = pii_count · 1000"
)

_STRUCTURE = re.compile(r"(\n- |\n\d+\. |\n\* )")
_PUNCTUATION = re.compile(r"[.!?。！？]")
_REFUSAL = re.compile(r"\b(can't|cannot|won't|unable to)\b", re.IGNORECASE)
_NON_WORD = re.compile(r"[^A-Za-z0-9\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\s]")


def compute_clarity_score(text: Optional[str]) -> float:
    """Bounded clarity heuristic in [0, 1]."""
    t = (text or "").strip()
    if not t:
        return 0.0

    score = 0.35
    if _STRUCTURE.search(f"\n{t}"):
        score += 0.25
    if _PUNCTUATION.search(t):
        score += 0.15
    if "```" in t:
        score += 0.1
    if len(t) >= 120:
        score += 0.15
    if _REFUSAL.search(t):
        score -= 0.2

    noise_ratio = len(_NON_WORD.findall(t)) / max(1, len(t))
    score -= min(0.25, noise_ratio)
    return max(0.0, min(1.0, score))


def _safe_number(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _span_texts(span: Span) -> tuple[str, str]:
    prompt = (span.input.prompt if span.input else None) or ""
    output = (span.output.text if span.output else None) or ""
    return prompt, output


def span_tokens(span: Span, estimator: TokenEstimator = estimate_tokens) -> int:
    if span.usage is not None:
        return int(_safe_number(span.usage.total_tokens))
    prompt, output = _span_texts(span)
    return estimator("\n".join(t for t in (prompt, output) if t))


def span_output_tokens(span: Span, estimator: TokenEstimator = estimate_tokens) -> int:
    if span.usage is not None:
        return int(_safe_number(span.usage.output_tokens))
    _, output = _span_texts(span)
    return estimator(output)


def span_pii_count(span: Span) -> int:
    if span.safety is not None and span.safety.pii.findings:
        return total_findings(span.safety.pii.findings)
    prompt, output = _span_texts(span)
    return total_findings(scan_for_pii("\n".join(t for t in (prompt, output) if t)))


def compute_transparency(
    trace: Trace,
    weights: Optional[TransparencyWeights] = None,
    estimator: TokenEstimator = estimate_tokens,
) -> TransparencyRecord:
    """Trace-level transparency record (raw and 0..100 display score)."""
    weights = weights or TransparencyWeights()

    tokens = sum(span_tokens(s, estimator) for s in trace.spans)
    clarity_sum = 0.0
    pii_penalty_sum = 0.0
    for span in trace.spans:
        _, output = _span_texts(span)
        clarity_sum += compute_clarity_score(output) * span_output_tokens(span, estimator) * weights.clarity
        pii_penalty_sum += span_pii_count(span) * PII_PENALTY_PER_FINDING * weights.pii

    score = (clarity_sum - pii_penalty_sum) / max(1, tokens)
    return TransparencyRecord(
        score=score,
        score_scaled=max(0.0, min(100.0, (score + 1) * 50)),
        tokens=tokens,
        clarity_sum=clarity_sum,
        pii_penalty_sum=pii_penalty_sum,
        weights=weights,
        formula=FORMULA,
    )


def annotate_transparency(
    trace: Trace,
    weights: Optional[TransparencyWeights] = None,
    estimator: TokenEstimator = estimate_tokens,
) -> Trace:
    """Backfill per-span analysis and attach the trace transparency record."""
    weights = weights or TransparencyWeights()

    for span in trace.spans:
        tokens = span_tokens(span, estimator)
        output_tokens = span_output_tokens(span, estimator)
        _, output = _span_texts(span)
        clarity = compute_clarity_score(output)
        pii_count = span_pii_count(span)
        denom = max(1, tokens)

        current = span.analysis.model_dump(exclude_none=True) if span.analysis else {}
        span.analysis = SpanAnalysis(**{
            **current,
            "tokens": tokens,
            "clarity": clarity,
            "pii_count": pii_count,
            "pii_density": pii_count / denom,
            "tscore_contribution": (
                clarity * output_tokens * weights.clarity
                - pii_count * PII_PENALTY_PER_FINDING * weights.pii
            ) / denom,
        })

    record = compute_transparency(trace, weights, estimator)
    analysis = trace.analysis or TraceAnalysis()
    analysis.transparency = record
    trace.analysis = analysis
    return trace
