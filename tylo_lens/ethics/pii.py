"""
PII Engine

Regex rule table with scan / redact / evidence collection / risk tiers.

DESIGN RULES:
- Heuristic only: false positives and misses are expected
- Rule order is significant (redaction and evidence follow it)
- Pure functions, no logging, no state
"""

import hashlib
import re
from typing import Dict, Iterable, List, Literal, Optional, Pattern, Tuple

from tylo_lens.schemas.trace import PiiEvidence, PiiFinding, PiiType, RiskLevel


RedactionMode = Literal["none", "mask", "hash"]

RULES: List[Tuple[PiiType, Pattern[str]]] = [
    (PiiType.EMAIL, re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE | re.ASCII)),
    # Intentionally permissive international-ish phone number
    (PiiType.PHONE, re.compile(r"(?:\+?\d{1,3}[\s-]?)?(?:\(?\d{2,4}\)?[\s-]?)?\d{3,4}[\s-]?\d{4}", re.ASCII)),
    # Very loose; no Luhn check
    (PiiType.CREDIT_CARD, re.compile(r"\b(?:\d[ -]*?){13,19}\b", re.ASCII)),
    (PiiType.SSN, re.compile(r"\b\d{3}-\d{2}-\d{4}\b", re.ASCII)),
    (PiiType.IP_ADDRESS, re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b", re.ASCII)),
    (PiiType.API_KEY, re.compile(r"\b(?:sk-[A-Za-z0-9]{16,}|AKIA[0-9A-Z]{16})\b", re.ASCII)),
]

HIGH_RISK_TYPES = {PiiType.CREDIT_CARD, PiiType.SSN, PiiType.API_KEY}
HIGH_RISK_TOTAL = 5

_MARKER = re.compile(r"(\[REDACTED:[a-z_]+(?::[0-9a-f]+)?\])")

DEFAULT_CONTEXT_CHARS = 24
DEFAULT_MAX_EVIDENCE = 50


def scan_for_pii(text: Optional[str]) -> List[PiiFinding]:
    """Count matches per category. Zero-count categories are omitted."""
    if not text:
        return []
    findings: List[PiiFinding] = []
    for pii_type, pattern in RULES:
        count = sum(1 for _ in pattern.finditer(text))
        if count:
            findings.append(PiiFinding(type=pii_type, count=count))
    return findings


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


def _marker(pii_type: PiiType, match: str, mode: RedactionMode) -> str:
    if mode == "hash":
        return f"[REDACTED:{pii_type.value}:{_short_hash(match)}]"
    return f"[REDACTED:{pii_type.value}]"


def _mask_preview(value: str, max_visible: int = 2) -> str:
    """Keep a couple of characters at each end, star the middle."""
    if len(value) <= max_visible * 2:
        return "*" * min(12, len(value))
    stars = "*" * min(12, len(value) - max_visible * 2)
    return f"{value[:max_visible]}{stars}{value[-max_visible:]}"


def _mask_all(text: str) -> str:
    for _, pattern in RULES:
        text = pattern.sub(lambda m: _mask_preview(m.group(0)), text)
    return text


def redact_pii(text: Optional[str], mode: RedactionMode = "mask") -> Optional[str]:
    """
    Replace every match with a category marker.

    Modes:
        mask: [REDACTED:email]
        hash: [REDACTED:email:<sha256 prefix>] (stable, allows correlation)
        none: text unchanged
    """
    if not text or mode == "none":
        return text
    for pii_type, pattern in RULES:
        # Leave markers from earlier rules untouched
        parts = _MARKER.split(text)
        text = "".join(
            part if i % 2 else pattern.sub(lambda m, t=pii_type: _marker(t, m.group(0), mode), part)
            for i, part in enumerate(parts)
        )
    return text


def collect_pii_evidence(
    text: Optional[str],
    field: str,
    mode: RedactionMode = "mask",
    include_raw_match: bool = False,
    context_chars: int = DEFAULT_CONTEXT_CHARS,
    max_items: int = DEFAULT_MAX_EVIDENCE,
) -> List[PiiEvidence]:
    """
    Per-occurrence evidence records, rule order first, then position.

    Args:
        text: Scanned text
        field: Which span field the text came from ("prompt" / "output")
        mode: Redaction mode used for the "after" marker and context
        include_raw_match: Put the raw match / raw context in "before" fields
        context_chars: Characters of context on each side of the match
        max_items: Upper bound on records returned

    Returns:
        List of PiiEvidence (at most max_items)
    """
    if not text:
        return []

    evidence: List[PiiEvidence] = []
    for pii_type, pattern in RULES:
        for match in pattern.finditer(text):
            if len(evidence) >= max_items:
                return evidence
            raw = match.group(0)
            if not raw:
                continue
            start, end = match.start(), match.end()
            snippet = text[max(0, start - context_chars):min(len(text), end + context_chars)]
            evidence.append(PiiEvidence(
                field=field,
                type=pii_type,
                start=start,
                end=end,
                before=raw if include_raw_match else _mask_preview(raw),
                after=_marker(pii_type, raw, mode),
                context_before=snippet if include_raw_match else _mask_all(snippet),
                context_after=redact_pii(snippet, mode) or "",
            ))
    return evidence


def total_findings(findings: Iterable[PiiFinding]) -> int:
    return sum(f.count for f in findings)


def risk_from_findings(findings: List[PiiFinding]) -> RiskLevel:
    """
    Classify findings into a risk tier.

    low: nothing found. high: any card/SSN/API-key match, or five or more
    matches in total. medium: anything else. Advisory only.
    """
    total = total_findings(findings)
    if total == 0:
        return RiskLevel.LOW
    if total >= HIGH_RISK_TOTAL or any(f.type in HIGH_RISK_TYPES for f in findings):
        return RiskLevel.HIGH
    return RiskLevel.MEDIUM


def findings_by_type(findings: Iterable[PiiFinding]) -> Dict[str, int]:
    """Aggregate findings across spans into {type: count}."""
    totals: Dict[str, int] = {}
    for finding in findings:
        totals[finding.type.value] = totals.get(finding.type.value, 0) + finding.count
    return totals
