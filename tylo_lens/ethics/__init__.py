# Ethics Package
from tylo_lens.ethics.pii import collect_pii_evidence, redact_pii, risk_from_findings, scan_for_pii
from tylo_lens.ethics.report import generate_compliance_report
from tylo_lens.ethics.transparency import annotate_transparency, compute_clarity_score, compute_transparency

__all__ = [
    "annotate_transparency",
    "collect_pii_evidence",
    "compute_clarity_score",
    "compute_transparency",
    "generate_compliance_report",
    "redact_pii",
    "risk_from_findings",
    "scan_for_pii",
]
