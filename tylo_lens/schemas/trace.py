"""
Trace / Span Model

Wire format shared by the engine, exporters, the CLI validator and the
ingestion API. Attributes are snake_case in Python and camelCase in JSON.

DESIGN RULES:
- Mutable: spans are updated in place while streaming
- Round-trips losslessly through to_json() / from_json()
- No engine logic here, only shape
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


PII_DISCLAIMER = (
    "Regex-based detection; may produce false positives and miss PII. "
    "Treat as an advisory signal, not a compliance verdict."
)


class LensModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in code."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict (wire format)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Enums ---

class SpanKind(str, Enum):
    """What kind of call a span observed."""
    LLM = "llm"
    HTTP = "http"
    MCP = "mcp"
    TOOL = "tool"


class RiskLevel(str, Enum):
    """PII risk tier."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PiiType(str, Enum):
    """Detector categories, in rule order."""
    EMAIL = "email"
    PHONE = "phone"
    CREDIT_CARD = "credit_card"
    SSN = "ssn"
    IP_ADDRESS = "ip_address"
    API_KEY = "api_key"


# --- App / usage / cost ---

class AppInfo(LensModel):
    name: str
    environment: Optional[str] = None
    version: Optional[str] = None


class Usage(LensModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class Cost(LensModel):
    currency: str = "USD"
    total: float = 0.0
    input: float = 0.0
    output: float = 0.0
    price_per_1k_input: Optional[float] = Field(default=None, alias="pricePer1KInput")
    price_per_1k_output: Optional[float] = Field(default=None, alias="pricePer1KOutput")


# --- Safety ---

class PiiFinding(LensModel):
    type: PiiType
    count: int


class PiiEvidence(LensModel):
    """One detected occurrence, with masked and redacted context for review."""
    field: str
    type: PiiType
    start: int
    end: int
    before: str
    after: str
    context_before: str
    context_after: str


class PiiReport(LensModel):
    findings: List[PiiFinding] = Field(default_factory=list)
    has_findings: bool = False
    evidence: Optional[List[PiiEvidence]] = None


class Safety(LensModel):
    pii: PiiReport = Field(default_factory=PiiReport)
    risk: RiskLevel = RiskLevel.LOW
    disclaimer: str = PII_DISCLAIMER


# --- Span payload ---

class RequestInfo(LensModel):
    url: str
    method: str = "GET"
    headers: Optional[Dict[str, str]] = None
    body: Optional[str] = None


class ResponseInfo(LensModel):
    status: Optional[int] = None
    headers: Optional[Dict[str, str]] = None
    body: Optional[str] = None


class SpanInput(LensModel):
    prompt: Optional[str] = None
    messages: Optional[Any] = None
    request: Optional[RequestInfo] = None


class SpanOutput(LensModel):
    text: Optional[str] = None
    response: Optional[ResponseInfo] = None


class SpanAnalysis(LensModel):
    clarity: Optional[float] = None
    pii_count: Optional[int] = None
    pii_density: Optional[float] = None
    tokens: Optional[int] = None
    tscore_contribution: Optional[float] = None


class Span(LensModel):
    """
    One observed call (LLM completion, HTTP request, MCP request or a
    manually scoped unit of work).
    """
    id: str
    trace_id: str
    parent_id: Optional[str] = None
    kind: SpanKind
    name: str
    model: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = Field(default=None, ge=0)
    input: Optional[SpanInput] = None
    output: Optional[SpanOutput] = None
    usage: Optional[Usage] = None
    cost: Optional[Cost] = None
    safety: Optional[Safety] = None
    analysis: Optional[SpanAnalysis] = None
    meta: Optional[Dict[str, Any]] = None


# --- Trace ---

class TransparencyWeights(LensModel):
    clarity: float = 1.0
    pii: float = 1.0


class TransparencyRecord(LensModel):
    score: float
    score_scaled: float
    tokens: int
    clarity_sum: float
    pii_penalty_sum: float
    weights: TransparencyWeights
    formula: str


class TraceAnalysis(LensModel):
    transparency: Optional[TransparencyRecord] = None


class Trace(LensModel):
    """One observed unit of work: an ordered list of spans."""
    trace_id: str
    app: AppInfo
    started_at: datetime
    ended_at: Optional[datetime] = None
    spans: List[Span] = Field(default_factory=list)
    analysis: Optional[TraceAnalysis] = None

    def to_json(self, indent: Optional[int] = None) -> str:
        """Serialize to the trace JSON wire format."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)

    @classmethod
    def from_json(cls, data: str | bytes) -> "Trace":
        """Parse the trace JSON wire format."""
        return cls.model_validate_json(data)


# --- Span lifecycle payloads ---

class SpanStart(LensModel):
    kind: SpanKind
    name: str
    model: Optional[str] = None
    parent_id: Optional[str] = None
    input: Optional[SpanInput] = None
    meta: Optional[Dict[str, Any]] = None


class ResponsePatch(LensModel):
    status: Optional[int] = None
    headers: Optional[Dict[str, str]] = None
    body: Optional[str] = None


class OutputPatch(LensModel):
    text: Optional[str] = None
    response: Optional[ResponsePatch] = None


class UsagePatch(LensModel):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class SpanUpdate(LensModel):
    """Incremental update. Only the keys actually supplied are merged."""
    output: Optional[OutputPatch] = None
    usage: Optional[UsagePatch] = None
    analysis: Optional[SpanAnalysis] = None
    meta: Optional[Dict[str, Any]] = None


class SpanEnd(LensModel):
    """Final, authoritative values. Provided fields overwrite, meta merges."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True)

    output: Optional[SpanOutput] = None
    usage: Optional[Usage] = None
    cost: Optional[Cost] = None
    safety: Optional[Safety] = None
    analysis: Optional[SpanAnalysis] = None
    meta: Optional[Dict[str, Any]] = None
    error: Optional[Any] = None
