"""
Engine Options

Constructor configuration for TyloLens. Defaults mirror core.config.Settings.
"""

from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from tylo_lens.core.config import Settings, settings as default_settings
from tylo_lens.cost.model_pricing import PricingTableInput
from tylo_lens.ethics.pii import DEFAULT_CONTEXT_CHARS, RedactionMode
from tylo_lens.schemas.trace import AppInfo


class CaptureConfig(BaseModel):
    """Whether prompt / output text is recorded on spans at all."""
    prompts: bool = True
    outputs: bool = True


class PiiEvidenceConfig(BaseModel):
    enabled: bool = True
    include_raw_match: bool = False
    context_chars: int = Field(default=DEFAULT_CONTEXT_CHARS, ge=0)


class EthicsConfig(BaseModel):
    redact_pii: bool = True
    redaction_mode: RedactionMode = "mask"
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    pii_evidence: PiiEvidenceConfig = Field(default_factory=PiiEvidenceConfig)


class LensOptions(BaseModel):
    """
    Options for TyloLens.

    exporters / plugins / token_estimator are plain Python objects and are
    not validated beyond presence.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    app: AppInfo
    ethics: EthicsConfig = Field(default_factory=EthicsConfig)
    pricing: Optional[PricingTableInput] = None
    token_estimator: Optional[Callable[[str], int]] = None
    plugins: List[Any] = Field(default_factory=list)
    exporters: List[Any] = Field(default_factory=list)
    auto_start_trace: bool = True
    auto_flush_on_export: bool = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "LensOptions":
        """Build options from environment-backed settings."""
        settings = settings or default_settings
        values = dict(
            app=AppInfo(name=settings.app_name, environment=settings.environment, version=settings.app_version),
            ethics=EthicsConfig(
                redact_pii=settings.redact_pii,
                redaction_mode=settings.redaction_mode,
                capture=CaptureConfig(prompts=settings.capture_prompts, outputs=settings.capture_outputs),
                pii_evidence=PiiEvidenceConfig(
                    enabled=settings.pii_evidence_enabled,
                    include_raw_match=settings.pii_evidence_include_raw,
                    context_chars=settings.pii_evidence_context_chars,
                ),
            ),
            auto_start_trace=settings.auto_start_trace,
            auto_flush_on_export=settings.auto_flush_on_export,
        )
        values.update(overrides)
        return cls(**values)
