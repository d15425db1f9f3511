from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Tylo-Lens configuration settings.

    Every field can be overridden with a ``TYLO_LENS_`` prefixed
    environment variable or a ``.env`` file.
    """
    model_config = SettingsConfigDict(env_prefix="TYLO_LENS_", env_file=".env", extra="ignore")

    # App identity recorded on every trace
    app_name: str = "tylo-lens-app"
    environment: str = "dev"
    app_version: str | None = None
    log_level: str = "INFO"

    # Engine behaviour
    auto_start_trace: bool = True
    auto_flush_on_export: bool = False

    # Ethics / privacy
    redact_pii: bool = True
    redaction_mode: Literal["none", "mask", "hash"] = "mask"
    capture_prompts: bool = True
    capture_outputs: bool = True
    pii_evidence_enabled: bool = True
    pii_evidence_include_raw: bool = False
    pii_evidence_context_chars: int = 24

    # Streaming capture ceilings
    sse_max_bytes: int = 256_000
    sse_max_events: int = 2000

    # Ingestion API
    api_host: str = "0.0.0.0"
    api_port: int = 8100
    read_only: bool = False
    max_stored_traces: int = 500


settings = Settings()
