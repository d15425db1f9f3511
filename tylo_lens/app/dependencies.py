"""
FastAPI Dependencies

All object creation happens here, not per request.
Tests swap these out through app.dependency_overrides.
"""

from functools import lru_cache

from tylo_lens.app.store import TraceStore
from tylo_lens.core.config import Settings, settings


def get_settings() -> Settings:
    return settings


@lru_cache(maxsize=1)
def get_trace_store() -> TraceStore:
    """
    Create and cache the TraceStore singleton.

    Returns:
        TraceStore: Shared by every request of the process.
    """
    return TraceStore(max_traces=settings.max_stored_traces)
