"""
Ingest API Route

Receives trace JSON from the webhook / realtime exporters and serves it
back to dashboards.

DESIGN RULE: Thin layer. Structural checks only, no scoring or rewriting.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from tylo_lens.app.dependencies import get_settings, get_trace_store
from tylo_lens.app.store import TraceStore
from tylo_lens.core.config import Settings


logger = logging.getLogger(__name__)

router = APIRouter()


class IngestResponse(BaseModel):
    """API response for ingestion."""
    ok: bool = Field(default=True)
    trace_id: str = Field(..., serialization_alias="traceId", description="Identifier of the stored trace")
    spans: int = Field(..., ge=0, description="Number of spans received")


@router.post("/ingest", response_model=IngestResponse, response_model_by_alias=True)
def ingest(
    trace: Dict[str, Any] = Body(...),
    settings: Settings = Depends(get_settings),
    store: TraceStore = Depends(get_trace_store),
) -> IngestResponse:
    """
    Store a trace.

    - 403 when the service runs read-only
    - 400 when traceId or app.name is missing
    """
    if settings.read_only:
        raise HTTPException(status_code=403, detail="Ingestion is disabled (read-only mode)")

    app_info = trace.get("app")
    if not trace.get("traceId") or not isinstance(app_info, dict) or not app_info.get("name"):
        raise HTTPException(status_code=400, detail="Trace must include traceId and app.name")

    spans = trace.get("spans") if isinstance(trace.get("spans"), list) else []
    store.upsert(trace)
    logger.info(f"[INGEST] trace={trace['traceId']} app={app_info['name']} spans={len(spans)}")
    return IngestResponse(trace_id=trace["traceId"], spans=len(spans))


@router.get("/traces")
def list_traces(
    limit: Optional[int] = Query(default=None, ge=1),
    store: TraceStore = Depends(get_trace_store),
) -> List[Dict[str, Any]]:
    """Stored traces, newest first."""
    return store.list(limit)


@router.get("/traces/{trace_id}")
def get_trace(trace_id: str, store: TraceStore = Depends(get_trace_store)) -> Dict[str, Any]:
    trace = store.get(trace_id)
    if trace is None:
        raise HTTPException(status_code=404, detail=f"Trace {trace_id} not found")
    return trace
