"""
Trace Publisher

Fire-and-forget HTTP push of in-progress traces (used by the realtime
webhook plugin).

DESIGN RULES (NON-NEGOTIABLE):
- HTTP POST only (no reads)
- Short timeout
- Never raise exceptions
- Log failures as warnings only
- No retries, no queueing

This module exists solely to forward facts about execution.
It must NEVER influence execution.
"""

import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from tylo_lens.interceptors.patching import suppress_instrumentation
from tylo_lens.schemas.trace import Trace


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 2000


def post_json(
    url: str,
    payload: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> bool:
    """
    POST a JSON payload.

    GUARANTEES:
    - Never raises exceptions
    - Returns within timeout
    - Logs failures as warnings

    Returns:
        True when the server answered with a 2xx status
    """
    try:
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json", **(headers or {})},
            method="POST",
        )
        with suppress_instrumentation(), urllib.request.urlopen(req, timeout=timeout_ms / 1000.0) as response:
            # We don't care about the body, only that it succeeded
            _ = response.read()
            return 200 <= response.status < 300

    except urllib.error.URLError as e:
        logger.warning(f"[PUBLISHER] Failed to POST to {url}: {e}")
    except socket.timeout:
        logger.warning(f"[PUBLISHER] Timeout posting to {url}")
    except Exception as e:
        logger.warning(f"[PUBLISHER] Unexpected error posting to {url}: {e}")
    return False


def build_trace_payload(trace: Trace) -> Dict[str, Any]:
    """Trace JSON wire format, ready for json.dumps."""
    return trace.to_dict()


def publish_trace(
    url: str,
    trace: Trace,
    headers: Optional[Dict[str, str]] = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> bool:
    """
    Publish a trace snapshot.

    Fire-and-forget. Never raises.
    """
    try:
        payload = build_trace_payload(trace)
    except Exception as e:
        logger.warning(f"[PUBLISHER] Failed to serialize trace {trace.trace_id}: {e}")
        return False
    return post_json(url, payload, headers=headers, timeout_ms=timeout_ms)
