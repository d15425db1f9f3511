"""
In-Memory Trace Store

Latest traces received by the ingestion API, newest last.

DESIGN RULES:
- Bounded: the oldest trace is dropped once max_traces is reached
- Upsert by traceId (realtime pushes resend the same trace)
- Stores the wire JSON as received
"""

import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional


class TraceStore:
    def __init__(self, max_traces: int = 500):
        self.max_traces = max_traces
        self._traces: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def upsert(self, trace: Dict[str, Any]) -> None:
        trace_id = trace["traceId"]
        with self._lock:
            self._traces.pop(trace_id, None)
            self._traces[trace_id] = trace
            while len(self._traces) > self.max_traces:
                self._traces.popitem(last=False)

    def get(self, trace_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._traces.get(trace_id)

    def list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Newest first."""
        with self._lock:
            traces = list(reversed(self._traces.values()))
        return traces[:limit] if limit is not None else traces

    def clear(self) -> None:
        with self._lock:
            self._traces.clear()

    def __len__(self) -> int:
        return len(self._traces)
