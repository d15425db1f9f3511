"""
Trace Exporters

Terminal sinks for finished traces.
Storage-agnostic - implementations can write to console, file, webhooks, etc.

DESIGN RULES:
- Side-effect only
- export() may be sync or async
- Exceptions are allowed to escape: the engine's flush() logs them with the
  exporter name and carries on with the next exporter
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from tylo_lens.interceptors.patching import suppress_instrumentation
from tylo_lens.schemas.trace import Trace


class TraceExporter(ABC):
    """
    Abstract base for trace output destinations.

    Implementations:
    - ConsoleExporter (summary line, optional full JSON)
    - JsonExporter (JSON lines)
    - FileExporter (one JSON document per trace)
    - WebhookExporter (HTTP POST)

    Any object with a ``name`` and an ``export(trace)`` method is accepted by
    the engine; subclassing is optional.
    """

    name: str = "exporter"

    @abstractmethod
    def export(self, trace: Trace) -> Union[None, Awaitable[None]]:
        """Export a finished trace."""
        pass


def summarize(trace: Trace) -> Dict[str, Any]:
    """Totals used by the console exporter."""
    spans = trace.spans
    return {
        "spans": len(spans),
        "total_tokens": sum(s.usage.total_tokens for s in spans if s.usage),
        "total_cost": sum(s.cost.total for s in spans if s.cost),
        "has_pii": any(s.safety.pii.has_findings for s in spans if s.safety),
    }


class ConsoleExporter(TraceExporter):
    """
    Prints a one-line summary per trace to stdout.

    Format: [tylo-lens] trace=<id> spans=N tokens=N cost=0.000000 pii=yes|no
    """

    name = "console"

    def __init__(self, verbose: bool = False):
        """
        Initialize console exporter.

        Args:
            verbose: If True, also print the full trace JSON.
        """
        self._verbose = verbose

    def export(self, trace: Trace) -> None:
        s = summarize(trace)
        print(
            f"[tylo-lens] trace={trace.trace_id} spans={s['spans']} tokens={s['total_tokens']} "
            f"cost={s['total_cost']:.6f} pii={'yes' if s['has_pii'] else 'no'}"
        )
        if self._verbose:
            print(trace.to_json(indent=2))


class JsonExporter(TraceExporter):
    """
    Prints traces as JSON lines.

    Useful for log aggregation systems.
    """

    name = "json"

    def export(self, trace: Trace) -> None:
        print(trace.to_json())


class FileExporter(TraceExporter):
    """
    Writes each exported trace to a JSON file.

    ``path`` may contain ``{trace_id}`` to keep one file per trace;
    otherwise the file is overwritten with the latest trace.
    """

    name = "file"

    def __init__(self, path: str | Path, pretty: bool = False):
        self._path = str(path)
        self._pretty = pretty

    def export(self, trace: Trace) -> None:
        target = Path(self._path.format(trace_id=trace.trace_id))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(trace.to_json(indent=2 if self._pretty else None), encoding="utf-8")


class WebhookExporter(TraceExporter):
    """
    POSTs the trace JSON to a URL.

    Raises on transport errors and non-2xx responses so the engine logs the
    failure. No retries.
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        transform: Optional[Callable[[Dict[str, Any]], Any]] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = url
        self._headers = headers or {}
        self._transform = transform
        self._timeout = timeout
        self._transport = transport

    async def export(self, trace: Trace) -> None:
        payload = trace.to_dict()
        if self._transform:
            payload = self._transform(payload)

        with suppress_instrumentation():
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._url,
                    content=json.dumps(payload),
                    headers={"content-type": "application/json", **self._headers},
                )
        if not response.is_success:
            raise RuntimeError(f"Webhook export failed: {response.status_code} {response.reason_phrase}")
