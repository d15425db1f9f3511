"""
Tylo-Lens CLI

    tylo-lens validate <trace.json>   check a trace JSON document
    tylo-lens report <trace.json>     print the Markdown compliance report
    tylo-lens serve                   run the ingestion API

Exit codes (validate / report):
    0  OK
    1  file cannot be read
    2  trace fails validation
    3  file is not valid JSON
"""

import json
from pathlib import Path
from typing import Any, Optional

import typer
import uvicorn

from tylo_lens.core.config import settings
from tylo_lens.ethics.report import generate_compliance_report
from tylo_lens.schemas.trace import Trace
from tylo_lens.schemas.validation import validate_trace_payload

EXIT_UNREADABLE = 1
EXIT_INVALID_TRACE = 2
EXIT_INVALID_JSON = 3

app = typer.Typer(
    name="tylo-lens",
    help="Tylo-Lens - trace validation and tooling",
    add_completion=False,
)


def _fail(message: str, code: int) -> None:
    typer.echo(f"tylo-lens: {message}", err=True)
    raise typer.Exit(code)


def _load(path: Path) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        _fail(f"Cannot read file: {path}", EXIT_UNREADABLE)
    try:
        return json.loads(raw)
    except ValueError:
        _fail("Invalid JSON", EXIT_INVALID_JSON)


@app.command()
def validate(file: Path = typer.Argument(..., help="Trace JSON file")):
    """Validate a trace JSON payload."""
    error = validate_trace_payload(_load(file))
    if error:
        _fail(error, EXIT_INVALID_TRACE)
    typer.echo("OK")


@app.command()
def report(file: Path = typer.Argument(..., help="Trace JSON file")):
    """Print the compliance report for a trace."""
    data = _load(file)
    error = validate_trace_payload(data)
    if error:
        _fail(error, EXIT_INVALID_TRACE)
    try:
        trace = Trace.model_validate(data)
    except ValueError as e:
        _fail(f"Invalid trace: {e}", EXIT_INVALID_TRACE)
    typer.echo(generate_compliance_report(trace))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
    read_only: bool = typer.Option(False, "--read-only", help="Reject ingestion with 403"),
):
    """Run the ingestion API."""
    if read_only:
        settings.read_only = True
    uvicorn.run("tylo_lens.app.main:app", host=host or settings.api_host, port=port or settings.api_port)


if __name__ == "__main__":
    app()
