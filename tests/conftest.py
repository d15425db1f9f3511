import pytest

from tylo_lens.observability.events import EventType
from tylo_lens.observability.lens import TyloLens


TEST_PRICING = {
    "test-model": {"pricePer1KInput": 1.0, "pricePer1KOutput": 2.0},
}


class RecordingExporter:
    """Exporter double: keeps every trace it receives."""
    name = "recording"

    def __init__(self):
        self.traces = []

    def export(self, trace):
        self.traces.append(trace)


@pytest.fixture
def lens():
    instance = TyloLens(app={"name": "test-app", "environment": "test"}, pricing=TEST_PRICING)
    yield instance
    instance.dispose()


@pytest.fixture
def recorder():
    return RecordingExporter()


@pytest.fixture
def events(lens):
    """Every event the lens emits, as (type, span name or None)."""
    received = []
    for event_type in EventType:
        lens.on(event_type, lambda e: received.append((e.type, e.span.name if e.span else None)))
    return received
