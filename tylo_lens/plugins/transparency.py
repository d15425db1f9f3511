"""
Transparency Plugin

Scores the trace once per export (before exporters run on flush) and
writes per-span analysis plus the trace-level transparency record.
"""

from typing import TYPE_CHECKING, Optional

from tylo_lens.ethics.transparency import annotate_transparency
from tylo_lens.observability.events import EventType, LensEvent
from tylo_lens.plugins.base import Disposer, LensPlugin
from tylo_lens.schemas.trace import TransparencyWeights

if TYPE_CHECKING:
    from tylo_lens.observability.lens import PluginContext


class TransparencyPlugin(LensPlugin):
    name = "transparency"

    def __init__(self, weights: Optional[TransparencyWeights] = None):
        self.weights = weights

    def setup(self, context: "PluginContext") -> Optional[Disposer]:
        def on_export(event: LensEvent) -> None:
            annotate_transparency(event.trace, self.weights, estimator=context.token_estimator)

        return context.on(EventType.EXPORT, on_export)
