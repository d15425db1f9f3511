"""Exporter Plugin: registers one exporter with the engine."""

from typing import TYPE_CHECKING, Any, Optional

from tylo_lens.plugins.base import Disposer, LensPlugin

if TYPE_CHECKING:
    from tylo_lens.observability.lens import PluginContext


class ExporterPlugin(LensPlugin):
    def __init__(self, exporter: Any):
        self.exporter = exporter
        self.name = f"exporter:{getattr(exporter, 'name', type(exporter).__name__)}"

    def setup(self, context: "PluginContext") -> Optional[Disposer]:
        context.add_exporter(self.exporter)
        return None
