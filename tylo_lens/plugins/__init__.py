# Plugins Package
from tylo_lens.plugins.auto_trace import AutoTracePlugin
from tylo_lens.plugins.base import LensPlugin
from tylo_lens.plugins.exporter import ExporterPlugin
from tylo_lens.plugins.network import NetworkInstrumentationPlugin
from tylo_lens.plugins.realtime_webhook import RealtimeWebhookPlugin
from tylo_lens.plugins.tiktoken import TiktokenTokenizerPlugin
from tylo_lens.plugins.transparency import TransparencyPlugin

__all__ = [
    "AutoTracePlugin",
    "ExporterPlugin",
    "LensPlugin",
    "NetworkInstrumentationPlugin",
    "RealtimeWebhookPlugin",
    "TiktokenTokenizerPlugin",
    "TransparencyPlugin",
]
