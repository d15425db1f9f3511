"""
tiktoken Tokenizer Plugin

Swaps the engine's heuristic token estimator for exact BPE counts.
Dispose restores the heuristic.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional

import tiktoken

from tylo_lens.cost.tokens import estimate_tokens
from tylo_lens.plugins.base import Disposer, LensPlugin

if TYPE_CHECKING:
    from tylo_lens.observability.lens import PluginContext


logger = logging.getLogger(__name__)


class TiktokenTokenizerPlugin(LensPlugin):
    """
    Args:
        model: Resolve the encoding with tiktoken.encoding_for_model()
        encoding_name: Encoding used when no model is given (or it is unknown)
        encoding: Pre-built encoding object (anything with ``encode(text)``)
    """

    name = "tokenizer:tiktoken"

    def __init__(self, model: Optional[str] = None, encoding_name: str = "cl100k_base", encoding: Any = None):
        self.model = model
        self.encoding_name = encoding_name
        self.encoding = encoding

    def _load(self) -> Any:
        if self.model:
            try:
                return tiktoken.encoding_for_model(self.model)
            except KeyError:
                logger.info(f"[TOKENIZER] no tiktoken mapping for '{self.model}', using {self.encoding_name}")
        return tiktoken.get_encoding(self.encoding_name)

    def setup(self, context: "PluginContext") -> Optional[Disposer]:
        encoding = self.encoding
        if encoding is None:
            try:
                encoding = self._load()
            except Exception as e:
                logger.warning(f"[TOKENIZER] tiktoken unavailable, falling back to estimate_tokens(): {e}")
                context.set_token_estimator(estimate_tokens)
                return lambda: context.set_token_estimator(estimate_tokens)

        def count_tokens(text: str) -> int:
            if not text:
                return 0
            try:
                return len(encoding.encode(text))
            except Exception:
                return estimate_tokens(text)

        context.set_token_estimator(count_tokens)
        return lambda: context.set_token_estimator(estimate_tokens)
