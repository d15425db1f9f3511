"""
Token Estimator

A conservative, dependency-free estimate. Accurate counting is not a goal:
plug a real tokenizer in with TiktokenTokenizerPlugin or
TyloLens.set_token_estimator() when it matters.
"""

import math
import re
from typing import Callable


TokenEstimator = Callable[[str], int]

# Hiragana/katakana, CJK extension A, CJK unified ideographs
_CJK = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff]")

CJK_CHARS_PER_TOKEN = 1.5
LATIN_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    """
    Estimate the token count of a text.

    ~4 characters per token for Latin text, ~1.5 for CJK; blended.
    Empty or whitespace-only text is 0, anything else is at least 1.
    """
    if not text:
        return 0
    trimmed = text.strip()
    if not trimmed:
        return 0

    cjk = len(_CJK.findall(trimmed))
    other = len(trimmed) - cjk
    estimate = math.ceil(cjk / CJK_CHARS_PER_TOKEN) + math.ceil(other / LATIN_CHARS_PER_TOKEN)
    return max(1, estimate)
