"""
Token estimation.

A rough character-based estimate; counts cached on blocks are a convenience
and can always be recomputed from content.
"""

import math
from typing import Optional

from ..config import config


def estimate_tokens(text: str, chars_per_token: Optional[int] = None) -> int:
    """
    Estimate the number of tokens in a piece of text.

    Args:
        text: The text to measure
        chars_per_token: Characters per token (defaults to config value)

    Returns:
        Estimated token count, 0 for empty text
    """
    if not text:
        return 0
    ratio = chars_per_token or config.chars_per_token
    return math.ceil(len(text) / ratio)
