"""
Token budget helpers for memory injection.

Estimates token counts from text length and trims framed memory blocks to
an approximate token ceiling on line boundaries.
"""

import math
from typing import Optional

CHARS_PER_TOKEN = 4


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token estimate: ~4 chars per token."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_memories(text: Optional[str], max_tokens: int) -> str:
    """
    Trim a framed memories block to fit within ``max_tokens``.

    Whole lines are kept in order until the next one would overflow the
    character budget (``max_tokens * 4``); partial lines are never emitted.
    Truncating the output again with the same budget returns it unchanged.
    """
    if not text:
        return ""

    if estimate_tokens(text) <= max_tokens:
        return text

    max_chars = max_tokens * CHARS_PER_TOKEN
    kept: list[str] = []
    current_length = 0

    for line in text.split("\n"):
        if current_length + len(line) + 1 > max_chars:
            break
        kept.append(line)
        current_length += len(line) + 1

    return "\n".join(kept)
