"""
Token counting for chapter budget checks.

Stored per-turn counts win; tiktoken's cl100k_base is the fallback for
turns saved without one. It is an approximation for non-OpenAI models.
"""

from functools import lru_cache
from typing import Callable, Sequence

import tiktoken

from schemas import StoryEntry

TokenCounter = Callable[[str], int]


@lru_cache(maxsize=1)
def _encoding():
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Count tokens in ``text``."""
    if not text:
        return 0
    return len(_encoding().encode(text, disallowed_special=()))


def entry_tokens(entry: StoryEntry, counter: TokenCounter = count_tokens) -> int:
    if entry.token_count:
        return entry.token_count
    return counter(entry.content)


def tokens_outside_buffer(
    transcript: Sequence[StoryEntry],
    last_boundary: int,
    buffer: int,
    counter: TokenCounter = count_tokens,
) -> int:
    """
    Tokens in the un-summarized transcript that sit outside the protected buffer.

    Returns 0 when every un-summarized entry is inside the buffer.
    """
    visible = list(transcript[last_boundary:])
    if len(visible) <= buffer:
        return 0
    eligible = visible[: len(visible) - buffer]
    return sum(entry_tokens(e, counter) for e in eligible)
