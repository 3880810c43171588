"""Token estimation helpers used wherever a real tokenizer is not required."""

from __future__ import annotations

import logging
import math
from functools import lru_cache

import tiktoken

LOGGER = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate token count as characters / 4, rounded up."""

    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_tokens_for_size(chunk_size: int) -> int:
    """Token estimate for a chunk of ``chunk_size`` characters."""

    return math.ceil(max(chunk_size, 0) / CHARS_PER_TOKEN)


@lru_cache(maxsize=4)
def _encoding(name: str) -> tiktoken.Encoding:
    return tiktoken.get_encoding(name)


def count_tokens(text: str, encoding_name: str = "cl100k_base") -> int:
    """Exact token count using tiktoken; falls back to the estimate if the encoding is unavailable."""

    if not text:
        return 0
    try:
        encoding = _encoding(encoding_name)
    except Exception as exc:  # encoding files may be unavailable offline
        LOGGER.debug("tiktoken encoding %s unavailable (%s); using estimate", encoding_name, exc)
        return estimate_tokens(text)
    return len(encoding.encode(text))


def truncate_to_tokens(text: str, max_tokens: int, encoding_name: str = "cl100k_base") -> str:
    """Trim ``text`` so it fits within ``max_tokens`` tokens."""

    if max_tokens <= 0 or not text:
        return ""
    try:
        encoding = _encoding(encoding_name)
    except Exception as exc:
        LOGGER.debug("tiktoken encoding %s unavailable (%s); truncating by characters", encoding_name, exc)
        return text[: max_tokens * CHARS_PER_TOKEN]
    tokens = encoding.encode(text)
    if len(tokens) <= max_tokens:
        return text
    return encoding.decode(tokens[:max_tokens])


__all__ = ["CHARS_PER_TOKEN", "count_tokens", "estimate_tokens", "estimate_tokens_for_size", "truncate_to_tokens"]
