"""Utility helpers for trimming text to a model's token budget."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

import tiktoken

_DEFAULT_ENCODING = "cl100k_base"


@lru_cache(maxsize=64)
def _encoding_for_model(model: Optional[str]) -> "tiktoken.Encoding":
    if not model:
        return tiktoken.get_encoding(_DEFAULT_ENCODING)
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding(_DEFAULT_ENCODING)


def truncate_to_tokens(text: str, max_tokens: int, model: Optional[str] = None) -> str:
    """Trim *text* so it encodes to at most *max_tokens* tokens.

    Every token spans at least one UTF-8 byte, so text whose byte length is
    within the budget is returned without loading an encoding.
    """

    if not text or max_tokens <= 0:
        return ""
    if len(text.encode("utf-8")) <= max_tokens:
        return text
    encoding = _encoding_for_model(model)
    tokens = encoding.encode(text)
    if len(tokens) <= max_tokens:
        return text
    return encoding.decode(tokens[:max_tokens])
