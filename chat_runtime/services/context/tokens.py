# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Token estimation utilities.

The default counter is the chars/4 heuristic; a tiktoken-backed counter can
be selected through ``Settings.TOKEN_COUNTER``.  Both add a fixed role
overhead per message and a flat cost per image part.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Optional, Protocol

from chat_runtime.models import ChatMessage

CHARS_PER_TOKEN = 4
ROLE_OVERHEAD_TOKENS = 3
IMAGE_PART_TOKENS = 765

logger = logging.getLogger(__name__)


class TokenCounter(Protocol):
    """Anything that can count tokens of raw text."""

    def count_text(self, text: Optional[str]) -> int:
        ...


class HeuristicTokenCounter:
    """``ceil(len(text) / 4)``; missing or empty text counts 0."""

    def count_text(self, text: Optional[str]) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / CHARS_PER_TOKEN)


class TiktokenCounter:
    """Token counter backed by a tiktoken encoding."""

    def __init__(self, model: str = "gpt-4o") -> None:
        import tiktoken

        try:
            self._encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            logger.info("No tiktoken encoding for %s, using cl100k_base", model)
            self._encoding = tiktoken.get_encoding("cl100k_base")

    def count_text(self, text: Optional[str]) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text))


_default_counter: TokenCounter = HeuristicTokenCounter()


def create_token_counter(name: str = "heuristic") -> TokenCounter:
    """Build a counter by configuration name.

    Args:
        name (str): ``"heuristic"`` or ``"tiktoken"``.

    Returns:
        TokenCounter: The selected counter.

    Raises:
        ValueError: If the name is unknown.
    """
    if name == "heuristic":
        return HeuristicTokenCounter()
    if name == "tiktoken":
        return TiktokenCounter()
    raise ValueError(f"Unknown token counter: {name}")


def estimate_token_count(text: Optional[str], counter: Optional[TokenCounter] = None) -> int:
    """Estimate tokens of raw text (no role overhead)."""
    return (counter or _default_counter).count_text(text)


def count_message_tokens(message: Any, counter: Optional[TokenCounter] = None) -> int:
    """Estimate tokens of one message including role overhead.

    Text parts are counted with the counter; each image part adds
    ``IMAGE_PART_TOKENS``.

    Args:
        message (Any): A ``ChatMessage`` (or subclass).
        counter (Optional[TokenCounter]): Counter to use; heuristic if None.

    Returns:
        int: Estimated token count.
    """
    counter = counter or _default_counter
    content = message.content
    if content is None or isinstance(content, str):
        return counter.count_text(content) + ROLE_OVERHEAD_TOKENS

    tokens = ROLE_OVERHEAD_TOKENS
    for part in content:
        if part.type == "image":
            tokens += IMAGE_PART_TOKENS
        else:
            tokens += counter.count_text(part.text)
    return tokens


def count_messages_tokens(
    messages: Iterable[ChatMessage],
    counter: Optional[TokenCounter] = None,
) -> int:
    """Sum of ``count_message_tokens`` over a list of messages."""
    return sum(count_message_tokens(m, counter) for m in messages)
