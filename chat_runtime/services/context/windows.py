# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Context window table and summarization strategies.

Thresholds are absolute token counts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class ContextWindow:
    """Token limits of a model.

    Attributes:
        max_tokens (int): Total context size.
        reserve_tokens (int): Tokens kept free for the response.
        warning_threshold (int): Total above which a context is summarized.
    """

    max_tokens: int
    reserve_tokens: int
    warning_threshold: int


@dataclass(frozen=True)
class SummarizationStrategy:
    """When and how aggressively to collapse history.

    Attributes:
        trigger_threshold (int): Token total that triggers summarization.
        target_tokens (int): Token total aimed for after summarization.
        preserve_recent_messages (int): Tail messages always kept verbatim.
    """

    trigger_threshold: int
    target_tokens: int
    preserve_recent_messages: int


_LARGE = ContextWindow(max_tokens=128_000, reserve_tokens=8_192, warning_threshold=120_000)
_LARGE_SMALL_RESERVE = ContextWindow(max_tokens=128_000, reserve_tokens=4_096, warning_threshold=124_000)

CONTEXT_WINDOWS: Dict[str, ContextWindow] = {
    "default": ContextWindow(max_tokens=32_000, reserve_tokens=4_096, warning_threshold=28_000),
    "chat-model": ContextWindow(max_tokens=16_000, reserve_tokens=2_048, warning_threshold=14_000),
    "chat-model-reasoning": ContextWindow(
        max_tokens=32_000, reserve_tokens=8_192, warning_threshold=24_000
    ),
    # Cohere
    "command-a-03-2025": _LARGE,
    "command-nightly": _LARGE,
    "command-r-plus-04-2024": _LARGE,
    "command-r-08-2024": _LARGE,
    # Phi
    "phi-3-medium-128k-instruct": _LARGE_SMALL_RESERVE,
    "phi-3-mini-128k-instruct": _LARGE_SMALL_RESERVE,
    # Llama
    "meta-llama/llama-4-scout-17b-16e-instruct": ContextWindow(
        max_tokens=32_000, reserve_tokens=4_096, warning_threshold=28_000
    ),
    "meta-llama/llama-3.3-70b-instruct": _LARGE,
    "meta-llama/llama-3.1-405b-instruct": _LARGE,
    "meta-llama/llama-3.1-70b-instruct": _LARGE,
    "meta-llama/llama-3.1-8b-instruct": _LARGE_SMALL_RESERVE,
}

SUMMARIZATION_STRATEGIES: Dict[str, SummarizationStrategy] = {
    "conservative": SummarizationStrategy(
        trigger_threshold=32_000, target_tokens=16_000, preserve_recent_messages=10
    ),
    "balanced": SummarizationStrategy(
        trigger_threshold=28_000, target_tokens=12_000, preserve_recent_messages=8
    ),
    "aggressive": SummarizationStrategy(
        trigger_threshold=24_000, target_tokens=8_000, preserve_recent_messages=6
    ),
    "minimal": SummarizationStrategy(
        trigger_threshold=20_000, target_tokens=4_000, preserve_recent_messages=4
    ),
}


def get_context_window(model_id: str) -> ContextWindow:
    """Limits for ``model_id``; unknown models get the ``default`` entry."""
    return CONTEXT_WINDOWS.get(model_id, CONTEXT_WINDOWS["default"])


def get_strategy(name: str) -> SummarizationStrategy:
    """Strategy by name; unknown names get ``balanced``."""
    return SUMMARIZATION_STRATEGIES.get(name, SUMMARIZATION_STRATEGIES["balanced"])
