# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Conversation context handling.

  tokens.py          Pluggable token counting (chars/4 heuristic, tiktoken).
  windows.py         Per-model context windows and summarization strategies.
  summarizer.py      Extractive summary of collapsed history.
  manager.py         Per-conversation history with token accounting.
  sliding_window.py  Importance-ranked compression of a request payload.

Usage:

    manager = ContextManager(token_counter=create_token_counter("heuristic"))
    manager.create_context("conv-1", "user-1", "chat-model")
    manager.add_message("conv-1", ChatMessage(role="user", content="Hi"))
    payload = manager.get_messages_for_request("conv-1", "chat-model")

    optimizer = SlidingWindowOptimizer()
    window = optimizer.optimize_for_speed(payload.messages, "chat-model")
"""

from chat_runtime.services.context.manager import ContextManager, RequestMessages
from chat_runtime.services.context.sliding_window import (
    MessageImportance,
    SlidingWindowConfig,
    SlidingWindowOptimizer,
    WindowSlice,
)
from chat_runtime.services.context.summarizer import create_conversation_summary
from chat_runtime.services.context.tokens import (
    HeuristicTokenCounter,
    TiktokenCounter,
    TokenCounter,
    count_message_tokens,
    count_messages_tokens,
    create_token_counter,
    estimate_token_count,
)
from chat_runtime.services.context.windows import (
    CONTEXT_WINDOWS,
    SUMMARIZATION_STRATEGIES,
    ContextWindow,
    SummarizationStrategy,
    get_context_window,
    get_strategy,
)

__all__ = [
    "ContextManager",
    "RequestMessages",
    "SlidingWindowOptimizer",
    "SlidingWindowConfig",
    "WindowSlice",
    "MessageImportance",
    "create_conversation_summary",
    "TokenCounter",
    "HeuristicTokenCounter",
    "TiktokenCounter",
    "create_token_counter",
    "estimate_token_count",
    "count_message_tokens",
    "count_messages_tokens",
    "ContextWindow",
    "SummarizationStrategy",
    "CONTEXT_WINDOWS",
    "SUMMARIZATION_STRATEGIES",
    "get_context_window",
    "get_strategy",
]
