# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Conversation context manager.

Keeps per-conversation history in a TTL cache, tracks token totals, collapses
old messages into a summary once a model's warning threshold is crossed and
fits history into a request budget.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from chat_runtime.exceptions import ContextNotFoundError
from chat_runtime.models import ChatMessage, ConversationContext, ConversationMessage, MessageRole
from chat_runtime.services.cache import TTLCache
from chat_runtime.services.context.summarizer import create_conversation_summary
from chat_runtime.services.context.tokens import TokenCounter, count_message_tokens, estimate_token_count
from chat_runtime.services.context.windows import (
    SummarizationStrategy,
    get_context_window,
    get_strategy,
)

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "Previous conversation summary: "


@dataclass
class RequestMessages:
    """Messages selected for a backend request.

    Attributes:
        messages (List[ChatMessage]): Chronological request payload.
        token_count (int): Estimated tokens of ``messages``.
        truncated (bool): Whether older history was left out.
    """

    messages: List[ChatMessage] = field(default_factory=list)
    token_count: int = 0
    truncated: bool = False


class ContextManager:
    """Conversation history with token accounting and summarization."""

    def __init__(
        self,
        cache: Optional[TTLCache[ConversationContext]] = None,
        strategy: Optional[SummarizationStrategy] = None,
        token_counter: Optional[TokenCounter] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            cache (Optional[TTLCache]): Context store; a 30 min / 200-entry
                cache is created if None.
            strategy (Optional[SummarizationStrategy]): Default strategy used
                when the warning threshold is crossed. ``balanced`` if None.
            token_counter (Optional[TokenCounter]): Counter for message and
                summary tokens; heuristic if None.
        """
        self.cache: TTLCache[ConversationContext] = (
            cache if cache is not None else TTLCache(ttl=1800, max_size=200)
        )
        self.strategy = strategy or get_strategy("balanced")
        self.token_counter = token_counter

    def _message_tokens(self, message: ChatMessage) -> int:
        return count_message_tokens(message, self.token_counter)

    def _recount(self, context: ConversationContext) -> int:
        total = sum(m.token_count or self._message_tokens(m) for m in context.messages)
        if context.summary:
            total += estimate_token_count(context.summary, self.token_counter)
        return total

    def get_context(self, conversation_id: str) -> Optional[ConversationContext]:
        """Return the conversation context, or None if unknown or expired."""
        return self.cache.get(conversation_id)

    def create_context(
        self,
        conversation_id: str,
        user_id: str,
        model_id: Optional[str] = None,
    ) -> ConversationContext:
        """Create (or replace) an empty context for ``conversation_id``."""
        context = ConversationContext(id=conversation_id, user_id=user_id, model_id=model_id)
        self.cache.set(conversation_id, context)
        return context

    def add_message(
        self,
        conversation_id: str,
        message: ChatMessage,
        message_id: Optional[str] = None,
    ) -> ConversationContext:
        """Append a message and summarize when the model threshold is crossed.

        Args:
            conversation_id (str): Target conversation.
            message (ChatMessage): Message to append.
            message_id (Optional[str]): Identifier of the stored message;
                generated if None.

        Returns:
            ConversationContext: The updated context.

        Raises:
            ContextNotFoundError: If the conversation does not exist.
        """
        context = self.get_context(conversation_id)
        if context is None:
            raise ContextNotFoundError(conversation_id)

        stored = ConversationMessage(
            id=message_id or str(uuid.uuid4()),
            role=message.role,
            content=message.content,
            token_count=self._message_tokens(message),
        )
        context.messages.append(stored)
        context.total_tokens = self._recount(context)
        context.updated_at = time.time()

        window = get_context_window(context.model_id or "default")
        if context.total_tokens > window.warning_threshold:
            context = self.summarize_context(context, self.strategy)

        self.cache.set(conversation_id, context)
        return context

    def summarize_context(
        self,
        context: ConversationContext,
        strategy: Optional[SummarizationStrategy] = None,
    ) -> ConversationContext:
        """Collapse all but the most recent messages into the summary.

        Args:
            context (ConversationContext): Context to summarize.
            strategy (Optional[SummarizationStrategy]): Strategy controlling
                how many recent messages survive. Manager default if None.

        Returns:
            ConversationContext: A new context holding the preserved tail and
                the extended summary, or ``context`` unchanged when there is
                nothing to collapse.
        """
        strategy = strategy or self.strategy
        keep = strategy.preserve_recent_messages
        if len(context.messages) <= keep:
            return context

        old_messages = context.messages[:-keep] if keep else list(context.messages)
        recent_messages = context.messages[-keep:] if keep else []

        summary = create_conversation_summary(old_messages, context.summary)
        summarized = context.model_copy(
            update={
                "messages": list(recent_messages),
                "summary": summary,
                "updated_at": time.time(),
            }
        )
        summarized.total_tokens = self._recount(summarized)
        logger.info(
            "Summarized conversation %s: %d messages collapsed, tokens %d -> %d",
            context.id,
            len(old_messages),
            context.total_tokens,
            summarized.total_tokens,
        )
        return summarized

    def get_messages_for_request(
        self,
        conversation_id: str,
        model_id: Optional[str] = None,
    ) -> RequestMessages:
        """Fit the conversation into ``max_tokens - reserve_tokens``.

        The summary (if any) is emitted first as a system message when it fits
        the budget; then messages are taken from the most recent backwards
        until the next one would exceed it.

        Args:
            conversation_id (str): Conversation to read.
            model_id (Optional[str]): Model whose window defines the budget.

        Returns:
            RequestMessages: Chronological payload, its token count and whether
                anything was dropped. Empty for an unknown conversation.
        """
        context = self.get_context(conversation_id)
        if context is None:
            return RequestMessages()

        window = get_context_window(model_id or "default")
        budget = window.max_tokens - window.reserve_tokens

        token_count = 0
        head: List[ChatMessage] = []
        if context.summary:
            summary_message = ChatMessage(
                role=MessageRole.SYSTEM, content=f"{SUMMARY_PREFIX}{context.summary}"
            )
            summary_tokens = self._message_tokens(summary_message)
            if summary_tokens <= budget:
                head.append(summary_message)
                token_count += summary_tokens

        tail: List[ChatMessage] = []
        truncated = False
        for message in reversed(context.messages):
            tokens = message.token_count or self._message_tokens(message)
            if token_count + tokens > budget:
                truncated = True
                break
            tail.append(message.to_chat_message())
            token_count += tokens

        tail.reverse()
        return RequestMessages(messages=head + tail, token_count=token_count, truncated=truncated)

    def delete_context(self, conversation_id: str) -> bool:
        """Drop a conversation. Returns True if it existed."""
        return self.cache.delete(conversation_id)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.cache.get_stats(),
            "strategy": {
                "trigger_threshold": self.strategy.trigger_threshold,
                "target_tokens": self.strategy.target_tokens,
                "preserve_recent_messages": self.strategy.preserve_recent_messages,
            },
        }

    def cleanup(self) -> int:
        """Sweep expired contexts."""
        return self.cache.cleanup()
