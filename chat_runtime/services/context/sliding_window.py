# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Importance-ranked sliding window over a message list.

When a request payload exceeds its budget, system messages and the last N
messages are kept, the rest are scored for importance and re-admitted
greedily (most important first) until the compression target is reached.
Survivors keep their original relative order.  A one-line synthetic summary
of what was dropped can be spliced in after the first system message.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from chat_runtime.models import ChatMessage, MessageRole
from chat_runtime.services.cache import TTLCache
from chat_runtime.services.context.tokens import TokenCounter, count_message_tokens, count_messages_tokens
from chat_runtime.services.context.windows import get_context_window

logger = logging.getLogger(__name__)

MODEL_LIMIT_SHARE = 0.8
IMPORTANCE_CACHE_TTL = 3600.0
IMPORTANCE_CACHE_SIZE = 2000

IMPORTANT_KEYWORDS = (
    "important", "critical", "urgent", "remember", "note",
    "error", "problem", "issue", "solution", "fix",
    "explain", "define", "analyze", "compare", "summarize",
)

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "how", "what", "when", "where", "why", "can", "could",
    "would", "should", "is", "are", "was", "were",
})

_ROLE_BONUS: Dict[MessageRole, float] = {
    MessageRole.SYSTEM: 0.4,
    MessageRole.ASSISTANT: 0.2,
    MessageRole.USER: 0.1,
}


@dataclass
class SlidingWindowConfig:
    """Compression parameters.

    Attributes:
        max_tokens (int): Budget before compression kicks in; clamped to 80 %
            of the model's context size.
        preserve_system_message (bool): Never drop system messages.
        preserve_last_n (int): Never drop the last N messages.
        compression_ratio (float): Share of ``max_tokens`` to compress to.
        use_semantic_compression (bool): Rank removable messages by content
            importance; recency only when False.
        enable_smart_summarization (bool): Add a synthetic summary when more
            than two messages are dropped.
    """

    max_tokens: int = 4096
    preserve_system_message: bool = True
    preserve_last_n: int = 3
    compression_ratio: float = 0.7
    use_semantic_compression: bool = True
    enable_smart_summarization: bool = True


@dataclass
class WindowSlice:
    """Result of a window optimization.

    Attributes:
        messages (List[ChatMessage]): Selected messages.
        token_count (int): Estimated tokens of ``messages``.
        compression_applied (bool): Whether anything was compressed.
        removed_message_count (int): Messages dropped.
        summary_added (bool): Whether a synthetic summary was inserted.
    """

    messages: List[ChatMessage]
    token_count: int
    compression_applied: bool = False
    removed_message_count: int = 0
    summary_added: bool = False


@dataclass
class MessageImportance:
    """Importance score of one removable message.

    Attributes:
        index (int): Position in the original message list.
        message (ChatMessage): The scored message.
        token_count (int): Estimated tokens of the message.
        importance (float): Score in ``[0, 1]``.
        reasons (List[str]): Tags explaining the score.
    """

    index: int
    message: ChatMessage
    token_count: int
    importance: float
    reasons: List[str] = field(default_factory=list)


class SlidingWindowOptimizer:
    """Token-budget-aware message selection with importance ranking."""

    def __init__(
        self,
        config: Optional[SlidingWindowConfig] = None,
        token_counter: Optional[TokenCounter] = None,
        importance_cache_size: int = IMPORTANCE_CACHE_SIZE,
    ) -> None:
        self.default_config = config or SlidingWindowConfig()
        self.token_counter = token_counter
        self._importance_cache: TTLCache[float] = TTLCache(
            ttl=IMPORTANCE_CACHE_TTL, max_size=importance_cache_size
        )
        self._hits = 0
        self._misses = 0

    def _tokens(self, messages: Sequence[ChatMessage]) -> int:
        return count_messages_tokens(messages, self.token_counter)

    def optimize_messages(
        self,
        messages: Sequence[ChatMessage],
        model_id: str,
        config: Optional[SlidingWindowConfig] = None,
    ) -> WindowSlice:
        """Compress ``messages`` to fit the configured budget.

        Args:
            messages (Sequence[ChatMessage]): Input messages; not mutated.
            model_id (str): Model whose context size caps the budget.
            config (Optional[SlidingWindowConfig]): Parameters; the
                optimizer default if None.

        Returns:
            WindowSlice: The input unchanged when it fits, otherwise the
                compressed selection.
        """
        config = config or self.default_config
        window = get_context_window(model_id)
        max_tokens = int(min(config.max_tokens, window.max_tokens * MODEL_LIMIT_SHARE))
        config = replace(config, max_tokens=max_tokens)

        total = self._tokens(messages)
        if total <= max_tokens:
            return WindowSlice(messages=list(messages), token_count=total)

        return self._apply(list(messages), config, total)

    def _apply(
        self,
        messages: List[ChatMessage],
        config: SlidingWindowConfig,
        original_tokens: int,
    ) -> WindowSlice:
        preserved, removable = self.categorize_messages(messages, config)
        scored = self.calculate_message_importance(removable, len(messages), config)
        target = math.floor(config.max_tokens * config.compression_ratio)

        kept: List[Tuple[int, ChatMessage]] = list(preserved)
        removed: List[ChatMessage] = []
        running = self._tokens([m for _, m in preserved])
        for item in sorted(scored, key=lambda i: i.importance, reverse=True):
            if running + item.token_count <= target:
                kept.append((item.index, item.message))
                running += item.token_count
            else:
                removed.append(item.message)

        kept.sort(key=lambda pair: pair[0])
        selected = [m for _, m in kept]

        summary_added = False
        if config.enable_smart_summarization and len(removed) > 2:
            summary = self.generate_summary(removed)
            if summary:
                candidate = self._insert_summary(selected, summary)
                if self._tokens(candidate) <= config.max_tokens:
                    selected = candidate
                    summary_added = True

        token_count = self._tokens(selected)
        logger.info(
            "Compressed %d messages (%d tokens) to %d (%d tokens), %d removed",
            len(messages),
            original_tokens,
            len(selected),
            token_count,
            len(removed),
        )
        return WindowSlice(
            messages=selected,
            token_count=token_count,
            compression_applied=True,
            removed_message_count=len(removed),
            summary_added=summary_added,
        )

    @staticmethod
    def categorize_messages(
        messages: Sequence[ChatMessage],
        config: SlidingWindowConfig,
    ) -> Tuple[List[Tuple[int, ChatMessage]], List[Tuple[int, ChatMessage]]]:
        """Split messages into preserved and removable ``(index, message)`` pairs."""
        preserved: List[Tuple[int, ChatMessage]] = []
        removable: List[Tuple[int, ChatMessage]] = []
        tail_start = len(messages) - config.preserve_last_n
        for index, message in enumerate(messages):
            if config.preserve_system_message and message.role == MessageRole.SYSTEM:
                preserved.append((index, message))
            elif index >= tail_start:
                preserved.append((index, message))
            else:
                removable.append((index, message))
        return preserved, removable

    def calculate_message_importance(
        self,
        removable: Sequence[Tuple[int, ChatMessage]],
        total_messages: int,
        config: Optional[SlidingWindowConfig] = None,
    ) -> List[MessageImportance]:
        """Score removable messages.

        Recency is measured by the position among the removable messages.
        """
        semantic = (config or self.default_config).use_semantic_compression
        count = len(removable)
        results: List[MessageImportance] = []
        for position, (index, message) in enumerate(removable):
            if semantic:
                score = self.calculate_importance_score(message, position, count)
            else:
                score = position / count if count else 0.0
            results.append(
                MessageImportance(
                    index=index,
                    message=message,
                    token_count=count_message_tokens(message, self.token_counter),
                    importance=score,
                    reasons=self.importance_reasons(message, score),
                )
            )
        return results

    def calculate_importance_score(self, message: ChatMessage, index: int, total: int) -> float:
        """Heuristic importance in ``[0, 1]``, memoized by role and prefix."""
        content = message.text
        role = message.role.value if isinstance(message.role, MessageRole) else str(message.role)
        cache_key = f"{role}:{content[:50]}"
        cached = self._importance_cache.get(cache_key)
        if cached is not None:
            self._hits += 1
            return cached
        self._misses += 1

        score = 0.5 + _ROLE_BONUS.get(message.role, 0.0)
        if len(content) > 200:
            score += 0.1
        if "?" in content:
            score += 0.05
        if "!" in content:
            score += 0.03
        lowered = content.lower()
        if any(keyword in lowered for keyword in IMPORTANT_KEYWORDS):
            score += 0.15
        if total:
            score += (index / total) * 0.2
        if content.endswith((".", "!", "?")):
            score += 0.05

        score = min(1.0, max(0.0, score))
        self._importance_cache.set(cache_key, score)
        return score

    @staticmethod
    def importance_reasons(message: ChatMessage, score: float) -> List[str]:
        content = message.text
        reasons: List[str] = []
        if message.role == MessageRole.SYSTEM:
            reasons.append("system-message")
        if len(content) > 200:
            reasons.append("long-content")
        if "?" in content:
            reasons.append("contains-question")
        if score > 0.7:
            reasons.append("high-importance")
        if score < 0.3:
            reasons.append("low-importance")
        return reasons

    @staticmethod
    def extract_key_topics(content: str) -> List[str]:
        """Top five non-stop-words longer than three characters by frequency."""
        words = [w for w in content.lower().split() if len(w) > 3 and w not in STOP_WORDS]
        return [word for word, _ in Counter(words).most_common(5)]

    def generate_summary(self, removed: Sequence[ChatMessage]) -> Optional[str]:
        """One-line bracketed summary of dropped messages, or None."""
        users = sum(1 for m in removed if m.role == MessageRole.USER)
        assistants = sum(1 for m in removed if m.role == MessageRole.ASSISTANT)
        if not users and not assistants:
            return None

        parts: List[str] = []
        if users:
            parts.append(f"User asked {users} question{'s' if users > 1 else ''}")
        if assistants:
            parts.append(f"Assistant provided {assistants} response{'s' if assistants > 1 else ''}")
        summary = "[Previous conversation: " + ", ".join(parts)

        topics = self.extract_key_topics(" ".join(m.text for m in removed))
        if topics:
            summary += f" about {', '.join(topics[:3])}"
        return summary + "]"

    @staticmethod
    def _insert_summary(messages: List[ChatMessage], summary: str) -> List[ChatMessage]:
        summary_message = ChatMessage(role=MessageRole.SYSTEM, content=summary)
        for position, message in enumerate(messages):
            if message.role == MessageRole.SYSTEM:
                return messages[: position + 1] + [summary_message] + messages[position + 1:]
        return [summary_message] + messages

    # Profiles

    @staticmethod
    def speed_config(model_id: str) -> SlidingWindowConfig:
        window = get_context_window(model_id)
        return SlidingWindowConfig(
            max_tokens=int(min(2048, window.max_tokens * 0.6)),
            preserve_last_n=2,
            compression_ratio=0.5,
            enable_smart_summarization=False,
        )

    @staticmethod
    def balanced_config(model_id: str) -> SlidingWindowConfig:
        window = get_context_window(model_id)
        return SlidingWindowConfig(
            max_tokens=int(min(4096, window.max_tokens * 0.8)),
            preserve_last_n=4,
            compression_ratio=0.7,
            enable_smart_summarization=True,
        )

    @staticmethod
    def quality_config(model_id: str) -> SlidingWindowConfig:
        window = get_context_window(model_id)
        return SlidingWindowConfig(
            max_tokens=int(min(8192, window.max_tokens * 0.9)),
            preserve_last_n=6,
            compression_ratio=0.8,
            enable_smart_summarization=True,
        )

    def optimize_for_speed(self, messages: Sequence[ChatMessage], model_id: str) -> WindowSlice:
        return self.optimize_messages(messages, model_id, self.speed_config(model_id))

    def optimize_for_balance(self, messages: Sequence[ChatMessage], model_id: str) -> WindowSlice:
        return self.optimize_messages(messages, model_id, self.balanced_config(model_id))

    def optimize_for_quality(self, messages: Sequence[ChatMessage], model_id: str) -> WindowSlice:
        return self.optimize_messages(messages, model_id, self.quality_config(model_id))

    def auto_optimize(
        self,
        messages: Sequence[ChatMessage],
        model_id: str,
        priority: str = "balance",
    ) -> WindowSlice:
        """Optimize with the ``speed``, ``balance`` or ``quality`` profile."""
        if priority == "speed":
            return self.optimize_for_speed(messages, model_id)
        if priority == "quality":
            return self.optimize_for_quality(messages, model_id)
        return self.optimize_for_balance(messages, model_id)

    def clear_cache(self) -> None:
        """Forget memoized importance scores and reset hit counters."""
        self._importance_cache.clear()
        self._hits = 0
        self._misses = 0

    def get_cache_stats(self) -> Dict[str, float]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._importance_cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
        }
