# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Exception hierarchy for chat-runtime."""

from __future__ import annotations

from typing import List, Optional


class ChatRuntimeError(Exception):
    """Base class for runtime errors."""


class RateLimitExceeded(ChatRuntimeError):
    """Raised when a request is rejected by the rate limiter.

    Callers should retry after ``reset_time`` (epoch seconds).
    """

    def __init__(self, reason: str, reset_time: Optional[float] = None) -> None:
        super().__init__(f"Rate limit exceeded: {reason}")
        self.reason = reason
        self.reset_time = reset_time


class EntitlementDenied(ChatRuntimeError):
    """Raised when the caller's tier does not include the requested model."""

    def __init__(self, model_id: str, user_type: str, allowed_model_ids: List[str]) -> None:
        super().__init__(
            f"Model {model_id} is not available for user type {user_type}. "
            f"Available models: {', '.join(allowed_model_ids)}"
        )
        self.model_id = model_id
        self.user_type = user_type
        self.allowed_model_ids = list(allowed_model_ids)


class ContextNotFoundError(ChatRuntimeError):
    """Raised when a message is added to an unknown conversation."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation context not found: {conversation_id}")
        self.conversation_id = conversation_id


class GenerationError(ChatRuntimeError):
    """Raised when a backend generation or stream fails."""


class ResponseTimeoutError(GenerationError):
    """Raised when the fast path misses its deadline."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Response timeout after {timeout:.3f}s")
        self.timeout = timeout


__all__ = [
    "ChatRuntimeError",
    "RateLimitExceeded",
    "EntitlementDenied",
    "ContextNotFoundError",
    "GenerationError",
    "ResponseTimeoutError",
]
