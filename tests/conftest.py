# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Shared test fixtures for chat-runtime test suite."""

import asyncio
from typing import AsyncIterator, List, Optional, Sequence
from unittest.mock import AsyncMock

import pytest
from chat_runtime.config import Settings
from chat_runtime.models import ChatMessage, MessageRole, ServiceOptions, Usage, UserType
from chat_runtime.services.backend import GenerationParams, GenerationResult
from chat_runtime.services.rate_limiter import RateLimiter
from chat_runtime.services.runtime_service import RuntimeService


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A fake clock starting at a fixed epoch time."""
    return FakeClock()


# ---------------------------------------------------------------------------
# Message / options factories
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_message():
    """Factory fixture for creating ChatMessage instances."""

    def _factory(
        content: str = "hello",
        role: MessageRole = MessageRole.USER,
    ) -> ChatMessage:
        return ChatMessage(role=role, content=content)

    return _factory


@pytest.fixture
def sample_options():
    """Factory fixture for creating ServiceOptions instances."""

    def _factory(
        model_id: str = "chat-model",
        user_id: str = "user-1",
        conversation_id: str = "conv-1",
        user_type: UserType = UserType.GUEST,
        **kwargs,
    ) -> ServiceOptions:
        return ServiceOptions(
            model_id=model_id,
            user_id=user_id,
            conversation_id=conversation_id,
            user_type=user_type,
            **kwargs,
        )

    return _factory


# ---------------------------------------------------------------------------
# Backend mocking helpers
# ---------------------------------------------------------------------------


class FakeBackend:
    """In-memory LLMBackend.

    ``generate`` is an AsyncMock so calls can be asserted; ``stream`` yields
    ``tokens`` with an optional delay and can fail after ``fail_after``
    tokens.
    """

    def __init__(
        self,
        text: str = "Generated answer.",
        tokens: Optional[List[str]] = None,
        token_delay: float = 0.0,
        fail_after: Optional[int] = None,
    ) -> None:
        self.generate = AsyncMock(
            return_value=GenerationResult(
                text=text,
                usage=Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            )
        )
        self.tokens = tokens if tokens is not None else ["Hello", " there", ",", " friend", "."]
        self.token_delay = token_delay
        self.fail_after = fail_after
        self.stream_calls: List[tuple] = []

    async def stream(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
    ) -> AsyncIterator[str]:
        self.stream_calls.append((model, list(messages), params))
        for index, token in enumerate(self.tokens):
            if self.fail_after is not None and index >= self.fail_after:
                raise RuntimeError("backend stream broke")
            if self.token_delay:
                await asyncio.sleep(self.token_delay)
            yield token
        if self.fail_after is not None and self.fail_after >= len(self.tokens):
            raise RuntimeError("backend stream broke")


@pytest.fixture
def fake_backend():
    """Factory fixture for creating FakeBackend instances."""

    def _factory(**kwargs) -> FakeBackend:
        return FakeBackend(**kwargs)

    return _factory


# ---------------------------------------------------------------------------
# Runtime service
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings():
    """Factory fixture for Settings with a roomy global bucket."""

    def _factory(**overrides) -> Settings:
        values = {
            "GLOBAL_RATE_LIMIT_CAPACITY": 1000,
            "STREAM_INSTANT_WORD_DELAY": 0.0,
            "_env_file": None,
        }
        values.update(overrides)
        return Settings(**values)

    return _factory


@pytest.fixture
def runtime_service(fake_backend, test_settings):
    """Factory fixture for creating a RuntimeService over a FakeBackend."""

    def _factory(
        backend: Optional[FakeBackend] = None,
        rate_limiter: Optional[RateLimiter] = None,
        **overrides,
    ) -> RuntimeService:
        return RuntimeService(
            backend or fake_backend(),
            test_settings(**overrides),
            rate_limiter=rate_limiter,
        )

    return _factory
