# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Runtime service: composes caching, rate limiting, context management and
the fast/streaming paths behind four entry points.

Every entry point runs the same admission sequence:
  1. Rate limit check       -> RateLimitExceeded
  2. Model entitlement      -> EntitlementDenied
  3. Context ensure/append  (last inbound message)
then selects the payload, calls the backend (or a cache) and records the
assistant reply in the conversation.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import replace
from typing import Any, Dict, Optional, Sequence

from chat_runtime.config import Settings, settings as default_settings
from chat_runtime.exceptions import ContextNotFoundError, GenerationError, RateLimitExceeded
from chat_runtime.models import (
    AIResponse,
    ChatMessage,
    ConversationContext,
    FastResponseResult,
    MessageRole,
    ServiceOptions,
    UserType,
)
from chat_runtime.services.backend import GenerationParams, GenerationResult, LLMBackend
from chat_runtime.services.cache import AsyncCache, TTLCache
from chat_runtime.services.context import (
    ContextManager,
    SlidingWindowOptimizer,
    create_token_counter,
    get_strategy,
)
from chat_runtime.services.entitlements import check_model_entitlement
from chat_runtime.services.fast_response import FastResponseOptions, FastResponseService
from chat_runtime.services.rate_limiter import DAY, RateLimiter
from chat_runtime.services.streaming import (
    CompletionCallback,
    StreamingOptimizer,
    StreamingOptions,
    StreamingResult,
)

logger = logging.getLogger(__name__)


def hash_messages(messages: Sequence[ChatMessage]) -> str:
    """Stable text form of a payload for response cache keys.

    Image parts are rendered as ``[IMAGE]`` so the key does not embed image
    data.
    """
    rendered = []
    for message in messages:
        role = message.role.value if isinstance(message.role, MessageRole) else str(message.role)
        if isinstance(message.content, list):
            parts = "|".join(
                "[IMAGE]" if part.type == "image" else (part.text or "")
                for part in message.content
            )
            rendered.append(f"{role}:{parts}")
        else:
            rendered.append(f"{role}:{message.content or ''}")
    return "||".join(rendered)


def _new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


class RuntimeService:
    """Per-request orchestration over the runtime components."""

    def __init__(
        self,
        backend: LLMBackend,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        """Build and own every component.

        Args:
            backend (LLMBackend): Model provider.
            settings (Optional[Settings]): Configuration; the module-level
                settings if None.
            rate_limiter (Optional[RateLimiter]): Pre-built limiter (custom
                clock or limits); built from settings if None.
        """
        self.settings = settings or default_settings
        cfg = self.settings
        self.backend = backend

        token_counter = create_token_counter(cfg.TOKEN_COUNTER)
        self.response_cache: AsyncCache[GenerationResult] = AsyncCache(
            ttl=cfg.RESPONSE_CACHE_TTL,
            max_size=cfg.RESPONSE_CACHE_MAX_SIZE,
            cleanup_interval=cfg.CACHE_CLEANUP_INTERVAL,
        )
        self.context_manager = ContextManager(
            cache=TTLCache(
                ttl=cfg.CONTEXT_CACHE_TTL,
                max_size=cfg.CONTEXT_CACHE_MAX_SIZE,
                cleanup_interval=cfg.CACHE_CLEANUP_INTERVAL,
            ),
            strategy=get_strategy(cfg.SUMMARIZATION_STRATEGY),
            token_counter=token_counter,
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            global_capacity=cfg.GLOBAL_RATE_LIMIT_CAPACITY,
            global_interval=cfg.GLOBAL_RATE_LIMIT_INTERVAL,
            counter_cache=TTLCache(
                ttl=DAY,
                max_size=cfg.RATE_LIMIT_CACHE_MAX_SIZE,
                cleanup_interval=cfg.CACHE_CLEANUP_INTERVAL,
                clock=time.time,
            ),
        )
        self.window_optimizer = SlidingWindowOptimizer(token_counter=token_counter)
        self.streaming = StreamingOptimizer(
            backend,
            window_optimizer=self.window_optimizer,
            options=StreamingOptions(
                max_latency=cfg.STREAM_MAX_LATENCY,
                buffer_size=cfg.STREAM_BUFFER_SIZE,
                instant_word_delay=cfg.STREAM_INSTANT_WORD_DELAY,
                instant_max_chars=cfg.INSTANT_MATCH_MAX_CHARS,
            ),
        )
        self.fast_response = FastResponseService(
            generate=self._generate_cached,
            streaming_fallback=self._streaming_fallback,
            window_optimizer=self.window_optimizer,
            fast_cache=AsyncCache(
                ttl=cfg.FAST_CACHE_TTL,
                max_size=cfg.FAST_CACHE_MAX_SIZE,
                cleanup_interval=cfg.CACHE_CLEANUP_INTERVAL,
            ),
            precomputed_cache=TTLCache(
                ttl=cfg.PRECOMPUTED_CACHE_TTL,
                max_size=500,
                cleanup_interval=cfg.CACHE_CLEANUP_INTERVAL,
            ),
            target_response_time=cfg.FAST_RESPONSE_TARGET,
            instant_max_chars=cfg.INSTANT_MATCH_MAX_CHARS,
        )

    # Lifecycle

    def start(self) -> None:
        """Start background cache sweeps. Requires a running event loop."""
        self.response_cache.start()
        self.context_manager.cache.start()
        self.rate_limiter.counters.start()
        self.fast_response.start()
        logger.info("Runtime service started")

    async def aclose(self) -> None:
        """Cancel streams, stop sweeps and drop in-memory state."""
        await self.streaming.aclose()
        await self.fast_response.aclose()
        await self.response_cache.aclose()
        await self.context_manager.cache.aclose()
        await self.rate_limiter.counters.aclose()
        logger.info("Runtime service stopped")

    # Admission

    def _admit(self, messages: Sequence[ChatMessage], options: ServiceOptions) -> None:
        """Rate limit, entitlement and context append of the inbound message."""
        result = self.rate_limiter.check_rate_limit(options.user_id, options.user_type)
        if not result.allowed:
            raise RateLimitExceeded(result.reason or "request rejected", result.reset_time)

        check_model_entitlement(options.model_id, options.user_type)

        if self.context_manager.get_context(options.conversation_id) is None:
            self.context_manager.create_context(
                options.conversation_id, options.user_id, options.model_id
            )
        if messages:
            self.context_manager.add_message(
                options.conversation_id, messages[-1], _new_message_id()
            )

    def _record_reply(self, conversation_id: str, content: str, message_id: str) -> None:
        if not content:
            return
        try:
            self.context_manager.add_message(
                conversation_id,
                ChatMessage(role=MessageRole.ASSISTANT, content=content),
                message_id,
            )
        except ContextNotFoundError:
            logger.warning(
                "Conversation %s disappeared before reply %s was recorded",
                conversation_id,
                message_id,
            )

    def _reply_recorder(self, conversation_id: str, message_id: str) -> CompletionCallback:
        def record(text: str) -> None:
            self._record_reply(conversation_id, text, message_id)

        return record

    # Generation

    def _params(self, options: ServiceOptions) -> GenerationParams:
        return GenerationParams(
            temperature=(
                options.temperature
                if options.temperature is not None
                else self.settings.DEFAULT_TEMPERATURE
            ),
            max_tokens=options.max_tokens or self.settings.DEFAULT_MAX_TOKENS,
        )

    def cache_key(self, messages: Sequence[ChatMessage], options: ServiceOptions) -> str:
        params = self._params(options)
        return TTLCache.generate_key(
            {
                "modelId": options.model_id,
                "messagesHash": hash_messages(messages),
                "temperature": params.temperature,
                "maxTokens": params.max_tokens,
            }
        )

    async def _execute(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
    ) -> GenerationResult:
        try:
            return await self.backend.generate(options.model_id, messages, self._params(options))
        except GenerationError:
            raise
        except Exception as e:
            logger.error("AI generation error for %s", options.model_id, exc_info=True)
            raise GenerationError(f"Failed to generate response: {e}") from e

    async def _generate_cached(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
    ) -> AIResponse:
        """Backend call behind the response cache; does not touch the context."""
        message_id = _new_message_id()
        if not options.use_cache:
            result = await self._execute(messages, options)
            return AIResponse(
                content=result.text,
                usage=result.usage,
                conversation_id=options.conversation_id,
                message_id=message_id,
            )

        key = self.cache_key(messages, options)
        cached = self.response_cache.get(key)
        if cached is not None:
            return AIResponse(
                content=cached.text,
                usage=cached.usage,
                cached=True,
                conversation_id=options.conversation_id,
                message_id=message_id,
            )

        ttl = options.cache_ttl or self.settings.RESPONSE_CACHE_TTL
        result = await self.response_cache.get_or_set(
            key, lambda: self._execute(messages, options), ttl=ttl
        )
        return AIResponse(
            content=result.text,
            usage=result.usage,
            conversation_id=options.conversation_id,
            message_id=message_id,
        )

    async def _streaming_fallback(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
    ) -> StreamingResult:
        message_id = _new_message_id()
        return await self.streaming.generate_streaming_response(
            messages,
            options.model_id,
            options.conversation_id,
            user_type=options.user_type,
            message_id=message_id,
            on_complete=self._reply_recorder(options.conversation_id, message_id),
        )

    async def generate_response(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
    ) -> AIResponse:
        """Complete response with full context fitting and response caching.

        Args:
            messages (Sequence[ChatMessage]): Inbound messages; the last one
                is appended to the conversation.
            options (ServiceOptions): Request options.

        Returns:
            AIResponse: The reply, recorded in the conversation.

        Raises:
            RateLimitExceeded: If the caller is over a limit.
            EntitlementDenied: If the tier may not use the model.
            GenerationError: If the backend fails.
        """
        self._admit(messages, options)
        payload = self.context_manager.get_messages_for_request(
            options.conversation_id, options.model_id
        )
        if payload.truncated:
            logger.info(
                "Request payload for %s truncated to %d tokens",
                options.conversation_id,
                payload.token_count,
            )
        response = await self._generate_cached(payload.messages, options)
        self._record_reply(options.conversation_id, response.content, response.message_id)
        return response

    async def generate_streaming_response(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
    ) -> StreamingResult:
        """Backend token stream over the fitted conversation payload."""
        self._admit(messages, options)
        payload = self.context_manager.get_messages_for_request(
            options.conversation_id, options.model_id
        )
        message_id = _new_message_id()
        return await self.streaming.generate_streaming_response(
            payload.messages,
            options.model_id,
            options.conversation_id,
            user_type=options.user_type,
            options=replace(self.streaming.options, allow_instant=False, optimize_context=False),
            message_id=message_id,
            on_complete=self._reply_recorder(options.conversation_id, message_id),
            params=self._params(options),
        )

    async def generate_fast_response(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
        fast_options: Optional[FastResponseOptions] = None,
    ) -> FastResponseResult:
        """Latency-bounded response; may return a stream (see ``result.stream``)."""
        self._admit(messages, options)
        payload = self.context_manager.get_messages_for_request(
            options.conversation_id, options.model_id
        )
        result = await self.fast_response.generate_fast_response(
            payload.messages, options, fast_options
        )
        if result.stream is None:
            self._record_reply(options.conversation_id, result.content, result.message_id)
        return result

    async def generate_fast_streaming_response(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
        streaming_options: Optional[StreamingOptions] = None,
    ) -> StreamingResult:
        """Stream tuned for first-token latency (instant phrases, fast model)."""
        self._admit(messages, options)
        payload = self.context_manager.get_messages_for_request(
            options.conversation_id, options.model_id
        )
        message_id = _new_message_id()
        return await self.streaming.generate_streaming_response(
            payload.messages,
            options.model_id,
            options.conversation_id,
            user_type=options.user_type,
            options=streaming_options or replace(self.streaming.options, use_fast_model=True),
            message_id=message_id,
            on_complete=self._reply_recorder(options.conversation_id, message_id),
        )

    # Introspection / admin

    def get_conversation(self, conversation_id: str) -> Optional[ConversationContext]:
        return self.context_manager.get_context(conversation_id)

    def delete_conversation(self, conversation_id: str) -> bool:
        return self.context_manager.delete_context(conversation_id)

    def get_user_status(
        self,
        user_id: str,
        user_type: UserType = UserType.GUEST,
    ) -> Dict[str, Any]:
        return self.rate_limiter.get_status(user_id, user_type)

    def clear_user_limits(self, user_id: str) -> None:
        self.rate_limiter.clear_user_limits(user_id)

    def cancel_stream(self, stream_id: str) -> bool:
        return self.streaming.cancel_stream(stream_id)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "response_cache": self.response_cache.get_stats(),
            "context_manager": self.context_manager.get_stats(),
            "rate_limiter": {
                "global_capacity": self.rate_limiter.global_bucket.capacity,
                "global_interval": self.rate_limiter.global_bucket.interval,
                "global_tokens": self.rate_limiter.global_bucket.tokens,
                "counters": self.rate_limiter.counters.get_stats(),
            },
            "sliding_window": self.window_optimizer.get_cache_stats(),
            "fast_response": self.fast_response.get_performance_stats(),
            "streaming": self.streaming.get_performance_stats(),
        }

    def cleanup(self) -> Dict[str, int]:
        """Sweep every cache now. Returns removed entries per store."""
        removed = {
            "response_cache": self.response_cache.cleanup(),
            "contexts": self.context_manager.cleanup(),
            "rate_limit_counters": self.rate_limiter.cleanup(),
            "fast_cache": self.fast_response.fast_cache.cleanup(),
            "precomputed_cache": self.fast_response.precomputed_cache.cleanup(),
        }
        logger.info("Cleanup removed %s", removed)
        return removed
