# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Fast response path.

Shortcuts are tried cheapest first:

  1. Instant match   canned replies for greetings and bare yes/no/ok/sure
  2. Fast cache      last message prefix + history length, short TTL
  3. Compression     speed profile of the sliding window
  4. Model downgrade fast model of the caller's tier
  5. Race            full generation against prewarmed precomputed answers

Steps 3-5 run under a deadline.  A timeout or backend failure falls back to
an injected streaming call when allowed.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from chat_runtime.exceptions import GenerationError, ResponseTimeoutError
from chat_runtime.models import AIResponse, ChatMessage, FastResponseResult, ServiceOptions
from chat_runtime.services.cache import AsyncCache, TTLCache
from chat_runtime.services.context.sliding_window import SlidingWindowOptimizer
from chat_runtime.services.phrases import (
    COMMON_PROMPTS,
    PREWARM_QUESTIONS,
    match_phrase,
    match_quick_reply,
    quick_answer,
)
from chat_runtime.services.streaming import StreamingResult, select_fast_model

logger = logging.getLogger(__name__)

FAST_TEMPERATURE = 0.3
FAST_MAX_TOKENS = 1024
RESPONSE_TIME_SAMPLES = 100

Generate = Callable[[Sequence[ChatMessage], ServiceOptions], Awaitable[AIResponse]]
StreamingFallback = Callable[[Sequence[ChatMessage], ServiceOptions], Awaitable[StreamingResult]]


@dataclass
class FastResponseOptions:
    """Switches of the fast path.

    Attributes:
        max_response_time (float): Deadline in seconds for compression,
            downgrade and generation.
        use_aggressive_caching (bool): Enable instant matches and the fast
            cache.
        prefetch_common_responses (bool): Race against precomputed answers.
        use_streaming_fallback (bool): Fall back to a stream on timeout or
            failure.
        optimize_context_size (bool): Compress with the speed profile.
        prioritize_speed (bool): Downgrade to the tier's fast model.
    """

    max_response_time: float = 3.0
    use_aggressive_caching: bool = True
    prefetch_common_responses: bool = True
    use_streaming_fallback: bool = True
    optimize_context_size: bool = True
    prioritize_speed: bool = True


def _last_text(messages: Sequence[ChatMessage]) -> Optional[str]:
    """Text of the last message, or None when it is multimodal or missing."""
    if not messages or messages[-1].is_multimodal:
        return None
    return messages[-1].text


def _new_message_id() -> str:
    return f"fast_{uuid.uuid4().hex[:12]}"


class FastResponseService:
    """Latency-bounded response orchestration."""

    def __init__(
        self,
        generate: Generate,
        streaming_fallback: Optional[StreamingFallback] = None,
        window_optimizer: Optional[SlidingWindowOptimizer] = None,
        fast_cache: Optional[AsyncCache[FastResponseResult]] = None,
        precomputed_cache: Optional[TTLCache[str]] = None,
        target_response_time: float = 3.0,
        instant_max_chars: int = 40,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the service.

        Args:
            generate (Generate): Full generation for a message list and
                options (response cache included).
            streaming_fallback (Optional[StreamingFallback]): Starts a stream
                when the fast path fails.
            window_optimizer (Optional[SlidingWindowOptimizer]): Context
                compressor.
            fast_cache (Optional[AsyncCache]): Aggressive cache; 120 s /
                2000 entries if None.
            precomputed_cache (Optional[TTLCache]): Canned answers; 600 s /
                500 entries if None.
            target_response_time (float): Latency target in seconds.
            instant_max_chars (int): Longest message eligible for an instant
                match.
            clock (Callable[[], float]): Time source for response times.
        """
        self._generate = generate
        self._streaming_fallback = streaming_fallback
        self.window_optimizer = window_optimizer or SlidingWindowOptimizer()
        self.fast_cache: AsyncCache[FastResponseResult] = (
            fast_cache
            if fast_cache is not None
            else AsyncCache(ttl=120, max_size=2000, cleanup_interval=30)
        )
        self.precomputed_cache: TTLCache[str] = (
            precomputed_cache
            if precomputed_cache is not None
            else TTLCache(ttl=600, max_size=500)
        )
        self.target_response_time = target_response_time
        self.instant_max_chars = instant_max_chars
        self._clock = clock
        self._response_times: Deque[float] = deque(maxlen=RESPONSE_TIME_SAMPLES)
        self.prewarm_common_responses()

    @staticmethod
    def fast_cache_key(messages: Sequence[ChatMessage], model_id: str) -> str:
        text = _last_text(messages)
        prefix = text[:100] if text is not None else "multimodal"
        return f"fast:{model_id}:{prefix}:{len(messages)}"

    @staticmethod
    def precomputed_key(messages: Sequence[ChatMessage]) -> str:
        text = _last_text(messages)
        content = text.lower().strip() if text is not None else "multimodal"
        return f"precomputed:{content[:50]}"

    def prewarm_common_responses(self) -> None:
        """Store canned answers for common questions."""
        for question in PREWARM_QUESTIONS:
            key = self.precomputed_key([ChatMessage(role="user", content=question)])
            self.precomputed_cache.set(key, quick_answer(question))

    def check_instant_response(self, messages: Sequence[ChatMessage]) -> Optional[str]:
        """Canned reply for the last message, if any."""
        text = _last_text(messages)
        if text is None:
            return None
        reply = match_phrase(text, COMMON_PROMPTS, self.instant_max_chars)
        if reply is not None:
            return reply
        return match_quick_reply(text)

    @staticmethod
    def optimize_model_for_speed(
        options: ServiceOptions,
        fast_options: FastResponseOptions,
    ) -> ServiceOptions:
        """Swap in the tier's fast model with lower temperature and token cap."""
        if not fast_options.prioritize_speed:
            return options
        return options.model_copy(
            update={
                "model_id": select_fast_model(options.model_id, options.user_type),
                "temperature": FAST_TEMPERATURE,
                "max_tokens": FAST_MAX_TOKENS,
            }
        )

    def _finish(self, result: FastResponseResult, start: float) -> FastResponseResult:
        result.response_time = self._clock() - start
        self._response_times.append(result.response_time)
        return result

    async def generate_fast_response(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
        fast_options: Optional[FastResponseOptions] = None,
    ) -> FastResponseResult:
        """Answer as fast as the enabled shortcuts allow.

        Args:
            messages (Sequence[ChatMessage]): Conversation payload; the last
                message is the one being answered.
            options (ServiceOptions): Request options.
            fast_options (Optional[FastResponseOptions]): Shortcut switches;
                defaults use the configured target as deadline.

        Returns:
            FastResponseResult: The response with its optimization report.
                ``stream`` is set (and ``content`` empty) when the streaming
                fallback answered.

        Raises:
            ResponseTimeoutError: If the deadline passed and no fallback is
                allowed.
            GenerationError: If generation failed and no fallback is allowed,
                or the fallback failed too.
        """
        fast_options = fast_options or FastResponseOptions(
            max_response_time=self.target_response_time
        )
        start = self._clock()
        optimizations: List[str] = []

        if fast_options.use_aggressive_caching:
            instant = self.check_instant_response(messages)
            if instant is not None:
                optimizations.append("instant-response")
                return self._finish(
                    FastResponseResult(
                        content=instant,
                        cached=True,
                        conversation_id=options.conversation_id,
                        message_id=_new_message_id(),
                        optimizations_used=optimizations,
                        from_cache=True,
                    ),
                    start,
                )

        cache_key = self.fast_cache_key(messages, options.model_id)
        if fast_options.use_aggressive_caching:
            cached = self.fast_cache.get(cache_key)
            if cached is not None:
                optimizations.append("aggressive-cache-hit")
                return self._finish(
                    cached.model_copy(
                        update={
                            "cached": True,
                            "conversation_id": options.conversation_id,
                            "message_id": _new_message_id(),
                            "optimizations_used": optimizations,
                            "from_cache": True,
                            "context_optimized": False,
                        }
                    ),
                    start,
                )

        try:
            result = await asyncio.wait_for(
                self._optimized_path(messages, options, fast_options, optimizations),
                timeout=fast_options.max_response_time,
            )
        except asyncio.TimeoutError:
            error: Exception = ResponseTimeoutError(fast_options.max_response_time)
            logger.warning("Fast response timed out after %.3fs", fast_options.max_response_time)
            return await self._fallback_or_raise(messages, options, fast_options, optimizations, error, start)
        except Exception as e:
            logger.warning("Fast response failed: %s", e)
            return await self._fallback_or_raise(messages, options, fast_options, optimizations, e, start)

        if fast_options.use_aggressive_caching and not result.from_cache:
            self.fast_cache.set(cache_key, result)
        return self._finish(result, start)

    async def _optimized_path(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
        fast_options: FastResponseOptions,
        optimizations: List[str],
    ) -> FastResponseResult:
        optimized: Sequence[ChatMessage] = messages
        context_optimized = False
        if fast_options.optimize_context_size:
            window = self.window_optimizer.optimize_for_speed(messages, options.model_id)
            optimized = window.messages
            context_optimized = window.compression_applied
            if context_optimized:
                optimizations.append("sliding-window-optimization")
                optimizations.append(f"removed-{window.removed_message_count}-messages")
                if window.summary_added:
                    optimizations.append("conversation-summary")

        fast_model_options = self.optimize_model_for_speed(options, fast_options)
        if fast_model_options.model_id != options.model_id:
            optimizations.append("fast-model-selection")

        response, strategy = await self._race(optimized, fast_model_options, fast_options)
        optimizations.append(strategy)
        return FastResponseResult(
            content=response.content,
            usage=response.usage,
            cached=response.cached,
            conversation_id=options.conversation_id,
            message_id=response.message_id,
            optimizations_used=list(optimizations),
            from_cache=response.cached,
            context_optimized=context_optimized,
        )

    async def _precomputed(self, content: str, options: ServiceOptions) -> AIResponse:
        return AIResponse(
            content=content,
            cached=True,
            conversation_id=options.conversation_id,
            message_id=_new_message_id(),
        )

    async def _race(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
        fast_options: FastResponseOptions,
    ) -> Tuple[AIResponse, str]:
        """First successful strategy wins; the others are cancelled.

        When several finish in the same step the precomputed answer is
        preferred.  A failure only propagates once every strategy failed.
        """
        strategies: Dict[asyncio.Task, str] = {
            asyncio.ensure_future(self._generate(messages, options)): "ai-service"
        }
        if fast_options.prefetch_common_responses:
            precomputed = self.precomputed_cache.get(self.precomputed_key(messages))
            if precomputed is not None:
                strategies[asyncio.ensure_future(self._precomputed(precomputed, options))] = "precomputed"

        pending = set(strategies)
        first_error: Optional[BaseException] = None
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                winners = [t for t in done if not t.cancelled() and t.exception() is None]
                for task in done:
                    if first_error is None and not task.cancelled() and task.exception() is not None:
                        first_error = task.exception()
                if winners:
                    winners.sort(key=lambda t: strategies[t] != "precomputed")
                    return winners[0].result(), strategies[winners[0]]
        finally:
            for task in pending:
                task.cancel()

        raise first_error or GenerationError("No response strategy succeeded")

    async def _fallback_or_raise(
        self,
        messages: Sequence[ChatMessage],
        options: ServiceOptions,
        fast_options: FastResponseOptions,
        optimizations: List[str],
        error: Exception,
        start: float,
    ) -> FastResponseResult:
        if not fast_options.use_streaming_fallback or self._streaming_fallback is None:
            if isinstance(error, GenerationError):
                raise error
            raise GenerationError(f"Fast response failed: {error}") from error

        optimizations.append("streaming-fallback")
        try:
            stream = await self._streaming_fallback(messages, options)
        except Exception as e:
            logger.error("Streaming fallback failed", exc_info=True)
            raise GenerationError(f"All fast response strategies failed: {e}") from e

        return self._finish(
            FastResponseResult(
                content="",
                cached=False,
                conversation_id=stream.conversation_id,
                message_id=stream.message_id,
                optimizations_used=optimizations,
                stream=stream,
            ),
            start,
        )

    def get_performance_stats(self) -> Dict[str, Any]:
        """Cache statistics, target and rolling average response time."""
        samples = list(self._response_times)
        average = sum(samples) / len(samples) if samples else 0.0
        if average > self.target_response_time:
            logger.warning(
                "Average fast response time above target: %.3fs > %.3fs",
                average,
                self.target_response_time,
            )
        return {
            "fast_cache": self.fast_cache.get_stats(),
            "precomputed_cache": self.precomputed_cache.get_stats(),
            "target_response_time": self.target_response_time,
            "average_response_time": average,
            "sample_count": len(samples),
        }

    def start(self) -> None:
        self.fast_cache.start()
        self.precomputed_cache.start()

    async def aclose(self) -> None:
        await self.fast_cache.aclose()
        await self.precomputed_cache.aclose()
