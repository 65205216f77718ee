# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Low-latency streaming.

A pump task reads the backend token stream into a queue, regrouping tokens
into chunks (first token immediately, then every ``buffer_size`` tokens or at
sentence punctuation).  ``generate_streaming_response`` waits for the first
chunk before returning so setup failures surface to the caller and the
reported first-token latency is measured, not estimated.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    Sequence,
    Union,
)

from chat_runtime.exceptions import GenerationError
from chat_runtime.models import ChatMessage, UserType
from chat_runtime.services.backend import GenerationParams, LLMBackend
from chat_runtime.services.context.sliding_window import SlidingWindowOptimizer
from chat_runtime.services.phrases import STREAM_INSTANT_PHRASES, match_phrase

logger = logging.getLogger(__name__)

STREAM_TEMPERATURE = 0.3
STREAM_MAX_TOKENS = 1024
LATENCY_SAMPLES = 100
SENTENCE_END = (".", "!", "?")
INSTANT_MODEL = "instant"

FAST_MODELS: Dict[UserType, str] = {
    UserType.GUEST: "phi-3-mini-128k-instruct",
    UserType.REGULAR: "llama-3.1-8b-instant",
}

CompletionCallback = Callable[[str], Union[None, Awaitable[None]]]

_END = object()


@dataclass
class StreamingOptions:
    """Streaming behaviour.

    Attributes:
        max_latency (float): First-token latency target in seconds; slower
            streams are logged.
        buffer_size (int): Tokens grouped into one chunk.
        prioritize_first_token (bool): Flush the first token on its own.
        use_fast_model (bool): Swap in the tier's fast model.
        instant_word_delay (float): Delay between words of a canned stream.
        instant_max_chars (int): Longest message eligible for a canned stream.
        allow_instant (bool): Serve canned streams for instant phrases.
        optimize_context (bool): Compress the payload with the speed profile.
    """

    max_latency: float = 0.5
    buffer_size: int = 3
    prioritize_first_token: bool = True
    use_fast_model: bool = False
    instant_word_delay: float = 0.1
    instant_max_chars: int = 40
    allow_instant: bool = True
    optimize_context: bool = True


@dataclass
class StreamChunk:
    """One flushed piece of a stream.

    Attributes:
        content (str): Text of the chunk; empty on the completion chunk.
        timestamp (float): Clock reading when the chunk was flushed.
        is_complete (bool): Whether this is the final chunk.
        token_count (int): Tokens received so far.
        latency (Optional[float]): Seconds from request start; first chunk
            only.
    """

    content: str
    timestamp: float
    is_complete: bool = False
    token_count: int = 0
    latency: Optional[float] = None


@dataclass
class StreamingResult:
    """Handle of a started stream.

    Attributes:
        stream (AsyncIterator[StreamChunk]): Chunk iterator, ending with an
            ``is_complete`` chunk.
        stream_id (str): Identifier accepted by ``cancel_stream``.
        first_token_latency (float): Seconds until the first chunk.
        conversation_id (str): Conversation the stream answers.
        message_id (str): Identifier of the assistant message.
        model_id (str): Model producing the stream (``"instant"`` for
            canned replies).
    """

    stream: AsyncIterator[StreamChunk]
    stream_id: str
    first_token_latency: float
    conversation_id: str
    message_id: str
    model_id: str
    optimizations_used: List[str] = field(default_factory=list)


def select_fast_model(model_id: str, user_type: Union[UserType, str]) -> str:
    """Fast model of the tier, or ``model_id`` for unknown tiers."""
    try:
        return FAST_MODELS.get(UserType(user_type), model_id)
    except ValueError:
        return model_id


async def _words(text: str, delay: float) -> AsyncIterator[str]:
    for index, word in enumerate(text.split(" ")):
        if index:
            await asyncio.sleep(delay)
            yield f" {word}"
        else:
            yield word


class StreamingOptimizer:
    """Starts, tracks and cancels low-latency streams."""

    def __init__(
        self,
        backend: LLMBackend,
        window_optimizer: Optional[SlidingWindowOptimizer] = None,
        options: Optional[StreamingOptions] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.window_optimizer = window_optimizer or SlidingWindowOptimizer()
        self.options = options or StreamingOptions()
        self._clock = clock
        self._active: Dict[str, asyncio.Task] = {}
        self._latencies: Dict[str, Deque[float]] = {}

    @property
    def active_stream_count(self) -> int:
        return len(self._active)

    async def generate_streaming_response(
        self,
        messages: Sequence[ChatMessage],
        model_id: str,
        conversation_id: str,
        user_type: Union[UserType, str] = UserType.GUEST,
        options: Optional[StreamingOptions] = None,
        message_id: Optional[str] = None,
        on_complete: Optional[CompletionCallback] = None,
        params: Optional[GenerationParams] = None,
    ) -> StreamingResult:
        """Start a stream and wait for its first chunk.

        Args:
            messages (Sequence[ChatMessage]): Request payload.
            model_id (str): Requested model.
            conversation_id (str): Conversation being answered.
            user_type (Union[UserType, str]): Caller tier, used for the fast
                model swap.
            options (Optional[StreamingOptions]): Overrides the defaults.
            message_id (Optional[str]): Identifier of the assistant message;
                generated if None.
            on_complete (Optional[CompletionCallback]): Called (or awaited)
                with the full text before the completion chunk is emitted.
            params (Optional[GenerationParams]): Sampling parameters;
                temperature 0.3 and 1024 max tokens if None.

        Returns:
            StreamingResult: Handle whose iterator starts with the first
                chunk.

        Raises:
            GenerationError: If the stream fails before its first chunk.
        """
        options = options or self.options
        start = self._clock()
        stream_id = f"stream_{uuid.uuid4().hex[:12]}"
        message_id = message_id or str(uuid.uuid4())
        optimizations: List[str] = []

        instant_reply = None
        if options.allow_instant and messages and not messages[-1].is_multimodal:
            instant_reply = match_phrase(
                messages[-1].text, STREAM_INSTANT_PHRASES, options.instant_max_chars
            )

        if instant_reply is not None:
            model_used = INSTANT_MODEL
            source = _words(instant_reply, options.instant_word_delay)
            pump_options = replace(options, buffer_size=1)
            optimizations.append("instant-stream")
        else:
            payload = list(messages)
            if options.optimize_context:
                window = self.window_optimizer.optimize_for_speed(payload, model_id)
                payload = window.messages
                if window.compression_applied:
                    optimizations.append("sliding-window-optimization")
                    logger.info(
                        "Stream context compressed: %d messages removed, summary=%s",
                        window.removed_message_count,
                        window.summary_added,
                    )
            model_used = select_fast_model(model_id, user_type) if options.use_fast_model else model_id
            if model_used != model_id:
                optimizations.append("fast-model-selection")
            source = self.backend.stream(
                model_used,
                payload,
                params or GenerationParams(temperature=STREAM_TEMPERATURE, max_tokens=STREAM_MAX_TOKENS),
            )
            pump_options = options

        queue: asyncio.Queue = asyncio.Queue()
        pump = asyncio.create_task(self._pump(source, queue, pump_options, start, on_complete))
        self._active[stream_id] = pump
        pump.add_done_callback(lambda _: self._active.pop(stream_id, None))

        try:
            first = await queue.get()
        except asyncio.CancelledError:
            self._finish(stream_id)
            raise
        if first is _END:
            self._finish(stream_id)
            raise GenerationError(f"Stream {stream_id} was cancelled before its first token")
        if isinstance(first, BaseException):
            self._finish(stream_id)
            if isinstance(first, GenerationError):
                raise first
            raise GenerationError(f"Streaming failed: {first}") from first

        latency = first.latency if first.latency is not None else self._clock() - start
        if model_used != INSTANT_MODEL:
            self._record_latency(model_used, latency)
            if latency > options.max_latency:
                logger.warning(
                    "Slow first token for %s: %.3fs (target %.3fs)",
                    model_used,
                    latency,
                    options.max_latency,
                )

        return StreamingResult(
            stream=self._iterate(stream_id, first, queue),
            stream_id=stream_id,
            first_token_latency=latency,
            conversation_id=conversation_id,
            message_id=message_id,
            model_id=model_used,
            optimizations_used=optimizations,
        )

    async def _pump(
        self,
        source: AsyncIterator[str],
        queue: asyncio.Queue,
        options: StreamingOptions,
        start: float,
        on_complete: Optional[CompletionCallback],
    ) -> None:
        """Regroup source tokens into chunks on ``queue``."""
        buffer: List[str] = []
        parts: List[str] = []
        token_count = 0
        flushed = 0

        def flush() -> None:
            nonlocal buffer, flushed
            now = self._clock()
            queue.put_nowait(
                StreamChunk(
                    content="".join(buffer),
                    timestamp=now,
                    token_count=token_count,
                    latency=now - start if flushed == 0 else None,
                )
            )
            buffer = []
            flushed += 1

        try:
            async for token in source:
                token_count += 1
                parts.append(token)
                buffer.append(token)
                if (
                    (flushed == 0 and options.prioritize_first_token)
                    or len(buffer) >= options.buffer_size
                    or any(mark in token for mark in SENTENCE_END)
                ):
                    flush()
            if buffer:
                flush()

            if on_complete is not None:
                outcome = on_complete("".join(parts))
                if inspect.isawaitable(outcome):
                    await outcome

            now = self._clock()
            queue.put_nowait(
                StreamChunk(
                    content="",
                    timestamp=now,
                    is_complete=True,
                    token_count=token_count,
                    latency=now - start if flushed == 0 else None,
                )
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Stream pump failed", exc_info=True)
            queue.put_nowait(e)
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()
            queue.put_nowait(_END)

    async def _iterate(
        self,
        stream_id: str,
        first: Any,
        queue: asyncio.Queue,
    ) -> AsyncIterator[StreamChunk]:
        try:
            item = first
            while item is not _END:
                if isinstance(item, GenerationError):
                    raise item
                if isinstance(item, BaseException):
                    raise GenerationError(f"Streaming failed: {item}") from item
                yield item
                item = await queue.get()
        finally:
            self._finish(stream_id)

    def _finish(self, stream_id: str) -> None:
        task = self._active.pop(stream_id, None)
        if task is not None and not task.done():
            task.cancel()

    def _record_latency(self, model_id: str, latency: float) -> None:
        samples = self._latencies.get(model_id)
        if samples is None:
            samples = deque(maxlen=LATENCY_SAMPLES)
            self._latencies[model_id] = samples
        samples.append(latency)

    def cancel_stream(self, stream_id: str) -> bool:
        """Abort a stream. Returns False if the id is unknown or finished."""
        task = self._active.pop(stream_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info("Cancelled stream %s", stream_id)
        return True

    def get_performance_stats(self) -> Dict[str, Any]:
        """First-token latency per model, in seconds."""
        model_stats = {
            model_id: {
                "average_first_token_latency": round(sum(samples) / len(samples), 3),
                "min_latency": round(min(samples), 3),
                "max_latency": round(max(samples), 3),
                "sample_count": len(samples),
            }
            for model_id, samples in self._latencies.items()
            if samples
        }
        return {
            "model_stats": model_stats,
            "active_streams": len(self._active),
            "target_latency": self.options.max_latency,
        }

    async def aclose(self) -> None:
        """Cancel every active stream and drop latency samples."""
        tasks = list(self._active.values())
        self._active.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._latencies.clear()


async def consume_stream(
    stream: AsyncIterator[StreamChunk],
    on_chunk: Callable[[StreamChunk], None],
    on_complete: Optional[Callable[[int], None]] = None,
    on_error: Optional[Callable[[Exception], None]] = None,
) -> None:
    """Drive a chunk iterator through callbacks.

    Args:
        stream (AsyncIterator[StreamChunk]): Iterator to drain.
        on_chunk (Callable[[StreamChunk], None]): Called for every chunk.
        on_complete (Optional[Callable[[int], None]]): Called with the final
            token count on the completion chunk.
        on_error (Optional[Callable[[Exception], None]]): Receives a stream
            failure; the failure is re-raised when None.
    """
    try:
        async for chunk in stream:
            on_chunk(chunk)
            if chunk.is_complete and on_complete is not None:
                on_complete(chunk.token_count)
    except Exception as e:
        if on_error is None:
            raise
        on_error(e)
