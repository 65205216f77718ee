# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
LLM backend boundary.

The runtime only needs two operations from a model provider: a complete
generation and a token stream.  ``LangChainBackend`` implements both on top
of LangChain chat models (Gemini ids -> ChatGoogleGenerativeAI, everything
else -> ChatOpenAI) and retries transient provider errors with exponential
backoff.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Tuple

from chat_runtime.config import Settings
from chat_runtime.exceptions import GenerationError
from chat_runtime.models import ChatMessage, MessageRole, Usage
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationParams:
    """Sampling parameters of one backend call.

    Attributes:
        temperature (float): Sampling temperature.
        max_tokens (int): Response token cap.
    """

    temperature: float = 0.7
    max_tokens: int = 2048


@dataclass
class GenerationResult:
    """Complete generation.

    Attributes:
        text (str): Generated text.
        usage (Optional[Usage]): Token usage when the provider reports it.
    """

    text: str
    usage: Optional[Usage] = None


class LLMBackend(Protocol):
    """Opaque model provider keyed by model id."""

    async def generate(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
    ) -> GenerationResult:
        ...

    def stream(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
    ) -> AsyncIterator[str]:
        ...


def create_llm(model_id: str, params: GenerationParams, settings: Settings) -> BaseChatModel:
    """Create a LangChain chat model for ``model_id``.

    Args:
        model_id (str): Provider model name.
        params (GenerationParams): Sampling parameters baked into the model.
        settings (Settings): Provider credentials.

    Returns:
        BaseChatModel: ``ChatGoogleGenerativeAI`` for Gemini ids, otherwise
            ``ChatOpenAI``.
    """
    if model_id.startswith("gemini"):
        return ChatGoogleGenerativeAI(
            model=model_id,
            google_api_key=settings.GOOGLE_API_KEY or None,
            temperature=params.temperature,
            max_output_tokens=params.max_tokens,
        )
    return ChatOpenAI(
        api_key=SecretStr(settings.OPENAI_API_KEY),
        base_url=settings.OPENAI_BASE_URL or None,
        model=model_id,
        temperature=params.temperature,
        max_completion_tokens=params.max_tokens,
    )


def _is_retryable_error(error: Exception) -> bool:
    """Check whether a provider error is transient and worth retrying.

    Covers server errors (5xx), rate limits (429), and other transient
    provider-side availability failures.

    Args:
        error (Exception): The exception to inspect.

    Returns:
        bool: True if the error is likely transient.
    """
    msg = str(error).lower()
    retryable_patterns = (
        "500",
        "502",
        "503",
        "504",
        "529",
        "rate limit",
        "rate_limit",
        "429",
        "overloaded",
        "temporarily unavailable",
        "internal server error",
        "service unavailable",
        "resource exhausted",
        "resource_exhausted",
        "deadline exceeded",
    )
    return any(s in msg for s in retryable_patterns)


def _to_lc_content(message: ChatMessage) -> Any:
    if message.content is None:
        return ""
    if isinstance(message.content, str):
        return message.content
    parts: List[Dict[str, Any]] = []
    for part in message.content:
        if part.type == "image" and part.image:
            parts.append({"type": "image_url", "image_url": {"url": part.image}})
        elif part.text:
            parts.append({"type": "text", "text": part.text})
    return parts


def _to_lc_message(message: ChatMessage) -> BaseMessage:
    """Convert a runtime message to a LangChain message."""
    content = _to_lc_content(message)
    if message.role == MessageRole.SYSTEM:
        return SystemMessage(content=content)
    if message.role == MessageRole.ASSISTANT:
        return AIMessage(content=content)
    return HumanMessage(content=content)


def _extract_text(content: Any) -> str:
    """Extract plain text from LLM response content."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            item if isinstance(item, str) else item.get("text", "")
            for item in content
            if isinstance(item, (str, dict))
        )
    return str(content)


def _extract_usage(response: Any) -> Optional[Usage]:
    meta = getattr(response, "usage_metadata", None)
    if not meta:
        return None
    return Usage(
        prompt_tokens=meta.get("input_tokens", 0),
        completion_tokens=meta.get("output_tokens", 0),
        total_tokens=meta.get("total_tokens", 0),
    )


class LangChainBackend:
    """``LLMBackend`` over LangChain chat models."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._models: Dict[Tuple[str, GenerationParams], BaseChatModel] = {}

    def _get_llm(self, model: str, params: GenerationParams) -> BaseChatModel:
        key = (model, params)
        llm = self._models.get(key)
        if llm is None:
            llm = create_llm(model, params, self.settings)
            self._models[key] = llm
        return llm

    def _retry_delay(self, attempt: int) -> float:
        return self.settings.LLM_RETRY_BASE_DELAY * (2 ** (attempt - 1))

    async def generate(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
    ) -> GenerationResult:
        """Single LLM call with transient error retry.

        Args:
            model (str): Model id.
            messages (Sequence[ChatMessage]): Request payload.
            params (GenerationParams): Sampling parameters.

        Returns:
            GenerationResult: Text and usage of the response.

        Raises:
            GenerationError: If the call fails with a non-retryable error or
                retries are exhausted.
        """
        llm = self._get_llm(model, params)
        lc_messages = [_to_lc_message(m) for m in messages]
        retries = 0
        while True:
            try:
                response = await llm.ainvoke(lc_messages)
                return GenerationResult(
                    text=_extract_text(response.content),
                    usage=_extract_usage(response),
                )
            except Exception as e:
                if _is_retryable_error(e) and retries < self.settings.MAX_LLM_RETRIES:
                    retries += 1
                    delay = self._retry_delay(retries)
                    logger.warning(
                        "Retryable LLM error (attempt %d/%d), retrying in %.1fs: %s",
                        retries,
                        self.settings.MAX_LLM_RETRIES,
                        delay,
                        e,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error("LLM generation failed for %s", model, exc_info=True)
                raise GenerationError(f"Generation failed for model {model}: {e}") from e

    async def stream(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
    ) -> AsyncIterator[str]:
        """Stream text deltas.

        Transient errors are retried only until the first delta has been
        yielded.

        Yields:
            str: Incremental response text.

        Raises:
            GenerationError: If the stream fails.
        """
        llm = self._get_llm(model, params)
        lc_messages = [_to_lc_message(m) for m in messages]
        retries = 0
        while True:
            started = False
            try:
                async for chunk in llm.astream(lc_messages):
                    text = _extract_text(chunk.content)
                    if text:
                        started = True
                        yield text
                return
            except Exception as e:
                if not started and _is_retryable_error(e) and retries < self.settings.MAX_LLM_RETRIES:
                    retries += 1
                    delay = self._retry_delay(retries)
                    logger.warning(
                        "Retryable LLM stream error (attempt %d/%d), retrying in %.1fs: %s",
                        retries,
                        self.settings.MAX_LLM_RETRIES,
                        delay,
                        e,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error("LLM stream failed for %s", model, exc_info=True)
                raise GenerationError(f"Stream failed for model {model}: {e}") from e
