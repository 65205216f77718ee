# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
HTTP endpoints of the chat runtime.

Streams are sent as server-sent events:

    data: {"type": "stream.created", ...}
    data: {"type": "stream.delta", "delta": "..."}
    data: {"type": "stream.completed", "token_count": N}
    data: [DONE]
"""

import json
import logging
import math
import time
from typing import Any, AsyncIterator, Dict, Union

from chat_runtime.exceptions import (
    ContextNotFoundError,
    EntitlementDenied,
    GenerationError,
    RateLimitExceeded,
)
from chat_runtime.models import AIResponse, ChatRequest, ConversationContext, UserType
from chat_runtime.services.runtime_service import RuntimeService
from chat_runtime.services.streaming import StreamingResult
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

logger = logging.getLogger(__name__)

router = APIRouter()

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_runtime(request: Request) -> RuntimeService:
    """Runtime service created by the application lifespan."""
    return request.app.state.runtime


def _sse_event(event: dict) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(event)}\n\n"


def _sse_done() -> str:
    """Return the SSE stream terminator."""
    return "data: [DONE]\n\n"


async def _stream_events(result: StreamingResult) -> AsyncIterator[str]:
    """Async generator yielding SSE-formatted event strings."""
    yield _sse_event({
        "type": "stream.created",
        "stream_id": result.stream_id,
        "conversation_id": result.conversation_id,
        "message_id": result.message_id,
        "model_id": result.model_id,
        "first_token_latency": result.first_token_latency,
        "optimizations_used": result.optimizations_used,
    })
    try:
        async for chunk in result.stream:
            if chunk.is_complete:
                yield _sse_event({"type": "stream.completed", "token_count": chunk.token_count})
            elif chunk.content:
                yield _sse_event({"type": "stream.delta", "delta": chunk.content})
    except GenerationError as e:
        logger.warning("Stream %s failed: %s", result.stream_id, e)
        yield _sse_event({"type": "stream.failed", "message": str(e)})
    yield _sse_done()


def _sse_response(result: StreamingResult) -> StreamingResponse:
    return StreamingResponse(
        _stream_events(result),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@router.post("/chat", response_model=AIResponse)
async def chat(request: ChatRequest, runtime: RuntimeService = Depends(get_runtime)) -> AIResponse:
    """Complete response with conversation context and response caching."""
    return await runtime.generate_response(request.messages, request.to_options())


@router.post("/chat/fast", response_model=None)
async def chat_fast(
    request: ChatRequest,
    runtime: RuntimeService = Depends(get_runtime),
) -> Union[Dict[str, Any], StreamingResponse]:
    """Fast response; answers with an SSE stream when the fast path fell back."""
    result = await runtime.generate_fast_response(request.messages, request.to_options())
    if result.stream is not None:
        return _sse_response(result.stream)
    return result.model_dump(mode="json")


@router.post("/chat/stream")
async def chat_stream(
    request: ChatRequest,
    runtime: RuntimeService = Depends(get_runtime),
) -> StreamingResponse:
    result = await runtime.generate_streaming_response(request.messages, request.to_options())
    return _sse_response(result)


@router.post("/chat/fast-stream")
async def chat_fast_stream(
    request: ChatRequest,
    runtime: RuntimeService = Depends(get_runtime),
) -> StreamingResponse:
    result = await runtime.generate_fast_streaming_response(
        request.messages, request.to_options()
    )
    return _sse_response(result)


@router.delete("/streams/{stream_id}")
async def cancel_stream(stream_id: str, runtime: RuntimeService = Depends(get_runtime)) -> dict:
    return {"stream_id": stream_id, "cancelled": runtime.cancel_stream(stream_id)}


@router.get("/stats")
async def stats(runtime: RuntimeService = Depends(get_runtime)) -> dict:
    return runtime.get_stats()


@router.get("/users/{user_id}/status")
async def user_status(
    user_id: str,
    user_type: UserType = UserType.GUEST,
    runtime: RuntimeService = Depends(get_runtime),
) -> dict:
    return runtime.get_user_status(user_id, user_type)


@router.delete("/users/{user_id}/limits")
async def clear_user_limits(user_id: str, runtime: RuntimeService = Depends(get_runtime)) -> dict:
    runtime.clear_user_limits(user_id)
    return {"user_id": user_id, "cleared": True}


@router.get("/conversations/{conversation_id}", response_model=ConversationContext)
async def get_conversation(
    conversation_id: str,
    runtime: RuntimeService = Depends(get_runtime),
) -> ConversationContext:
    context = runtime.get_conversation(conversation_id)
    if context is None:
        raise ContextNotFoundError(conversation_id)
    return context


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    runtime: RuntimeService = Depends(get_runtime),
) -> dict:
    if not runtime.delete_conversation(conversation_id):
        raise ContextNotFoundError(conversation_id)
    return {"conversation_id": conversation_id, "deleted": True}


@router.post("/cleanup")
async def cleanup(runtime: RuntimeService = Depends(get_runtime)) -> dict:
    return {"removed": runtime.cleanup()}


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    headers = {}
    if exc.reset_time is not None:
        headers["Retry-After"] = str(max(0, math.ceil(exc.reset_time - time.time())))
    return JSONResponse(
        status_code=429,
        content={"error": "rate_limit_exceeded", "message": exc.reason, "reset_time": exc.reset_time},
        headers=headers,
    )


async def _entitlement_handler(request: Request, exc: EntitlementDenied) -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={
            "error": "model_not_available",
            "message": str(exc),
            "available_models": exc.allowed_model_ids,
        },
    )


async def _not_found_handler(request: Request, exc: ContextNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "conversation_not_found", "message": str(exc)},
    )


async def _generation_handler(request: Request, exc: GenerationError) -> JSONResponse:
    logger.error("Generation failed: %s", exc)
    return JSONResponse(
        status_code=502,
        content={"error": "generation_failed", "message": str(exc)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map runtime exceptions to HTTP responses."""
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_exception_handler(EntitlementDenied, _entitlement_handler)
    app.add_exception_handler(ContextNotFoundError, _not_found_handler)
    app.add_exception_handler(GenerationError, _generation_handler)
