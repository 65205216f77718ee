# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Shared models for the application."""

import time
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """Message role enumeration.

    Attributes:
        USER (str): User role.
        ASSISTANT (str): Assistant role.
        SYSTEM (str): System role.
    """

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class UserType(str, Enum):
    """Account tier of the caller.

    Attributes:
        GUEST (str): Visitor without an account.
        REGULAR (str): Signed-in user.
    """

    GUEST = "guest"
    REGULAR = "regular"


class ContentPart(BaseModel):
    """One part of a multimodal message.

    Attributes:
        type (Literal["text", "image"]): Part discriminator.
        text (Optional[str]): Text body for ``text`` parts.
        image (Optional[str]): Image URL or data URI for ``image`` parts.
    """

    type: Literal["text", "image"] = "text"
    text: Optional[str] = None
    image: Optional[str] = None


class ChatMessage(BaseModel):
    """Message exchanged with a model backend.

    Attributes:
        role (MessageRole): The role of the message sender.
        content (Union[str, List[ContentPart], None]): Plain text or a list
            of multimodal parts.
    """

    role: MessageRole
    content: Union[str, List[ContentPart], None] = ""

    @property
    def text(self) -> str:
        """Plain-text view of the content; image parts are skipped."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return " ".join(part.text for part in self.content if part.type == "text" and part.text)

    @property
    def is_multimodal(self) -> bool:
        """Whether the content is a list of parts rather than a string."""
        return isinstance(self.content, list)


class ConversationMessage(ChatMessage):
    """Message stored in a conversation context.

    Attributes:
        id (str): Message identifier.
        timestamp (float): Wall-clock time the message was added.
        token_count (int): Estimated tokens, including role overhead.
    """

    id: str
    timestamp: float = Field(default_factory=time.time)
    token_count: int = 0

    def to_chat_message(self) -> ChatMessage:
        """Strip bookkeeping fields for a backend request."""
        return ChatMessage(role=self.role, content=self.content)


class ConversationContext(BaseModel):
    """Per-conversation history and token accounting.

    ``total_tokens`` is the sum of the messages' ``token_count`` plus the
    estimated tokens of ``summary`` when one exists.

    Attributes:
        id (str): Conversation identifier.
        user_id (str): Owner of the conversation.
        messages (List[ConversationMessage]): Ordered history.
        total_tokens (int): Current token total.
        created_at (float): Creation time.
        updated_at (float): Last mutation time.
        summary (Optional[str]): Accumulated summary of collapsed messages.
        model_id (Optional[str]): Model the conversation was started with.
    """

    id: str
    user_id: str
    messages: List[ConversationMessage] = Field(default_factory=list)
    total_tokens: int = 0
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    summary: Optional[str] = None
    model_id: Optional[str] = None


class Usage(BaseModel):
    """Token usage reported by a backend.

    Attributes:
        prompt_tokens (int): Input tokens.
        completion_tokens (int): Output tokens.
        total_tokens (int): Sum of both.
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ServiceOptions(BaseModel):
    """Per-request options of the runtime service.

    Attributes:
        model_id (str): Requested model.
        user_id (str): Caller identity (rate limiting key).
        conversation_id (str): Conversation to read and extend.
        user_type (UserType): Caller tier (limits and entitlements).
        use_cache (bool): Whether the response cache may be used.
        cache_ttl (Optional[float]): Per-request response cache TTL.
        temperature (Optional[float]): Sampling temperature override.
        max_tokens (Optional[int]): Response token cap override.
        metadata (Dict[str, Any]): Free-form request metadata.
    """

    model_id: str
    user_id: str
    conversation_id: str
    user_type: UserType = UserType.GUEST
    use_cache: bool = True
    cache_ttl: Optional[float] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AIResponse(BaseModel):
    """Complete (non-streamed) response.

    Attributes:
        content (str): Generated text.
        usage (Optional[Usage]): Backend token usage, when reported.
        cached (bool): Whether the text was served from a cache.
        conversation_id (str): Conversation the response belongs to.
        message_id (str): Identifier of the stored assistant message.
    """

    content: str
    usage: Optional[Usage] = None
    cached: bool = False
    conversation_id: str
    message_id: str


class FastResponseResult(AIResponse):
    """Response of the fast path with its optimization report.

    Attributes:
        response_time (float): Measured seconds from request start.
        optimizations_used (List[str]): Shortcuts that were applied.
        from_cache (bool): Whether the content came from a cache or table.
        context_optimized (bool): Whether the context was compressed.
        stream (Optional[Any]): ``StreamingResult`` when the response fell
            back to streaming; ``content`` is empty in that case.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    response_time: float = 0.0
    optimizations_used: List[str] = Field(default_factory=list)
    from_cache: bool = False
    context_optimized: bool = False
    stream: Optional[Any] = Field(default=None, exclude=True)


class ChatRequest(BaseModel):
    """HTTP request body for the chat endpoints.

    Attributes:
        messages (List[ChatMessage]): Inbound messages; the last one is
            appended to the conversation.
        model_id (str): Requested model.
        user_id (str): Caller identity.
        conversation_id (str): Conversation identifier.
        user_type (UserType): Caller tier.
        use_cache (bool): Whether caches may be used.
        temperature (Optional[float]): Sampling temperature override.
        max_tokens (Optional[int]): Response token cap override.
    """

    messages: List[ChatMessage]
    model_id: str
    user_id: str
    conversation_id: str
    user_type: UserType = UserType.GUEST
    use_cache: bool = True
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_options(self) -> ServiceOptions:
        """Build service options from the request body."""
        return ServiceOptions(
            model_id=self.model_id,
            user_id=self.user_id,
            conversation_id=self.conversation_id,
            user_type=self.user_type,
            use_cache=self.use_cache,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
