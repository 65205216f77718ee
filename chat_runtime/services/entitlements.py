# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Static plan tables: per-tier entitlements and request rate limits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple, Union

from chat_runtime.exceptions import EntitlementDenied
from chat_runtime.models import UserType


@dataclass(frozen=True)
class Entitlements:
    """What a user tier may consume.

    Attributes:
        max_messages_per_day (int): Daily accepted-request cap.
        available_model_ids (Tuple[str, ...]): Models the tier may request.
    """

    max_messages_per_day: int
    available_model_ids: Tuple[str, ...]


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-window request limits of a user tier.

    Attributes:
        requests_per_second (int): Requests allowed in any 1 s window.
        requests_per_minute (int): Requests allowed in any 60 s window.
        requests_per_hour (int): Requests allowed in any 3600 s window.
    """

    requests_per_second: int
    requests_per_minute: int
    requests_per_hour: int


_SHARED_MODELS: Tuple[str, ...] = (
    "chat-model",
    "chat-model-reasoning",
    # Google Gemini
    "gemini-2.5-flash-preview-04-17",
    "gemini-2.5-pro-preview-05-06",
    "gemini-2.0-flash",
    "gemini-2.0-flash-lite-preview-02-05",
    "gemini-1.5-pro-001",
    "gemini-1.5-pro-002",
    "gemini-1.5-flash-001",
    "gemini-1.5-flash-002",
    # Groq
    "llama-4-scout-17b-16e-instruct",
    "llama-3.1-8b-instant",
    "qwen-qwq-32b",
    "deepseek-r1-distill-llama-70b",
    "phi-3-mini-128k-instruct",
)

ENTITLEMENTS_BY_USER_TYPE: Dict[UserType, Entitlements] = {
    # Users without an account
    UserType.GUEST: Entitlements(
        max_messages_per_day=20,
        available_model_ids=_SHARED_MODELS,
    ),
    # Users with an account
    UserType.REGULAR: Entitlements(
        max_messages_per_day=200,
        available_model_ids=_SHARED_MODELS + (
            "gemini-2.0-flash-thinking-exp-01-21",
            "gemini-2.0-flash-thinking-exp-1219",
            "gemini-1.5-flash-8b-001",
            "gemini-1.5-flash-8b-exp-0924",
            "gemma-3-27b-it",
        ),
    ),
}

DEFAULT_RATE_LIMITS = RateLimitConfig(
    requests_per_second=1,
    requests_per_minute=10,
    requests_per_hour=100,
)

RATE_LIMITS_BY_USER_TYPE: Dict[UserType, RateLimitConfig] = {
    UserType.GUEST: RateLimitConfig(
        requests_per_second=1,
        requests_per_minute=6,
        requests_per_hour=30,
    ),
    UserType.REGULAR: RateLimitConfig(
        requests_per_second=2,
        requests_per_minute=20,
        requests_per_hour=200,
    ),
}


def _as_user_type(user_type: Union[UserType, str]) -> Union[UserType, str]:
    try:
        return UserType(user_type)
    except ValueError:
        return user_type


def get_entitlements(user_type: Union[UserType, str]) -> Entitlements:
    """Entitlements of a tier; unknown tiers get the guest plan."""
    return ENTITLEMENTS_BY_USER_TYPE.get(
        _as_user_type(user_type), ENTITLEMENTS_BY_USER_TYPE[UserType.GUEST]
    )


def get_rate_limits(user_type: Union[UserType, str]) -> RateLimitConfig:
    """Rate limits of a tier; unknown tiers get ``DEFAULT_RATE_LIMITS``."""
    return RATE_LIMITS_BY_USER_TYPE.get(_as_user_type(user_type), DEFAULT_RATE_LIMITS)


def check_model_entitlement(model_id: str, user_type: Union[UserType, str]) -> None:
    """Reject a model outside the tier's allow-list.

    Args:
        model_id (str): Requested model.
        user_type (Union[UserType, str]): Caller tier.

    Raises:
        EntitlementDenied: If ``model_id`` is not available to the tier.
    """
    entitlements = get_entitlements(user_type)
    if model_id not in entitlements.available_model_ids:
        label = user_type.value if isinstance(user_type, UserType) else str(user_type)
        raise EntitlementDenied(model_id, label, list(entitlements.available_model_ids))
