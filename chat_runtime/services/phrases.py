# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Canned replies served without a backend call.
"""

from __future__ import annotations

import re
from typing import Dict, Optional, Sequence, Tuple

# (trigger, reply), checked in order
COMMON_PROMPTS: Tuple[Tuple[str, str], ...] = (
    ("hello", "Hello! How can I help you today?"),
    ("hi", "Hi there! What can I do for you?"),
    ("help", "I'm here to help! What do you need assistance with?"),
    ("thanks", "You're welcome! Is there anything else I can help you with?"),
    ("goodbye", "Goodbye! Have a great day!"),
)

STREAM_INSTANT_PHRASES: Tuple[Tuple[str, str], ...] = (
    ("hello", "Hello! How can I help you today?"),
    ("hi", "Hi there! What can I do for you?"),
    ("help", "I'm here to help! What do you need assistance with?"),
    ("thanks", "You're welcome! Anything else I can help with?"),
    ("test", "Test successful! I'm working perfectly."),
)

# Exact matches for messages shorter than QUICK_REPLY_MAX_CHARS
QUICK_REPLIES: Dict[str, str] = {
    "yes": "Great! How can I help you further?",
    "no": "I understand. Is there something else I can help with?",
    "ok": "Perfect! What would you like to do next?",
    "sure": "Excellent! Let me know how I can assist you.",
}
QUICK_REPLY_MAX_CHARS = 10

PREWARM_QUESTIONS: Tuple[str, ...] = (
    "What can you help me with?",
    "How are you?",
    "What is your name?",
    "Can you help me write an email?",
    "What is the weather like?",
)

# (substring, answer), checked in order
_QUICK_ANSWERS: Tuple[Tuple[str, str], ...] = (
    (
        "help",
        "I can help you with writing, answering questions, analysis, coding, and much "
        "more! What specifically would you like assistance with?",
    ),
    (
        "how are you",
        "I'm doing well, thank you for asking! I'm here and ready to help you with "
        "whatever you need.",
    ),
    (
        "name",
        "I'm an AI assistant. You can call me whatever you'd like! How can I help you "
        "today?",
    ),
    (
        "email",
        "I'd be happy to help you write an email! Please tell me what type of email you "
        "need to write and any specific details you'd like to include.",
    ),
    (
        "weather",
        "I don't have access to real-time weather data, but I can help you find weather "
        "information or discuss weather-related topics. What would you like to know?",
    ),
)
_DEFAULT_QUICK_ANSWER = (
    "I'm here to help! Could you please provide more details about what you need "
    "assistance with?"
)

_PATTERNS: Dict[str, "re.Pattern[str]"] = {}


def _word_pattern(trigger: str) -> "re.Pattern[str]":
    pattern = _PATTERNS.get(trigger)
    if pattern is None:
        pattern = re.compile(rf"\b{re.escape(trigger)}\b")
        _PATTERNS[trigger] = pattern
    return pattern


def match_phrase(
    text: str,
    phrases: Sequence[Tuple[str, str]],
    max_chars: int,
) -> Optional[str]:
    """Reply of the first trigger occurring as a whole word in ``text``.

    Only messages of at most ``max_chars`` characters (after stripping) are
    eligible, so longer requests that merely mention a trigger reach the
    model.

    Args:
        text (str): Raw message text.
        phrases (Sequence[Tuple[str, str]]): ``(trigger, reply)`` pairs.
        max_chars (int): Longest eligible message.

    Returns:
        Optional[str]: The canned reply, or None.
    """
    content = text.lower().strip()
    if not content or len(content) > max_chars:
        return None
    for trigger, reply in phrases:
        if _word_pattern(trigger).search(content):
            return reply
    return None


def match_quick_reply(text: str) -> Optional[str]:
    """Reply to a bare yes/no/ok/sure."""
    content = text.lower().strip()
    if len(content) >= QUICK_REPLY_MAX_CHARS:
        return None
    return QUICK_REPLIES.get(content)


def quick_answer(question: str) -> str:
    """Canned answer used to prewarm the precomputed cache."""
    lowered = question.lower()
    for needle, answer in _QUICK_ANSWERS:
        if needle in lowered:
            return answer
    return _DEFAULT_QUICK_ANSWER
