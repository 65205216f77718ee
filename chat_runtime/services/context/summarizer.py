# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Heuristic conversation summaries.

Collapses older messages into a short extractive summary without calling a
model: message count, a few user questions and the opening sentences of
assistant replies.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from chat_runtime.models import ChatMessage, MessageRole

MAX_USER_QUESTIONS = 3
MAX_ASSISTANT_SENTENCES = 2
MIN_QUESTION_CHARS = 20
QUESTION_TRUNCATE_CHARS = 100
MIN_RESPONSE_CHARS = 30
SENTENCE_MIN_CHARS = 20
SENTENCE_MAX_CHARS = 150


def _truncate_question(text: str) -> str:
    if len(text) > QUESTION_TRUNCATE_CHARS:
        return text[: QUESTION_TRUNCATE_CHARS - 3] + "..."
    return text


def _first_sentence(text: str) -> Optional[str]:
    if len(text) <= MIN_RESPONSE_CHARS:
        return None
    sentence = text.split(".")[0]
    if SENTENCE_MIN_CHARS < len(sentence) < SENTENCE_MAX_CHARS:
        return sentence
    return None


def create_conversation_summary(
    messages: Sequence[ChatMessage],
    existing_summary: Optional[str] = None,
) -> str:
    """Summarize messages that are about to be dropped from a context.

    Format::

        Conversation continued with N messages. User discussed: q1; q2; q3.
        Assistant covered: s1; s2.

    User messages longer than 20 characters are kept as questions
    (truncated to 97 characters plus ``...``); an assistant reply contributes
    its first sentence when that is 21-149 characters long.  The new text is
    appended to ``existing_summary`` separated by a blank line.

    Args:
        messages (Sequence[ChatMessage]): Messages being collapsed.
        existing_summary (Optional[str]): Summary accumulated so far.

    Returns:
        str: The combined summary.
    """
    questions: List[str] = []
    sentences: List[str] = []

    for message in messages:
        text = message.text
        if message.role == MessageRole.USER:
            if len(text) > MIN_QUESTION_CHARS:
                questions.append(_truncate_question(text))
        elif message.role == MessageRole.ASSISTANT:
            sentence = _first_sentence(text)
            if sentence is not None:
                sentences.append(sentence)

    summary = f"{existing_summary}\n\n" if existing_summary else ""
    summary += f"Conversation continued with {len(messages)} messages."
    if questions:
        summary += f" User discussed: {'; '.join(questions[:MAX_USER_QUESTIONS])}."
    if sentences:
        summary += f" Assistant covered: {'; '.join(sentences[:MAX_ASSISTANT_SENTENCES])}."
    return summary
