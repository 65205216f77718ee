# Copyright (c) 2026 Heureum AI. All rights reserved.

"""Tests for conversation contexts, summarization and request fitting."""

import pytest
from chat_runtime.exceptions import ContextNotFoundError
from chat_runtime.models import ChatMessage, ContentPart, MessageRole
from chat_runtime.services.cache import TTLCache
from chat_runtime.services.context import ContextManager, create_conversation_summary, get_strategy
from chat_runtime.services.context.manager import SUMMARY_PREFIX

# 3988 chars -> 997 tokens + 3 role overhead
THOUSAND_TOKEN_TEXT = "x" * 3988


def _msg(content: str, role: MessageRole = MessageRole.USER) -> ChatMessage:
    return ChatMessage(role=role, content=content)


def _alternating(index: int) -> MessageRole:
    return MessageRole.USER if index % 2 == 0 else MessageRole.ASSISTANT


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


class TestConversationSummary:
    def test_collects_questions_and_sentences(self):
        messages = [
            _msg("How do I configure the cache layer?"),
            _msg("You set the TTL and the maximum size. Then start it.", MessageRole.ASSISTANT),
            _msg("short"),
        ]
        summary = create_conversation_summary(messages)
        assert summary == (
            "Conversation continued with 3 messages. "
            "User discussed: How do I configure the cache layer?. "
            "Assistant covered: You set the TTL and the maximum size."
        )

    def test_long_question_is_truncated(self):
        summary = create_conversation_summary([_msg("q" * 150)])
        assert f"User discussed: {'q' * 97}..." in summary

    def test_limits_questions_and_sentences(self):
        messages = []
        for i in range(5):
            messages.append(_msg(f"This is user question number {i}"))
            messages.append(
                _msg(f"Assistant sentence number {i} is here. Tail.", MessageRole.ASSISTANT)
            )
        summary = create_conversation_summary(messages)
        assert "question number 2" in summary
        assert "question number 3" not in summary
        assert "sentence number 1" in summary
        assert "sentence number 2" not in summary

    def test_appends_to_existing_summary(self):
        summary = create_conversation_summary([_msg("hi")], existing_summary="Earlier.")
        assert summary == "Earlier.\n\nConversation continued with 1 messages."

    def test_multimodal_text_is_used(self):
        message = ChatMessage(
            role=MessageRole.USER,
            content=[
                ContentPart(type="text", text="What is shown in this picture?"),
                ContentPart(type="image", image="https://example.com/cat.png"),
            ],
        )
        assert "What is shown in this picture?" in create_conversation_summary([message])


# ---------------------------------------------------------------------------
# ContextManager
# ---------------------------------------------------------------------------


class TestContextManager:
    def test_create_and_get(self):
        manager = ContextManager()
        context = manager.create_context("c1", "u1", "chat-model")
        assert manager.get_context("c1") is context
        assert context.messages == []
        assert context.total_tokens == 0

    def test_unknown_context(self):
        manager = ContextManager()
        assert manager.get_context("missing") is None
        with pytest.raises(ContextNotFoundError) as exc_info:
            manager.add_message("missing", _msg("hi"))
        assert exc_info.value.conversation_id == "missing"

    def test_add_message_counts_tokens(self):
        manager = ContextManager()
        manager.create_context("c1", "u1")
        context = manager.add_message("c1", _msg("abcdefgh"), message_id="m1")

        stored = context.messages[0]
        assert stored.id == "m1"
        assert stored.token_count == 5
        assert context.total_tokens == 5

        context = manager.add_message("c1", _msg("abcd", MessageRole.ASSISTANT))
        assert context.total_tokens == 9
        assert context.messages[1].id

    def test_summarizes_past_warning_threshold(self):
        """Crossing 14000 tokens on chat-model collapses old messages."""
        manager = ContextManager()
        manager.create_context("c1", "u1", "chat-model")

        for i in range(14):
            context = manager.add_message("c1", _msg(THOUSAND_TOKEN_TEXT, _alternating(i)))
        assert context.summary is None
        assert context.total_tokens == 14000

        context = manager.add_message("c1", _msg("Q" * 25 + THOUSAND_TOKEN_TEXT[25:]))
        assert context.summary
        assert len(context.messages) == get_strategy("balanced").preserve_recent_messages
        assert context.total_tokens < 14000
        assert manager.get_context("c1") is context

    def test_summary_tokens_counted_in_total(self):
        manager = ContextManager()
        context = manager.create_context("c1", "u1")
        context.summary = "abcdefgh"
        context = manager.add_message("c1", _msg("abcd"))
        assert context.total_tokens == 4 + 2

    def test_summarize_context_keeps_tail(self):
        manager = ContextManager(strategy=get_strategy("minimal"))
        manager.create_context("c1", "u1")
        for i in range(6):
            manager.add_message("c1", _msg(f"message number {i} with some padding"))
        original = manager.get_context("c1")

        summarized = manager.summarize_context(original)
        assert [m.text for m in summarized.messages] == [
            f"message number {i} with some padding" for i in range(2, 6)
        ]
        assert summarized.summary.startswith("Conversation continued with 2 messages.")
        assert len(original.messages) == 6

    def test_summarize_short_context_is_noop(self):
        manager = ContextManager()
        context = manager.create_context("c1", "u1")
        manager.add_message("c1", _msg("hi"))
        assert manager.summarize_context(context) is context

    def test_delete_and_cleanup(self, clock):
        manager = ContextManager(cache=TTLCache(ttl=10, clock=clock))
        manager.create_context("c1", "u1")
        manager.create_context("c2", "u1")
        assert manager.delete_context("c1")
        assert not manager.delete_context("c1")

        clock.advance(11)
        assert manager.cleanup() == 1
        assert manager.get_context("c2") is None

    def test_stats(self):
        manager = ContextManager()
        manager.create_context("c1", "u1")
        stats = manager.get_stats()
        assert stats["size"] == 1
        assert stats["strategy"]["preserve_recent_messages"] == 8


class TestMessagesForRequest:
    def test_unknown_conversation(self):
        payload = ContextManager().get_messages_for_request("missing")
        assert payload.messages == []
        assert payload.token_count == 0
        assert not payload.truncated

    def test_everything_fits(self):
        manager = ContextManager()
        manager.create_context("c1", "u1")
        manager.add_message("c1", _msg("first"))
        manager.add_message("c1", _msg("second", MessageRole.ASSISTANT))

        payload = manager.get_messages_for_request("c1", "chat-model")
        assert [m.text for m in payload.messages] == ["first", "second"]
        assert not payload.truncated
        assert all(type(m) is ChatMessage for m in payload.messages)

    def test_budget_keeps_most_recent(self):
        manager = ContextManager()
        manager.create_context("c1", "u1")  # default window, no summarization yet
        for i in range(20):
            manager.add_message("c1", _msg(f"{i:02d}" + THOUSAND_TOKEN_TEXT[2:], _alternating(i)))

        # chat-model budget is 16000 - 2048 = 13952
        payload = manager.get_messages_for_request("c1", "chat-model")
        assert payload.truncated
        assert len(payload.messages) == 13
        assert payload.token_count == 13000
        assert payload.messages[0].text.startswith("07")
        assert payload.messages[-1].text.startswith("19")

    def test_summary_comes_first(self):
        manager = ContextManager()
        context = manager.create_context("c1", "u1")
        context.summary = "Talked about caches."
        manager.add_message("c1", _msg("next question"))

        payload = manager.get_messages_for_request("c1")
        assert payload.messages[0].role == MessageRole.SYSTEM
        assert payload.messages[0].text == f"{SUMMARY_PREFIX}Talked about caches."
        assert payload.messages[1].text == "next question"
