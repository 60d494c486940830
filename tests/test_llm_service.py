"""Tests for the completion adapter (mock mode) and reply interpretation."""

import asyncio

import pytest

from bubblechat.core.config import settings
from bubblechat.core.errors import UpstreamUnavailable
from bubblechat.services.bubble_segmenter import segment
from bubblechat.services.chat_service import (
    EMPTY_REPLY_MESSAGE,
    SAFETY_BLOCK_MESSAGE,
    TRUNCATED_REPLY_MESSAGES,
    TurnOutcome,
    choose_reply,
    interpret_completion,
)
from bubblechat.services.llm_service import (
    Candidate,
    ChatTurn,
    CompletionResult,
    FinishReason,
    LLMService,
    normalize_finish_reason,
)


class TestMockMode:

    async def test_complete_echoes_last_turn(self):
        service = LLMService()
        result = await service.complete([ChatTurn(role="user", text="hello there")], "system")

        assert result.block_reason is None
        assert "hello there" in result.candidates[0].text
        assert len(segment(result.candidates[0].text)) == 2

    async def test_summarize_returns_text(self):
        summary = await LLMService().summarize("Summarize: Maya likes chai.")
        assert summary.startswith("[MOCK SUMMARY]")

    async def test_timeout_is_upstream_unavailable(self, monkeypatch):
        service = LLMService()

        async def stall(turns):
            await asyncio.sleep(1)

        monkeypatch.setattr(service, "_mock_complete", stall)
        monkeypatch.setattr(settings, "LLM_TIMEOUT_SECONDS", 0.01)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await service.complete([ChatTurn(role="user", text="hi")], "system")
        assert exc_info.value.retryable is True


def test_openai_roles():
    messages = LLMService._to_openai_messages(
        [ChatTurn(role="user", text="hi"), ChatTurn(role="bot", text="hey")], "be nice"
    )
    assert [m["role"] for m in messages] == ["system", "user", "assistant"]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("stop", FinishReason.stop),
        ("length", FinishReason.length),
        ("MAX_TOKENS", FinishReason.length),
        ("SAFETY", FinishReason.content_filter),
        ("tool_calls", FinishReason.other),
        (None, FinishReason.other),
    ],
)
def test_normalize_finish_reason(raw, expected):
    assert normalize_finish_reason(raw) == expected


class TestInterpretCompletion:

    def test_block_wins_over_candidates(self):
        result = CompletionResult(candidates=[Candidate(text="anything")], block_reason="SAFETY")
        assert interpret_completion(result) == (TurnOutcome.blocked, [SAFETY_BLOCK_MESSAGE])

    def test_truncated(self):
        outcome, replies = interpret_completion(
            CompletionResult(candidates=[Candidate(text="", finish_reason=FinishReason.length)])
        )
        assert outcome == TurnOutcome.truncated
        assert replies[0] in TRUNCATED_REPLY_MESSAGES

    def test_truncated_with_text_is_still_success(self):
        outcome, replies = interpret_completion(
            CompletionResult(candidates=[Candidate(text="Cut off mid", finish_reason=FinishReason.length)])
        )
        assert outcome == TurnOutcome.success
        assert replies == ["Cut off mid"]

    def test_empty(self):
        assert interpret_completion(CompletionResult()) == (TurnOutcome.empty, [EMPTY_REPLY_MESSAGE])

    def test_delimiters_only_counts_as_empty(self):
        result = CompletionResult(candidates=[Candidate(text="&&&&")])
        assert interpret_completion(result) == (TurnOutcome.empty, [EMPTY_REPLY_MESSAGE])

    def test_success_is_segmented(self):
        result = CompletionResult(candidates=[Candidate(text="One&&&Two")])
        assert interpret_completion(result) == (TurnOutcome.success, ["One", "Two"])

    def test_choose_reply_prefers_index_order(self):
        result = CompletionResult(candidates=[Candidate(text="first"), Candidate(text="a much better second")])
        assert choose_reply(result) == "first"
