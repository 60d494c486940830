"""
services/llm_service.py
-----------------------
Completion service adapter with MLflow experiment tracking.

The rest of the code base only sees CompletionResult: an optional block
reason plus an ordered list of candidates, each with its text and a
normalised finish reason. Provider specifics stay in this module.

Every call is:
  1. Bounded by LLM_TIMEOUT_SECONDS
  2. Executed (mock or real OpenAI)
  3. Tracked in MLflow (latency, lengths, user context)

Provider failures (timeout, connection, non-success status) surface as
UpstreamUnavailable with the raw detail kept for server logs only.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from bubblechat.core.config import settings
from bubblechat.core.errors import UpstreamUnavailable
from bubblechat.core.logging import get_logger
from bubblechat.services.mlflow_service import CallMetrics, track_llm_call

logger = get_logger(__name__)


class FinishReason(str, Enum):
    stop = "stop"
    length = "length"
    content_filter = "content_filter"
    other = "other"


_FINISH_REASONS = {
    "stop": FinishReason.stop,
    "length": FinishReason.length,
    "max_tokens": FinishReason.length,
    "content_filter": FinishReason.content_filter,
    "safety": FinishReason.content_filter,
}


def normalize_finish_reason(raw: Optional[str]) -> FinishReason:
    if not raw:
        return FinishReason.other
    return _FINISH_REASONS.get(raw.lower(), FinishReason.other)


@dataclass
class ChatTurn:
    role: str  # 'user' | 'bot'
    text: str


@dataclass
class Candidate:
    text: str
    finish_reason: FinishReason = FinishReason.stop


@dataclass
class CompletionResult:
    candidates: list[Candidate] = field(default_factory=list)
    block_reason: Optional[str] = None


class LLMService:

    def __init__(self) -> None:
        self._use_mock = not bool(settings.OPENAI_API_KEY)
        if not self._use_mock:
            import openai
            self._client = openai.AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.LLM_TIMEOUT_SECONDS,
                max_retries=1,
            )
        else:
            logger.info("LLMService in MOCK mode, set OPENAI_API_KEY for real LLM")

    # ── Chat completion ───────────────────────────────────────────────────────

    async def complete(
        self,
        turns: Sequence[ChatTurn],
        system_instruction: str,
        user_id: str = "unknown",
    ) -> CompletionResult:
        """
        Ask for LLM_CANDIDATE_COUNT candidate replies to the conversation.

        Raises:
            UpstreamUnavailable: provider error, bad status or timeout.
        """
        start = time.monotonic()
        try:
            if self._use_mock:
                call = self._mock_complete(turns)
            else:
                call = self._openai_complete(turns, system_instruction)
            result = await asyncio.wait_for(call, timeout=settings.LLM_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.error("Completion timed out", timeout_s=settings.LLM_TIMEOUT_SECONDS)
            raise UpstreamUnavailable("completion timed out")

        latency_ms = round((time.monotonic() - start) * 1000, 1)
        logger.info(
            "Completion received",
            latency_ms=latency_ms,
            candidates=len(result.candidates),
            blocked=bool(result.block_reason),
            mock=self._use_mock,
        )

        track_llm_call(
            "chat",
            CallMetrics(
                latency_ms=latency_ms,
                prompt_chars=len(system_instruction) + sum(len(t.text) for t in turns),
                response_chars=sum(len(c.text) for c in result.candidates),
                history_turns=len(turns) - 1,
                candidates=len(result.candidates),
                blocked=bool(result.block_reason),
            ),
            mock=self._use_mock,
            user_id=user_id,
        )
        return result

    # ── One-shot text generation (persona summaries) ──────────────────────────

    async def summarize(self, prompt: str) -> str:
        start = time.monotonic()
        try:
            if self._use_mock:
                call = self._mock_summarize(prompt)
            else:
                call = self._openai_summarize(prompt)
            text = await asyncio.wait_for(call, timeout=settings.LLM_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            raise UpstreamUnavailable("summary timed out")

        latency_ms = round((time.monotonic() - start) * 1000, 1)
        logger.info("Summary generated", latency_ms=latency_ms, mock=self._use_mock)
        track_llm_call(
            "summary",
            CallMetrics(latency_ms=latency_ms, prompt_chars=len(prompt), response_chars=len(text)),
            mock=self._use_mock,
        )
        return text.strip()

    # ── Mock implementations ──────────────────────────────────────────────────

    async def _mock_complete(self, turns: Sequence[ChatTurn]) -> CompletionResult:
        last = turns[-1].text if turns else ""
        reply = (
            f"[MOCK] You said: '{last[:100]}{'...' if len(last) > 100 else ''}'"
            " &&& Set OPENAI_API_KEY in .env to chat with a real model."
        )
        return CompletionResult(candidates=[Candidate(text=reply)])

    async def _mock_summarize(self, prompt: str) -> str:
        return "[MOCK SUMMARY] " + " ".join(prompt.split()[-40:])

    # ── OpenAI implementations ────────────────────────────────────────────────

    @staticmethod
    def _to_openai_messages(turns: Sequence[ChatTurn], system_instruction: str) -> list[dict]:
        messages = [{"role": "system", "content": system_instruction}]
        for turn in turns:
            role = "assistant" if turn.role == "bot" else "user"
            messages.append({"role": role, "content": turn.text})
        return messages

    async def _openai_complete(
        self, turns: Sequence[ChatTurn], system_instruction: str
    ) -> CompletionResult:
        import openai

        try:
            completion = await self._client.chat.completions.create(
                model=settings.LLM_MODEL,
                messages=self._to_openai_messages(turns, system_instruction),
                max_tokens=settings.LLM_MAX_TOKENS,
                temperature=settings.LLM_TEMPERATURE,
                n=settings.LLM_CANDIDATE_COUNT,
            )
        except openai.BadRequestError as exc:
            if exc.code == "content_filter":
                logger.warning("Prompt blocked by provider", error=str(exc))
                return CompletionResult(block_reason="content_filter")
            logger.error("OpenAI API error", status=exc.status_code, error=str(exc))
            raise UpstreamUnavailable(str(exc)) from exc
        except openai.APIError as exc:
            logger.error("OpenAI API error", error=str(exc))
            raise UpstreamUnavailable(str(exc)) from exc

        choices = sorted(completion.choices, key=lambda c: c.index)
        return CompletionResult(
            candidates=[
                Candidate(
                    text=(choice.message.content or "").strip(),
                    finish_reason=normalize_finish_reason(choice.finish_reason),
                )
                for choice in choices
            ]
        )

    async def _openai_summarize(self, prompt: str) -> str:
        import openai

        try:
            completion = await self._client.chat.completions.create(
                model=settings.LLM_SUMMARY_MODEL,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=400,
                temperature=0.7,
            )
        except openai.APIError as exc:
            logger.error("OpenAI summary error", error=str(exc))
            raise UpstreamUnavailable(str(exc)) from exc
        return completion.choices[0].message.content or ""


# One client per process
llm_service = LLMService()


def get_llm_service() -> LLMService:
    """FastAPI dependency (overridden with a scripted fake in tests)."""
    return llm_service
