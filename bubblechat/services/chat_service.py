"""
services/chat_service.py
------------------------
Completion orchestrator: one chat turn from user text to persisted bubbles.

Stages (authentication happens before this, in dependencies.get_auth):

  ResolvingContext      thread find-or-create ‖ persona fetch, then
                        recent history ‖ system-instruction build
  CallingModel          history + new turn → completion service
  InterpretingResponse  blocked | truncated | empty | success
  Persisting            bot bubbles inserted concurrently
  Responding            TurnResult handed back to the route

Writes the reply does not depend on (the inbound user message, the thread
timestamp bump, a persona summary) are fire-and-forget through the
background writer. A crash between reply and persistence can lose the user
message; that window is accepted for a chat product.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from bubblechat.core.background import BackgroundWriter, background
from bubblechat.core.config import settings
from bubblechat.core.errors import NotFound, UpstreamUnavailable
from bubblechat.core.logging import get_logger
from bubblechat.db.base import utcnow
from bubblechat.db.session import SessionFactory, session_scope
from bubblechat.models.message import Message, MessageRole
from bubblechat.models.persona import Persona
from bubblechat.models.thread import Thread
from bubblechat.services.bubble_segmenter import segment
from bubblechat.services.llm_service import ChatTurn, CompletionResult, FinishReason, LLMService
from bubblechat.services.persona_service import (
    PersonaService,
    PersonaSummarizer,
    build_persona_context,
)
from bubblechat.services.thread_service import ThreadService

logger = get_logger(__name__)

SAFETY_BLOCK_MESSAGE = "⚠️ This message was blocked for safety reasons."
EMPTY_REPLY_MESSAGE = "⚠️ I didn't get a reply for that one, or it was filtered. Try saying it another way?"
TRUNCATED_REPLY_MESSAGES = (
    "Oops, I got so carried away that my reply got cut off 😅 Ask me again?",
    "Haha, I said so much the system hit pause on me 😂 Try once more, I'll keep it short!",
    "Whoa, that reply ran past the limit 🚀 Say it again and I'll be brief.",
    "I talked so much my message got chopped 😜 One more try?",
    "My reply got too long and was cut short 😅 Let's try that again!",
)


class TurnOutcome(str, Enum):
    success = "success"
    blocked = "blocked"
    truncated = "truncated"
    empty = "empty"


@dataclass
class TurnResult:
    thread_id: str
    replies: list[str]
    messages: list[Message] = field(default_factory=list)
    outcome: TurnOutcome = TurnOutcome.success


def choose_reply(result: CompletionResult) -> str:
    """First non-empty candidate by index. No content-based scoring."""
    for candidate in result.candidates:
        text = (candidate.text or "").strip()
        if text:
            return text
    return ""


def interpret_completion(result: CompletionResult) -> tuple[TurnOutcome, list[str]]:
    """Classify a completion into exactly one outcome and its reply bubbles."""
    if result.block_reason:
        return TurnOutcome.blocked, [SAFETY_BLOCK_MESSAGE]

    chosen = choose_reply(result)
    if not chosen:
        first = result.candidates[0] if result.candidates else None
        if first is not None and first.finish_reason == FinishReason.length:
            return TurnOutcome.truncated, [random.choice(TRUNCATED_REPLY_MESSAGES)]
        return TurnOutcome.empty, [EMPTY_REPLY_MESSAGE]

    bubbles = segment(chosen)
    if not bubbles:
        return TurnOutcome.empty, [EMPTY_REPLY_MESSAGE]
    return TurnOutcome.success, bubbles


class ChatService:

    def __init__(
        self,
        llm: LLMService,
        session_factory: SessionFactory,
        summarizer: Optional[PersonaSummarizer] = None,
        writer: BackgroundWriter = background,
        history_limit: int = settings.CHAT_HISTORY_LIMIT,
    ) -> None:
        self._llm = llm
        self._session_factory = session_factory
        self._summarizer = summarizer or PersonaSummarizer(llm, session_factory)
        self._writer = writer
        self._history_limit = history_limit

    async def send_turn(self, phone: str, persona_id: str, text: str) -> TurnResult:
        t0 = time.monotonic()
        turn_at = utcnow()

        # ── ResolvingContext ──────────────────────────────────────────────────
        thread, created, persona = await self._resolve_thread_and_persona(phone, persona_id)
        t1 = time.monotonic()

        if persona.needs_summary:
            self._writer.spawn(
                self._summarizer.summarize_if_needed(persona),
                "persona_summary",
                persona_id=persona.id,
            )

        history_task = asyncio.ensure_future(self._recent_history(thread.id, turn_at))
        instruction = build_persona_context(persona, phone, is_first_turn=created)
        history = await history_task
        t2 = time.monotonic()

        self._writer.spawn(
            self._save_user_message(thread.id, text, turn_at),
            "save_user_message",
            thread_id=thread.id,
        )

        # ── CallingModel ──────────────────────────────────────────────────────
        turns = [ChatTurn(role=m.role, text=m.text) for m in history]
        turns.append(ChatTurn(role=MessageRole.user.value, text=text))
        result = await self._call_model(turns, instruction, phone)
        t3 = time.monotonic()

        # ── InterpretingResponse ──────────────────────────────────────────────
        outcome, replies = interpret_completion(result)
        if outcome != TurnOutcome.success:
            logger.warning("Completion fell back", outcome=outcome.value, thread_id=thread.id)

        # ── Persisting ────────────────────────────────────────────────────────
        messages = await self._persist_bubbles(thread.id, replies)
        self._writer.spawn(self._touch(thread.id), "touch_thread", thread_id=thread.id)
        t4 = time.monotonic()

        logger.info(
            "Chat turn complete",
            thread_id=thread.id,
            outcome=outcome.value,
            bubbles=len(replies),
            first_turn=created,
            context_ms=round((t2 - t0) * 1000, 1),
            thread_persona_ms=round((t1 - t0) * 1000, 1),
            model_ms=round((t3 - t2) * 1000, 1),
            persist_ms=round((t4 - t3) * 1000, 1),
        )
        return TurnResult(thread_id=thread.id, replies=replies, messages=messages, outcome=outcome)

    # ── Stage helpers ─────────────────────────────────────────────────────────

    async def _resolve_thread_and_persona(
        self, phone: str, persona_id: str
    ) -> tuple[Thread, bool, Persona]:
        # The existing-thread lookup runs alongside the persona read; a thread
        # is only created once the persona is known to exist.
        thread, persona = await asyncio.gather(
            self._find_thread(phone, persona_id),
            self._get_persona(persona_id),
        )
        if persona is None:
            raise NotFound(f"Persona '{persona_id}' not found")
        if thread is not None:
            return thread, False, persona
        thread, created = await self._get_or_create_thread(phone, persona_id)
        return thread, created, persona

    async def _find_thread(self, phone: str, persona_id: str) -> Thread | None:
        async with session_scope(self._session_factory) as db:
            return await ThreadService.find(db, phone, persona_id)

    async def _get_or_create_thread(self, phone: str, persona_id: str) -> tuple[Thread, bool]:
        async with session_scope(self._session_factory) as db:
            return await ThreadService.get_or_create(db, phone, persona_id)

    async def _get_persona(self, persona_id: str) -> Persona | None:
        async with session_scope(self._session_factory) as db:
            return await PersonaService.get_persona(db, persona_id)

    async def _recent_history(self, thread_id: str, before: datetime) -> list[Message]:
        async with session_scope(self._session_factory) as db:
            return await ThreadService.recent_history(
                db, thread_id, limit=self._history_limit, before=before
            )

    async def _call_model(
        self, turns: list[ChatTurn], instruction: str, phone: str
    ) -> CompletionResult:
        try:
            return await self._llm.complete(turns, instruction, user_id=phone)
        except UpstreamUnavailable as exc:
            logger.error("Completion service unavailable", detail=exc.detail)
            raise
        except Exception as exc:
            logger.error("Completion service failed", error=str(exc), exc_info=True)
            raise UpstreamUnavailable(str(exc)) from exc

    async def _persist_bubbles(self, thread_id: str, replies: list[str]) -> list[Message]:
        base = utcnow()
        results = await asyncio.gather(
            *(
                self._insert_bot_message(thread_id, text, base + timedelta(milliseconds=i))
                for i, text in enumerate(replies)
            ),
            return_exceptions=True,
        )
        messages = []
        for result in results:
            if isinstance(result, BaseException):
                logger.warning(
                    "Bot message insert failed (persistence degraded)",
                    thread_id=thread_id,
                    error=str(result),
                )
            else:
                messages.append(result)
        return messages

    async def _insert_bot_message(self, thread_id: str, text: str, created_at: datetime) -> Message:
        async with session_scope(self._session_factory) as db:
            return await ThreadService.append_message(
                db, thread_id, MessageRole.bot, text, created_at=created_at
            )

    async def _save_user_message(self, thread_id: str, text: str, created_at: datetime) -> None:
        async with session_scope(self._session_factory) as db:
            await ThreadService.append_message(
                db, thread_id, MessageRole.user, text, created_at=created_at
            )

    async def _touch(self, thread_id: str) -> None:
        async with session_scope(self._session_factory) as db:
            await ThreadService.touch(db, thread_id)
