"""
services/persona_service.py
---------------------------
Persona lookup and system-instruction assembly.

The system instruction is:
    base prompt
    style block        (persona.style_prompt, else DEFAULT_STYLE)
    closing line       (who the persona is roleplaying for)
    persona document   (full long_doc on a first turn, otherwise the
                        condensed summary, falling back to the base prompt)

Summaries are a persistent, lazily-filled cache on the persona row: the
first turn that needs context for a persona with a long_doc and no summary
schedules one summarization call, and every later turn reads the stored
result. Regenerating a summary is left to whoever edits long_doc.
"""

import asyncio

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bubblechat.core.logging import get_logger
from bubblechat.db.base import utcnow
from bubblechat.db.session import SessionFactory, session_scope
from bubblechat.models.persona import Persona
from bubblechat.services.llm_service import LLMService

logger = get_logger(__name__)

DEFAULT_BASE_PROMPT = "You are a helpful companion."

DEFAULT_STYLE = """
FORMATTING (MANDATORY):
Split your response into 2-3 short chat bubbles using &&&
Each bubble should be 1-3 sentences max (like WhatsApp messages).
Example: "Hey! How are you?&&&Tell me, what's going on?"

CRITICAL RULES:
- NEVER use a single & in your response. Only use exactly three: &&&
- Keep bubbles SHORT (1-3 sentences each, not paragraphs)
- Most replies should be 2 bubbles, sometimes 3
- Don't write essays, this is casual chat!

CONVERSATION:
- The chat history above shows your past conversation with THIS user
- Remember what matters (names, feelings, important topics)
- Let conversation flow naturally; if they change topics, go with it
- Short replies like "ok" or "hmm" mean it is time to move on
- Don't force topics or be pushy
""".strip()

SUMMARY_PROMPT = """
Write a short summary of the persona document below, the way one friend
describes someone to another friend. Keep it casual and natural.
No bullet points: 3-4 lines max, like a chat bio.

Persona document:
{long_doc}
""".strip()


def build_persona_context(persona: Persona, phone: str, is_first_turn: bool) -> str:
    """Assemble the system instruction. Pure function of its inputs."""
    base = (persona.system_prompt or "").strip() or DEFAULT_BASE_PROMPT
    style = (persona.style_prompt or "").strip() or DEFAULT_STYLE

    if is_first_turn:
        persona_doc = f"Here is your full character profile:\n{persona.long_doc or ''}"
    else:
        reminder = persona.short_summary or persona.system_prompt or ""
        persona_doc = f"Reminder of your persona:\n{reminder}"

    return (
        f"{base}\n\n{style}\n\n"
        f"You're roleplaying for this {phone} as {persona.name}.\n\n"
        f"{persona_doc}"
    )


class PersonaService:

    @staticmethod
    async def get_persona(db: AsyncSession, persona_id: str) -> Persona | None:
        return await db.get(Persona, persona_id)

    @staticmethod
    async def list_personas(db: AsyncSession, persona_id: str | None = None) -> list[Persona]:
        query = select(Persona).order_by(Persona.name)
        if persona_id:
            query = query.where(Persona.id == persona_id)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def save_summary(db: AsyncSession, persona_id: str, summary: str) -> None:
        await db.execute(
            update(Persona)
            .where(Persona.id == persona_id)
            .values(short_summary=summary, updated_at=utcnow())
        )


class PersonaSummarizer:
    """
    Fills Persona.short_summary on demand.

    Holds the set of persona ids with a summary in flight so two concurrent
    first turns do not both pay for a model call. The set only lives as long
    as this object; the persisted column is the real cache.
    """

    def __init__(self, llm: LLMService, session_factory: SessionFactory) -> None:
        self._llm = llm
        self._session_factory = session_factory
        self._in_flight: set[str] = set()
        self._lock = asyncio.Lock()

    async def summarize_if_needed(self, persona: Persona) -> str | None:
        """
        Summarize and persist persona.long_doc if it has no summary yet.

        Returns:
            The new summary, or None when nothing needed doing (no long_doc,
            summary already present, or another call is already on it).
        """
        if not persona.needs_summary:
            return None

        async with self._lock:
            if persona.id in self._in_flight:
                return None
            self._in_flight.add(persona.id)

        try:
            summary = await self._llm.summarize(SUMMARY_PROMPT.format(long_doc=persona.long_doc))
            if not summary:
                logger.warning("Empty persona summary, not stored", persona_id=persona.id)
                return None
            async with session_scope(self._session_factory) as db:
                await PersonaService.save_summary(db, persona.id, summary)
            logger.info("Persona summary stored", persona_id=persona.id, length=len(summary))
            return summary
        finally:
            self._in_flight.discard(persona.id)
