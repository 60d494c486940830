"""
services/thread_service.py
--------------------------
Thread store accessor: threads keyed by (phone, persona) and their messages.

Ordering contract:
  Messages are always returned in ascending created_at order, and page 0 of
  list_messages is the *oldest* page. Callers that want newest-first must
  reverse themselves; pagination math (page * page_size < total) relies on
  this ordering.

Every function takes its own AsyncSession so callers can fan independent
reads out over separate sessions.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bubblechat.core.logging import get_logger
from bubblechat.db.base import utcnow
from bubblechat.models.message import Message, MessageRole
from bubblechat.models.thread import Thread

logger = get_logger(__name__)


class ThreadService:

    @staticmethod
    async def find(db: AsyncSession, phone: str, persona_id: str) -> Thread | None:
        result = await db.execute(
            select(Thread).where(Thread.phone == phone, Thread.persona_id == persona_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create(
        db: AsyncSession, phone: str, persona_id: str
    ) -> tuple[Thread, bool]:
        """
        Find the thread for (phone, persona_id), creating it on first contact.

        Concurrent first contacts race on the unique constraint; the loser
        rolls back and re-reads the winner's row. Must be the first unit of
        work in the session, since the rollback discards it.

        Returns:
            (thread, created)
        """
        thread = await ThreadService.find(db, phone, persona_id)
        if thread is not None:
            return thread, False

        now = utcnow()
        thread = Thread(phone=phone, persona_id=persona_id, created_at=now, updated_at=now)
        db.add(thread)
        try:
            await db.flush()
            logger.info("Thread created", thread_id=thread.id, phone=phone, persona_id=persona_id)
            return thread, True
        except IntegrityError:
            await db.rollback()
            existing = await ThreadService.find(db, phone, persona_id)
            if existing is None:
                raise
            logger.info("Thread creation raced, using existing", thread_id=existing.id)
            return existing, False

    @staticmethod
    async def append_message(
        db: AsyncSession,
        thread_id: str,
        role: MessageRole,
        text: str,
        created_at: Optional[datetime] = None,
    ) -> Message:
        message = Message(
            thread_id=thread_id,
            role=role.value,
            text=text,
            created_at=created_at or utcnow(),
        )
        db.add(message)
        await db.flush()
        return message

    @staticmethod
    async def touch(db: AsyncSession, thread_id: str) -> None:
        """Bump updated_at after new activity."""
        await db.execute(
            update(Thread).where(Thread.id == thread_id).values(updated_at=utcnow())
        )

    @staticmethod
    async def list_messages(
        db: AsyncSession,
        thread_id: str,
        page: int = 0,
        page_size: int = 100,
    ) -> tuple[int, list[Message]]:
        """
        Offset-paginated messages in ascending chronological order.

        Returns:
            (total_count, page_of_messages)
        """
        base_filter = Message.thread_id == thread_id

        count_result = await db.execute(
            select(func.count()).select_from(Message).where(base_filter)
        )
        total = count_result.scalar_one()

        result = await db.execute(
            select(Message)
            .where(base_filter)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .offset(page * page_size)
            .limit(page_size)
        )
        return total, list(result.scalars().all())

    @staticmethod
    async def recent_history(
        db: AsyncSession,
        thread_id: str,
        limit: int,
        before: Optional[datetime] = None,
    ) -> list[Message]:
        """
        The newest `limit` messages created before `before`, oldest first.
        Used as model context, so the in-flight user turn is excluded.
        """
        query = select(Message).where(Message.thread_id == thread_id)
        if before is not None:
            query = query.where(Message.created_at < before)
        result = await db.execute(
            query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
        )
        return list(reversed(result.scalars().all()))
