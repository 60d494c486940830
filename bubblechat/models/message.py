"""
models/message.py
-----------------
Role-tagged chat message.

created_at is assigned by the application at request time (not by a column
default at flush time) because several writes of one turn run concurrently
and in the background; the timestamp, not insertion order, defines display
order within a thread.
"""

from enum import Enum as PyEnum

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bubblechat.db.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin


class MessageRole(str, PyEnum):
    user = "user"
    bot = "bot"


class Message(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_thread_created", "thread_id", "created_at"),
    )

    thread_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)

    thread: Mapped["Thread"] = relationship("Thread", back_populates="messages")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Message id={self.id} thread_id={self.thread_id} role={self.role}>"
