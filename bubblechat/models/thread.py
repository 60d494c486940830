"""
models/thread.py
----------------
Conversation thread between one user and one persona.

The (phone, persona_id) unique constraint is what makes find-or-create safe
under concurrent first contact: the losing insert fails and re-reads the
winner's row.
"""

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bubblechat.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Thread(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "threads"
    __table_args__ = (
        UniqueConstraint("phone", "persona_id", name="uq_threads_phone_persona"),
    )

    phone: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("users.phone", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    persona_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("personas.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="threads")  # noqa: F821
    persona: Mapped["Persona"] = relationship("Persona", back_populates="threads")  # noqa: F821
    messages: Mapped[list["Message"]] = relationship(  # noqa: F821
        "Message", back_populates="thread", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Thread id={self.id} phone={self.phone} persona_id={self.persona_id}>"
