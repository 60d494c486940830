"""
models/persona.py
-----------------
Persona ORM model.

system_prompt is the base personality. style_prompt optionally overrides the
in-code default style block. long_doc is the full character profile sent on
a first turn; short_summary is its condensed form, computed lazily the first
time it is needed and left for an external editor to regenerate.
"""

from typing import Optional

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bubblechat.db.base import Base, TimestampMixin


class Persona(Base, TimestampMixin):
    __tablename__ = "personas"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    style_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    long_doc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    short_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Display metadata
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    caption: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    default_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    threads: Mapped[list["Thread"]] = relationship(  # noqa: F821
        "Thread", back_populates="persona", cascade="all, delete-orphan"
    )

    @property
    def needs_summary(self) -> bool:
        return bool(self.long_doc and self.long_doc.strip()) and not self.short_summary

    def __repr__(self) -> str:
        return f"<Persona id={self.id} name={self.name}>"
