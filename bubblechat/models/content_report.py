"""
models/content_report.py
------------------------
User report against a bot-authored message.

message_text is a snapshot of the reported text so moderation still has it
if the message is later removed. Status starts as 'pending'; transitions are
made by an external moderation process.
"""

from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bubblechat.db.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin


class ReportReason(str, PyEnum):
    offensive = "offensive"
    inappropriate = "inappropriate"
    harmful = "harmful"
    spam = "spam"
    other = "other"


class ReportStatus(str, PyEnum):
    pending = "pending"
    reviewed = "reviewed"
    dismissed = "dismissed"


class ContentReport(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    __tablename__ = "content_reports"

    message_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    thread_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    reported_by: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    additional_info: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    message_text: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ReportStatus.pending.value
    )

    def __repr__(self) -> str:
        return f"<ContentReport id={self.id} message_id={self.message_id} status={self.status}>"
