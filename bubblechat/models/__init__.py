"""
models/__init__.py
------------------
Re-export all models so schema tooling can import Base and discover
all tables via a single import:

    from bubblechat.models import Base
"""

from bubblechat.db.base import Base
from bubblechat.models.content_report import ContentReport, ReportReason, ReportStatus
from bubblechat.models.message import Message, MessageRole
from bubblechat.models.persona import Persona
from bubblechat.models.thread import Thread
from bubblechat.models.user import User

__all__ = [
    "Base",
    "ContentReport",
    "Message",
    "MessageRole",
    "Persona",
    "ReportReason",
    "ReportStatus",
    "Thread",
    "User",
]
