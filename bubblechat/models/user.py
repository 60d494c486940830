"""
models/user.py
--------------
User ORM model.

Users are keyed by phone number. push_token is the device push token the
app last reported; it doubles as the device fingerprint the Credential
Manager compares against on the token refresh path, and is overwritten
whenever a device reports a new one.
"""

from typing import Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bubblechat.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    phone: Mapped[str] = mapped_column(String(32), primary_key=True)
    push_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # Optional profile captured at registration
    gender: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Relationships
    threads: Mapped[list["Thread"]] = relationship(  # noqa: F821
        "Thread", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User phone={self.phone}>"
