"""
schemas/chat.py
---------------
Request / response records for sending a turn and fetching history.

Wire names follow the mobile client (personaId, pageSize, threadId);
message and thread records keep their column names.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RequestModel(BaseModel):
    """Inbound payloads reject unknown fields instead of ignoring them."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class SendTurnRequest(RequestModel):
    persona_id: str = Field(..., alias="personaId", min_length=1, max_length=64)
    text: str = Field(
        ...,
        min_length=1,
        max_length=8000,
        examples=["Hey, how was your day?"],
        description="User message for this turn",
    )

    @field_validator("text")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


class HistoryRequest(RequestModel):
    persona_id: str = Field(..., alias="personaId", min_length=1, max_length=64)
    page: int = Field(default=0, ge=0)
    page_size: int = Field(default=100, alias="pageSize", ge=1, le=500)


class MessageRead(BaseModel):
    id: str
    thread_id: str
    role: str
    text: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ThreadRead(BaseModel):
    id: str
    phone: str
    persona_id: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SendTurnResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread_id: str = Field(..., alias="threadId")
    replies: list[str]
    messages: list[MessageRead]
    new_token: Optional[str] = None


class HistoryResponse(BaseModel):
    thread: Optional[ThreadRead]
    messages: list[MessageRead]
    total: int = 0
    new_token: Optional[str] = None
