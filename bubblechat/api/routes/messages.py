"""
api/routes/messages.py
----------------------
POST /messages  — Paginated history of the caller's thread with a persona.

Page 0 is the oldest page; messages inside a page are ascending. `total`
lets a client work out where the newest page is. A user who never wrote to
the persona gets {thread: null, messages: []}, not an error.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bubblechat.core.security import AuthResult
from bubblechat.db.session import get_db
from bubblechat.dependencies import get_auth, token_fields
from bubblechat.schemas.chat import HistoryRequest, HistoryResponse, MessageRead, ThreadRead
from bubblechat.services.thread_service import ThreadService

router = APIRouter(tags=["Messages"])


@router.post(
    "/messages",
    response_model=HistoryResponse,
    response_model_exclude_unset=True,
    summary="Fetch conversation history",
)
async def get_messages(
    body: HistoryRequest,
    auth: Annotated[AuthResult, Depends(get_auth)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HistoryResponse:
    thread = await ThreadService.find(db, auth.phone, body.persona_id)
    if thread is None:
        return HistoryResponse(thread=None, messages=[], total=0, **token_fields(auth))

    total, messages = await ThreadService.list_messages(
        db, thread.id, page=body.page, page_size=body.page_size
    )
    return HistoryResponse(
        thread=ThreadRead.model_validate(thread),
        messages=[MessageRead.model_validate(m) for m in messages],
        total=total,
        **token_fields(auth),
    )
