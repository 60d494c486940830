"""
api/routes/chat.py
------------------
POST /chat  — Send one conversation turn to a persona.

The reply comes back pre-split into chat bubbles, together with the stored
bot message records. A credential rotated during authentication rides along
as new_token.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from bubblechat.core.security import AuthResult
from bubblechat.dependencies import get_auth, get_chat_service, token_fields
from bubblechat.schemas.chat import MessageRead, SendTurnRequest, SendTurnResponse
from bubblechat.services.chat_service import ChatService

router = APIRouter(tags=["Chat"])


@router.post(
    "/chat",
    response_model=SendTurnResponse,
    response_model_exclude_unset=True,
    summary="Send a message to a persona",
)
async def send_turn(
    body: SendTurnRequest,
    auth: Annotated[AuthResult, Depends(get_auth)],
    chat: Annotated[ChatService, Depends(get_chat_service)],
) -> SendTurnResponse:
    result = await chat.send_turn(auth.phone, body.persona_id, body.text)
    return SendTurnResponse(
        thread_id=result.thread_id,
        replies=result.replies,
        messages=[MessageRead.model_validate(m) for m in result.messages],
        **token_fields(auth),
    )
