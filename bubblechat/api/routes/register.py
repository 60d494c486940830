"""
api/routes/register.py
----------------------
Device registration and credential reissue.

POST /register         — Upsert a user from the decoded registration profile
                         and hand back a bearer credential (app_key).
POST /reissue-api-key  — Trade a stale-but-genuine credential for a fresh one.

Unwrapping the secure registration envelope happens upstream of this router.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bubblechat.core.logging import get_logger
from bubblechat.core.security import AuthResult, issue_token
from bubblechat.db.session import get_db
from bubblechat.dependencies import get_auth
from bubblechat.schemas.register import RegisterRequest, RegisterResponse, ReissueResponse
from bubblechat.services.user_service import UserService

logger = get_logger(__name__)

router = APIRouter(tags=["Registration"])


@router.post(
    "/register",
    response_model=RegisterResponse,
    summary="Register a device / user",
)
async def register(
    body: RegisterRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> RegisterResponse:
    user = await UserService.register_user(db, body)
    return RegisterResponse(app_key=issue_token(user.phone), phone=user.phone)


@router.post(
    "/reissue-api-key",
    response_model=ReissueResponse,
    summary="Reissue the bearer credential",
)
async def reissue_api_key(
    auth: Annotated[AuthResult, Depends(get_auth)],
) -> ReissueResponse:
    """
    An expired token was already rotated by get_auth; a still-valid one is
    swapped for a freshly minted one so the client always leaves with a new
    expiry window.
    """
    app_key = auth.new_token if auth.was_refreshed and auth.new_token else issue_token(auth.phone)
    logger.info("API key reissued", phone=auth.phone, rotated=auth.was_refreshed)
    return ReissueResponse(app_key=app_key)
