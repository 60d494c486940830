"""
dependencies.py
---------------
FastAPI dependency injection for authentication.

Flow:
  1. HTTPBearer extracts the token from the Authorization header.
  2. verify_and_refresh validates it with no DB round-trip on the hot path;
     only an expired-but-genuine token costs one user lookup and comes back
     rotated.
  3. The optional X-FCM-Token header carries the device push token used for
     device binding on the refresh path.

Route handlers receive an AuthResult and merge token_fields(auth) into the
response when rotation happened; that is the only channel a rotated
credential travels on. get_chat_service wires the turn orchestrator.
"""

import time
from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bubblechat.core.errors import AuthInvalid
from bubblechat.core.logging import get_logger
from bubblechat.core.security import AuthResult, CredentialError, verify_and_refresh
from bubblechat.db.session import SessionFactory, get_session_factory, session_scope
from bubblechat.services.chat_service import ChatService
from bubblechat.services.llm_service import LLMService, get_llm_service
from bubblechat.services.persona_service import PersonaSummarizer

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_auth(
    credentials: Annotated[
        Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)
    ],
    factory: Annotated[SessionFactory, Depends(get_session_factory)],
    x_fcm_token: Annotated[Optional[str], Header()] = None,
) -> AuthResult:
    """
    Authenticate the request, rotating an expired credential inline.
    Raises 401 with a generic message on any unrecoverable failure.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthInvalid()

    start = time.monotonic()
    try:
        async with session_scope(factory) as db:
            result = await verify_and_refresh(
                db, credentials.credentials, device_token=x_fcm_token
            )
    except CredentialError as exc:
        logger.warning("Authentication failed", error=str(exc))
        raise AuthInvalid()

    logger.debug(
        "Authenticated",
        phone=result.phone,
        refreshed=result.was_refreshed,
        auth_ms=round((time.monotonic() - start) * 1000, 1),
    )
    return result


def token_fields(auth: AuthResult) -> dict:
    """Extra response fields carrying a rotated credential, if any."""
    if auth.was_refreshed and auth.new_token:
        return {"new_token": auth.new_token}
    return {}


def get_chat_service(
    request: Request,
    llm: Annotated[LLMService, Depends(get_llm_service)],
    factory: Annotated[SessionFactory, Depends(get_session_factory)],
) -> ChatService:
    """
    Per-request orchestrator over app-scoped collaborators. The persona
    summarizer lives on app.state so its in-flight set is shared by every
    request served by this process.
    """
    summarizer = getattr(request.app.state, "persona_summarizer", None)
    if summarizer is None:
        summarizer = PersonaSummarizer(llm, factory)
        request.app.state.persona_summarizer = summarizer
    return ChatService(llm, factory, summarizer=summarizer)
