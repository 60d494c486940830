"""
api/routes/personas.py
----------------------
GET  /personas  — All personas, ordered by name.
POST /personas  — Same, with an optional {"id": ...} filter.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bubblechat.core.security import AuthResult
from bubblechat.db.session import get_db
from bubblechat.dependencies import get_auth, token_fields
from bubblechat.schemas.persona import PersonaFilter, PersonaListResponse, PersonaRead
from bubblechat.services.persona_service import PersonaService

router = APIRouter(tags=["Personas"])


async def _list(db: AsyncSession, auth: AuthResult, persona_id: Optional[str]) -> PersonaListResponse:
    personas = await PersonaService.list_personas(db, persona_id)
    return PersonaListResponse(
        data=[PersonaRead.model_validate(p) for p in personas],
        **token_fields(auth),
    )


@router.get(
    "/personas",
    response_model=PersonaListResponse,
    response_model_exclude_unset=True,
    summary="List personas",
)
async def list_personas(
    auth: Annotated[AuthResult, Depends(get_auth)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PersonaListResponse:
    return await _list(db, auth, None)


@router.post(
    "/personas",
    response_model=PersonaListResponse,
    response_model_exclude_unset=True,
    summary="List personas, optionally filtered by id",
)
async def query_personas(
    auth: Annotated[AuthResult, Depends(get_auth)],
    db: Annotated[AsyncSession, Depends(get_db)],
    body: Annotated[Optional[PersonaFilter], Body()] = None,
) -> PersonaListResponse:
    return await _list(db, auth, body.id if body else None)
