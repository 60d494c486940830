"""
api/routes/reports.py
---------------------
POST /reports  — Flag a bot message for moderation.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bubblechat.core.security import AuthResult
from bubblechat.db.session import get_db
from bubblechat.dependencies import get_auth, token_fields
from bubblechat.schemas.report import ReportRequest, ReportResponse
from bubblechat.services.report_service import ReportService

router = APIRouter(tags=["Reports"])


@router.post(
    "/reports",
    response_model=ReportResponse,
    response_model_exclude_unset=True,
    status_code=status.HTTP_201_CREATED,
    summary="Report an AI-generated message",
)
async def report_message(
    body: ReportRequest,
    auth: Annotated[AuthResult, Depends(get_auth)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ReportResponse:
    report = await ReportService.create_report(
        db,
        reporter=auth.phone,
        message_id=body.message_id,
        reason=body.reason,
        additional_info=body.additional_info,
    )
    return ReportResponse(
        report_id=report.id,
        success=True,
        message="Report submitted successfully",
        **token_fields(auth),
    )
