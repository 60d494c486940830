"""
schemas/report.py
-----------------
Content report request / response.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from bubblechat.models.content_report import ReportReason
from bubblechat.schemas.chat import RequestModel


class ReportRequest(RequestModel):
    message_id: str = Field(..., alias="messageId", min_length=1, max_length=36)
    reason: ReportReason
    additional_info: Optional[str] = Field(
        default=None, alias="additionalInfo", max_length=2000
    )


class ReportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    report_id: str = Field(..., alias="reportId")
    message: str = "Report submitted successfully"
    new_token: Optional[str] = None
