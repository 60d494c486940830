"""
services/report_service.py
--------------------------
Content reports against bot-authored messages.

Only bot messages can be reported; the report snapshots the message text
and starts out 'pending' for an external moderation process.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from bubblechat.core.errors import NotFound, ValidationError
from bubblechat.core.logging import get_logger
from bubblechat.models.content_report import ContentReport, ReportReason, ReportStatus
from bubblechat.models.message import Message, MessageRole

logger = get_logger(__name__)


class ReportService:

    @staticmethod
    async def create_report(
        db: AsyncSession,
        reporter: str,
        message_id: str,
        reason: ReportReason,
        additional_info: str | None = None,
    ) -> ContentReport:
        """
        Raises:
            NotFound:        the message does not exist.
            ValidationError: the message was not written by the bot.
        """
        message = await db.get(Message, message_id)
        if message is None:
            raise NotFound("The reported message could not be found")
        if message.role != MessageRole.bot.value:
            raise ValidationError("Only AI-generated messages can be reported")

        report = ContentReport(
            message_id=message.id,
            thread_id=message.thread_id,
            reported_by=reporter,
            reason=reason.value,
            additional_info=additional_info or None,
            message_text=message.text,
            status=ReportStatus.pending.value,
        )
        db.add(report)
        await db.flush()

        logger.info(
            "Content report submitted",
            report_id=report.id,
            message_id=message.id,
            reason=report.reason,
            reporter=reporter,
        )
        return report
