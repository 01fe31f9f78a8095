"""Report service — file, review and evidence abuse reports."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.common.config import PassportSettings
from passport_engine.common.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    RateLimitExceededError,
    SelfReportError,
    ValidationError,
)
from passport_engine.common.models import Clock, utcnow
from passport_engine.reports.models import (
    REPORT_TRANSITIONS,
    ReportCategory,
    ReportEvidenceModel,
    ReportModel,
    ReportStatus,
)
from passport_engine.risk.models import RiskSignalType

logger = logging.getLogger(__name__)

REPORT_WINDOW = timedelta(hours=24)
REPORTED_SEVERITY = 5
MAX_ATTACHMENTS = 10
MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


class ReportService:
    """Abuse report pipeline."""

    def __init__(
        self,
        settings: PassportSettings,
        identity_service,
        blob_store=None,
        risk_service=None,
        audit_service=None,
        clock: Clock | None = None,
    ):
        self.settings = settings
        self.identity_service = identity_service
        self.blob_store = blob_store
        self.risk_service = risk_service
        self.audit_service = audit_service
        self._now = clock or utcnow

    async def file_report(
        self,
        session: AsyncSession,
        reporter_id: str,
        reported_identifier: str,
        category: ReportCategory | str,
        description: str,
    ) -> ReportModel:
        try:
            category = ReportCategory(category)
        except ValueError:
            raise ValidationError(f"Unknown report category '{category}'") from None
        description = (description or "").strip()
        if len(description) < self.settings.report_min_description:
            raise ValidationError(
                f"Description must be at least {self.settings.report_min_description} characters"
            )
        if len(description) > self.settings.report_max_description:
            raise ValidationError(
                f"Description must be at most {self.settings.report_max_description} characters"
            )

        reported = await self.identity_service.resolve_identifier(session, reported_identifier)
        if reported.id == reporter_id:
            raise SelfReportError()

        if self.settings.reports_require_verified_identity:
            if not await self.identity_service.is_identity_verified(session, reporter_id):
                raise ForbiddenError("Verify your identity before filing reports")

        now = self._now()
        result = await session.execute(
            select(func.count(ReportModel.id)).where(
                ReportModel.reporter_id == reporter_id,
                ReportModel.created_at >= now - REPORT_WINDOW,
            )
        )
        if result.scalar_one() >= self.settings.reports_per_day:
            logger.warning("Report limit reached for %s", reporter_id)
            raise RateLimitExceededError(
                f"You can file at most {self.settings.reports_per_day} reports per day"
            )

        report = ReportModel(
            reporter_id=reporter_id,
            reported_id=reported.id,
            category=category.value,
            description=description,
            status=ReportStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        session.add(report)
        await session.flush()

        if self.audit_service:
            await self.audit_service.record_event(
                session, reporter_id, "report.filed", reporter_id,
                {"report_id": report.id, "reported_id": reported.id, "category": category.value},
            )
        logger.info("Report %s filed against %s", report.id, reported.id)
        return report

    async def review(
        self,
        session: AsyncSession,
        report_id: str,
        status: ReportStatus | str,
        reviewer: str,
        notes: str = "",
    ) -> ReportModel:
        """Move a report along its review lifecycle."""
        try:
            status = ReportStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown report status '{status}'") from None
        report = await self._get(session, report_id)
        current = ReportStatus(report.status)
        if status not in REPORT_TRANSITIONS[current]:
            raise InvalidStateError(f"Cannot move report from {current.value} to {status.value}")

        now = self._now()
        result = await session.execute(
            update(ReportModel)
            .where(ReportModel.id == report_id, ReportModel.status == current.value)
            .values(
                status=status.value,
                reviewed_by=reviewer,
                reviewed_at=now,
                review_notes=notes or report.review_notes,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            raise InvalidStateError("Report was reviewed concurrently")
        await session.refresh(report)

        if status == ReportStatus.VERIFIED and self.risk_service:
            await self.risk_service.raise_signal(
                session, report.reported_id, RiskSignalType.REPORTED, REPORTED_SEVERITY,
                f"Verified {report.category} report",
                source_key=f"report:{report.id}",
                detail={"report_id": report.id, "category": report.category},
            )

        if self.audit_service:
            await self.audit_service.record_event(
                session, report.reported_id, "report.reviewed", reviewer,
                {"report_id": report.id, "from": current.value, "to": status.value},
            )
        logger.info("Report %s %s -> %s by %s", report.id, current.value, status.value, reviewer)
        return report

    async def attach_evidence(
        self,
        session: AsyncSession,
        report_id: str,
        user_id: str,
        data: bytes,
        content_type: str,
    ) -> ReportEvidenceModel:
        """Attach a file to a report. Only the reporter may do this."""
        report = await self._get(session, report_id)
        if report.reporter_id != user_id:
            raise ForbiddenError("Only the reporter can add evidence to this report")
        if not data:
            raise ValidationError("File content is required")
        if len(data) > MAX_ATTACHMENT_BYTES:
            raise ValidationError("File is too large")
        if self.blob_store is None:
            raise InvalidStateError("No blob store configured")

        result = await session.execute(
            select(func.count(ReportEvidenceModel.id)).where(
                ReportEvidenceModel.report_id == report_id
            )
        )
        if result.scalar_one() >= MAX_ATTACHMENTS:
            raise ValidationError(f"A report can have at most {MAX_ATTACHMENTS} files")

        url = await self.blob_store.put(data, content_type)
        attachment = ReportEvidenceModel(
            report_id=report_id,
            blob_url=url,
            content_type=content_type,
            size_bytes=len(data),
        )
        session.add(attachment)
        await session.flush()
        return attachment

    # ── Read ──

    async def get_report(
        self, session: AsyncSession, report_id: str, user_id: str,
    ) -> ReportModel:
        report = await self._get(session, report_id)
        if report.reporter_id != user_id:
            raise ForbiddenError("You can only view reports you filed")
        return report

    async def my_reports(self, session: AsyncSession, user_id: str) -> list[ReportModel]:
        result = await session.execute(
            select(ReportModel)
            .where(ReportModel.reporter_id == user_id)
            .order_by(ReportModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_reports(
        self,
        session: AsyncSession,
        status: Optional[ReportStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ReportModel]:
        query = select(ReportModel)
        if status is not None:
            query = query.where(ReportModel.status == status.value)
        result = await session.execute(
            query.order_by(ReportModel.created_at.asc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def attachments(
        self, session: AsyncSession, report_id: str,
    ) -> list[ReportEvidenceModel]:
        result = await session.execute(
            select(ReportEvidenceModel)
            .where(ReportEvidenceModel.report_id == report_id)
            .order_by(ReportEvidenceModel.created_at.asc())
        )
        return list(result.scalars().all())

    async def _get(self, session: AsyncSession, report_id: str) -> ReportModel:
        report = await session.get(ReportModel, report_id)
        if report is None:
            raise NotFoundError("Report not found")
        return report
