"""SQLAlchemy models for abuse reports."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from passport_engine.common.models import Base, TimestampMixin, generate_uuid


class ReportCategory(str, enum.Enum):
    ITEM_NOT_RECEIVED = "item_not_received"
    AGGRESSIVE_BEHAVIOUR = "aggressive_behaviour"
    FRAUD_CONCERN = "fraud_concern"
    PAYMENT_ISSUE = "payment_issue"
    MISREPRESENTED_ITEM = "misrepresented_item"
    FAKE_PROFILE = "fake_profile"
    HARASSMENT = "harassment"
    OTHER = "other"


class ReportStatus(str, enum.Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    VERIFIED = "verified"
    DISMISSED = "dismissed"


REPORT_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.PENDING: frozenset({
        ReportStatus.UNDER_REVIEW, ReportStatus.VERIFIED, ReportStatus.DISMISSED,
    }),
    ReportStatus.UNDER_REVIEW: frozenset({ReportStatus.VERIFIED, ReportStatus.DISMISSED}),
    ReportStatus.VERIFIED: frozenset(),
    ReportStatus.DISMISSED: frozenset(),
}


class ReportModel(Base, TimestampMixin):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    reporter_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    reported_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ReportStatus.PENDING.value, index=True
    )
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    review_notes: Mapped[str] = mapped_column(Text, default="")


class ReportEvidenceModel(Base, TimestampMixin):
    __tablename__ = "report_evidence"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    report_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("reports.id"), nullable=False, index=True
    )
    blob_url: Mapped[str] = mapped_column(String(500), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), default="")
    size_bytes: Mapped[int] = mapped_column(Integer, default=0)
