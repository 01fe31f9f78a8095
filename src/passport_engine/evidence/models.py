"""SQLAlchemy models for evidence records."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from passport_engine.common.models import Base, TimestampMixin, generate_uuid


class EvidenceKind(str, enum.Enum):
    RECEIPT = "receipt"
    SCREENSHOT = "screenshot"
    PROFILE_LINK = "profile_link"


class EvidenceState(str, enum.Enum):
    VALID = "valid"
    SUSPICIOUS = "suspicious"
    REJECTED = "rejected"


class LinkState(str, enum.Enum):
    LINKED = "linked"
    VERIFIED = "verified"


class EvidenceRecordModel(Base, TimestampMixin):
    __tablename__ = "evidence_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    blob_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    content_type: Mapped[str] = mapped_column(String(100), default="")
    extracted: Mapped[dict] = mapped_column(JSON, default=dict)
    extraction_confidence: Mapped[float] = mapped_column(Float, default=0.0)
    integrity_score: Mapped[int] = mapped_column(Integer, default=0)
    integrity_reasons: Mapped[list] = mapped_column(JSON, default=list)
    fraud_flag: Mapped[bool] = mapped_column(Boolean, default=False)
    state: Mapped[str] = mapped_column(
        String(20), default=EvidenceState.SUSPICIOUS.value, index=True
    )

    # Receipts
    platform: Mapped[str] = mapped_column(String(50), default="")
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="")
    transaction_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    role: Mapped[str] = mapped_column(String(10), default="")

    # Profile links
    profile_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    profile_key: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    claimed_username: Mapped[str] = mapped_column(String(100), default="")
    link_state: Mapped[str | None] = mapped_column(String(20), nullable=True)
    verify_token: Mapped[str | None] = mapped_column(String(40), nullable=True)
    verify_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ownership_locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
