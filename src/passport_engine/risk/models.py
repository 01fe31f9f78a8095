"""SQLAlchemy models for risk signals."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from passport_engine.common.models import Base, TimestampMixin, generate_uuid


class RiskSignalType(str, enum.Enum):
    FAKE_EVIDENCE = "fake_evidence"
    COLLUSION = "collusion"
    DEVICE_MISMATCH = "device_mismatch"
    IP_RISK = "ip_risk"
    REPORTED = "reported"
    DUPLICATE_ACCOUNT = "duplicate_account"
    PROFILE_MISMATCH = "profile_mismatch"
    SUSPICIOUS_LOGIN = "suspicious_login"
    RAPID_ACCOUNT_CREATION = "rapid_account_creation"
    ABNORMAL_ACTIVITY = "abnormal_activity"
    PROFILE_CONCERN = "profile_concern"


class RiskSignalModel(Base, TimestampMixin):
    __tablename__ = "risk_signals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    signal_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    severity: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(String(500), default="")
    source_key: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    detail: Mapped[dict] = mapped_column(JSON, default=dict)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
