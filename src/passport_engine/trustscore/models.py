"""SQLAlchemy models for trust score snapshots."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from passport_engine.common.models import Base, generate_uuid, utcnow


class ScoreTrigger(str, enum.Enum):
    EVENT = "event"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class TrustScoreSnapshotModel(Base):
    """Append-only. A new calculation always adds a row."""

    __tablename__ = "trust_score_snapshots"
    __table_args__ = (
        UniqueConstraint("user_id", "period_key", name="uq_snapshot_user_period"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    identity_score: Mapped[int] = mapped_column(Integer, nullable=False)
    evidence_score: Mapped[int] = mapped_column(Integer, nullable=False)
    behaviour_score: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(20), nullable=False)
    breakdown: Mapped[dict] = mapped_column(JSON, default=dict)
    trigger: Mapped[str] = mapped_column(String(20), default=ScoreTrigger.EVENT.value)
    # ISO week ("2026-W42") for scheduled runs; null otherwise.
    period_key: Mapped[str | None] = mapped_column(String(10), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
