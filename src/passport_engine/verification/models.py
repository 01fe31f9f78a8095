"""SQLAlchemy models for two-party transaction verification."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from passport_engine.common.models import Base, TimestampMixin, generate_uuid


class VerificationState(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    BLOCKED = "blocked"


class TransactionRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"

    @property
    def complement(self) -> "TransactionRole":
        return TransactionRole.SELLER if self is TransactionRole.BUYER else TransactionRole.BUYER


# Every allowed (from, to) move. Anything not listed is refused.
VERIFICATION_TRANSITIONS: dict[VerificationState, frozenset[VerificationState]] = {
    VerificationState.PENDING: frozenset({
        VerificationState.CONFIRMED,
        VerificationState.REJECTED,
        VerificationState.BLOCKED,
    }),
    VerificationState.CONFIRMED: frozenset(),
    VerificationState.REJECTED: frozenset(),
    VerificationState.BLOCKED: frozenset(),
}


class MutualVerificationModel(Base, TimestampMixin):
    __tablename__ = "mutual_verifications"
    __table_args__ = (
        CheckConstraint("user_a_id != user_b_id", name="ck_verification_distinct_users"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_a_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    user_b_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    item: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="GBP")
    role_a: Mapped[str] = mapped_column(String(10), nullable=False)
    role_b: Mapped[str] = mapped_column(String(10), nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=VerificationState.PENDING.value, index=True
    )
    fraud_flag: Mapped[bool] = mapped_column(Boolean, default=False)
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reason: Mapped[str] = mapped_column(String(500), default="")
