"""Mutual verification service: two-party transaction confirmation.

State moves only along ``VERIFICATION_TRANSITIONS`` and only through a
conditional update on the status the caller observed, so two concurrent
responses cannot both land.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.common.config import PassportSettings
from passport_engine.common.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    SelfVerificationError,
    ValidationError,
)
from passport_engine.common.models import Clock, as_utc, utcnow
from passport_engine.risk.models import RiskSignalType
from passport_engine.verification.models import (
    VERIFICATION_TRANSITIONS,
    MutualVerificationModel,
    TransactionRole,
    VerificationState,
)

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW = timedelta(days=7)
MAX_ITEM_LENGTH = 200


class VerificationService:
    """Create, answer and police mutual verifications."""

    def __init__(
        self,
        settings: PassportSettings,
        identity_service,
        risk_service=None,
        trustscore_service=None,
        audit_service=None,
        clock: Clock | None = None,
    ):
        self.settings = settings
        self.identity_service = identity_service
        self.risk_service = risk_service
        self.trustscore_service = trustscore_service
        self.audit_service = audit_service
        self._now = clock or utcnow

    async def create(
        self,
        session: AsyncSession,
        user_a_id: str,
        other_identifier: str,
        item: str,
        amount: float,
        role_a: TransactionRole | str,
        transaction_date: datetime,
        currency: str = "GBP",
    ) -> MutualVerificationModel:
        other = await self.identity_service.resolve_identifier(session, other_identifier)
        if other.id == user_a_id:
            raise SelfVerificationError()

        item = (item or "").strip()
        if not item:
            raise ValidationError("Item name is required")
        if len(item) > MAX_ITEM_LENGTH:
            raise ValidationError(f"Item name must be at most {MAX_ITEM_LENGTH} characters")
        if amount is None or amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        try:
            role_a = TransactionRole(role_a)
        except ValueError:
            raise ValidationError("Role must be buyer or seller") from None
        transaction_date = as_utc(transaction_date).astimezone(timezone.utc)

        if await self._similar_exists(session, user_a_id, other.id, item, transaction_date):
            raise ValidationError(
                "A verification for this item with this person already exists within 7 days of that date"
            )

        now = self._now()
        verification = MutualVerificationModel(
            user_a_id=user_a_id,
            user_b_id=other.id,
            item=item,
            amount=float(amount),
            currency=(currency or "GBP").upper()[:3],
            role_a=role_a.value,
            role_b=role_a.complement.value,
            transaction_date=transaction_date,
            status=VerificationState.PENDING.value,
            fraud_flag=False,
            created_at=now,
            updated_at=now,
        )
        session.add(verification)
        await session.flush()
        logger.info("Verification %s created by %s for %s", verification.id, user_a_id, other.id)
        return verification

    async def respond(
        self,
        session: AsyncSession,
        verification_id: str,
        responder_id: str,
        decision: str,
        role_b: Optional[str] = None,
    ) -> MutualVerificationModel:
        """Confirm or reject. Only the counterparty may answer, and only once.

        A ``role_b`` that differs from the inferred one replaces it in the same
        conditional update as the status change.
        """
        verification = await self.get(session, verification_id)
        if verification.user_b_id != responder_id:
            raise ForbiddenError("Only the other party can respond to this verification")
        if verification.status != VerificationState.PENDING.value:
            raise InvalidStateError(f"Verification is already {verification.status}")
        if decision not in ("confirm", "reject"):
            raise ValidationError("Decision must be confirm or reject")
        corrected_role = None
        if role_b is not None:
            try:
                corrected_role = TransactionRole(role_b).value
            except ValueError:
                raise ValidationError("Role must be buyer or seller") from None
            if corrected_role == verification.role_b:
                corrected_role = None

        if decision == "reject":
            return await self._transition(
                session, verification, VerificationState.REJECTED, role_b=corrected_role,
            )

        findings = []
        if self.risk_service:
            findings = await self.risk_service.check_collusion(session, verification)
        if findings:
            reason = "; ".join(f.message for f in findings)
            await self._transition(
                session, verification, VerificationState.BLOCKED,
                fraud_flag=True, reason=reason, role_b=corrected_role,
            )
            for finding in findings:
                for party in (verification.user_a_id, verification.user_b_id):
                    await self.risk_service.raise_signal(
                        session, party, RiskSignalType.COLLUSION, finding.severity,
                        finding.message, source_key=finding.source_key, detail=finding.detail,
                    )
            await self._audit_block(session, verification, reason)
            logger.warning("Verification %s blocked: %s", verification.id, reason)
            return verification

        await self._transition(
            session, verification, VerificationState.CONFIRMED, role_b=corrected_role,
        )
        if self.trustscore_service:
            for party in (verification.user_a_id, verification.user_b_id):
                await self.trustscore_service.recalculate(session, party, trigger="event")
        return verification

    async def block(
        self, session: AsyncSession, verification_id: str, reason: str,
    ) -> MutualVerificationModel:
        verification = await self.get(session, verification_id)
        await self._transition(
            session, verification, VerificationState.BLOCKED, fraud_flag=True, reason=reason,
        )
        await self._audit_block(session, verification, reason)
        return verification

    async def block_pending_between(
        self, session: AsyncSession, user_a_id: str, user_b_id: str, reason: str,
    ) -> int:
        """Block every pending verification between two people."""
        result = await session.execute(
            select(MutualVerificationModel).where(
                _between(user_a_id, user_b_id),
                MutualVerificationModel.status == VerificationState.PENDING.value,
            )
        )
        blocked = 0
        for verification in result.scalars().all():
            try:
                await self._transition(
                    session, verification, VerificationState.BLOCKED,
                    fraud_flag=True, reason=reason,
                )
            except InvalidStateError:
                # Answered between our read and the update.
                continue
            await self._audit_block(session, verification, reason)
            blocked += 1
        if blocked:
            logger.warning("Blocked %d pending verification(s) between %s and %s",
                           blocked, user_a_id, user_b_id)
        return blocked

    # ── Read ──

    async def get(
        self, session: AsyncSession, verification_id: str, user_id: Optional[str] = None,
    ) -> MutualVerificationModel:
        """Fetch by id; with ``user_id``, only a party to it can see it."""
        verification = await session.get(MutualVerificationModel, verification_id)
        if verification is None:
            raise NotFoundError("Verification not found")
        if user_id is not None and user_id not in (verification.user_a_id, verification.user_b_id):
            raise NotFoundError("Verification not found")
        return verification

    async def incoming(
        self, session: AsyncSession, user_id: str, status: Optional[VerificationState] = None,
    ) -> list[MutualVerificationModel]:
        query = select(MutualVerificationModel).where(MutualVerificationModel.user_b_id == user_id)
        if status is not None:
            query = query.where(MutualVerificationModel.status == status.value)
        result = await session.execute(query.order_by(MutualVerificationModel.created_at.desc()))
        return list(result.scalars().all())

    async def mine(
        self, session: AsyncSession, user_id: str, status: Optional[VerificationState] = None,
    ) -> list[MutualVerificationModel]:
        query = select(MutualVerificationModel).where(MutualVerificationModel.user_a_id == user_id)
        if status is not None:
            query = query.where(MutualVerificationModel.status == status.value)
        result = await session.execute(query.order_by(MutualVerificationModel.created_at.desc()))
        return list(result.scalars().all())

    # ── Internal helpers ──

    async def _transition(
        self,
        session: AsyncSession,
        verification: MutualVerificationModel,
        target: VerificationState,
        fraud_flag: bool = False,
        reason: str = "",
        role_b: Optional[str] = None,
    ) -> MutualVerificationModel:
        current = VerificationState(verification.status)
        if target not in VERIFICATION_TRANSITIONS[current]:
            raise InvalidStateError(f"Cannot move verification from {current.value} to {target.value}")

        now = self._now()
        values = {"status": target.value, "responded_at": now, "updated_at": now}
        if fraud_flag:
            values["fraud_flag"] = True
        if reason:
            values["reason"] = reason[:500]
        if role_b:
            values["role_b"] = role_b
        result = await session.execute(
            update(MutualVerificationModel)
            .where(
                MutualVerificationModel.id == verification.id,
                MutualVerificationModel.status == current.value,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            raise InvalidStateError("Verification was answered concurrently")
        await session.refresh(verification)
        logger.info("Verification %s %s -> %s", verification.id, current.value, target.value)
        return verification

    async def _similar_exists(
        self,
        session: AsyncSession,
        user_a_id: str,
        user_b_id: str,
        item: str,
        transaction_date: datetime,
    ) -> bool:
        """Same pair, same item, transaction dates less than a week apart."""
        result = await session.execute(
            select(MutualVerificationModel.id).where(
                _between(user_a_id, user_b_id),
                func.lower(MutualVerificationModel.item) == item.lower(),
                MutualVerificationModel.status != VerificationState.REJECTED.value,
                MutualVerificationModel.transaction_date > transaction_date - DUPLICATE_WINDOW,
                MutualVerificationModel.transaction_date < transaction_date + DUPLICATE_WINDOW,
            )
        )
        return result.first() is not None

    async def _audit_block(
        self, session: AsyncSession, verification: MutualVerificationModel, reason: str,
    ) -> None:
        if not self.audit_service:
            return
        for party in (verification.user_a_id, verification.user_b_id):
            await self.audit_service.record_event(
                session, party, "verification.blocked", "risk_engine",
                {"verification_id": verification.id, "reason": reason},
            )


def _between(user_a_id: str, user_b_id: str):
    return or_(
        (MutualVerificationModel.user_a_id == user_a_id)
        & (MutualVerificationModel.user_b_id == user_b_id),
        (MutualVerificationModel.user_a_id == user_b_id)
        & (MutualVerificationModel.user_b_id == user_a_id),
    )
