"""Risk service: gather facts, run detectors, record and score signals."""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.auth.models import SessionModel
from passport_engine.common.config import PassportSettings
from passport_engine.common.exceptions import NotFoundError, ValidationError
from passport_engine.common.models import Clock, as_utc, generate_uuid, utcnow
from passport_engine.evidence.models import EvidenceRecordModel, EvidenceState
from passport_engine.identity.models import AccountStatus, UserModel
from passport_engine.reports.models import ReportModel, ReportStatus
from passport_engine.risk.detectors import (
    COLLUSION_WINDOW,
    RAPID_SIGNUP_WINDOW,
    Finding,
    LoginFact,
    PairVerification,
    RiskInputs,
    canonical_email,
    composite_score,
    detect_collusion,
    run_detectors,
)
from passport_engine.risk.models import RiskSignalModel, RiskSignalType
from passport_engine.verification.models import MutualVerificationModel, VerificationState

logger = logging.getLogger(__name__)

LOGIN_LOOKBACK = timedelta(days=30)


@dataclass
class RiskAssessment:
    user_id: str
    score: int
    account_status: str
    new_signals: list[RiskSignalModel] = field(default_factory=list)
    moved_to_review: bool = False


class RiskService:
    """Risk signal detection and management."""

    def __init__(
        self,
        settings: PassportSettings,
        identity_service=None,
        audit_service=None,
        verification_service=None,
        clock: Clock | None = None,
    ):
        self.settings = settings
        self.identity_service = identity_service
        self.audit_service = audit_service
        # Set after construction; the verification service also holds us.
        self.verification_service = verification_service
        self._now = clock or utcnow

    # ── Evaluation ──

    async def evaluate(self, session: AsyncSession, user_id: str) -> RiskAssessment:
        """Run every detector for a user and record new findings.

        Idempotent: a finding whose source key matches an unresolved signal
        is not recorded again.
        """
        inputs = await self._gather(session, user_id)
        created: list[RiskSignalModel] = []
        for finding in run_detectors(inputs):
            signal, is_new = await self._record(session, user_id, finding)
            if is_new:
                created.append(signal)
            if finding.signal_type == RiskSignalType.COLLUSION and self.verification_service:
                await self.verification_service.block_pending_between(
                    session, user_id, finding.detail["counterparty"], finding.message,
                )

        moved, status = await self._apply_threshold(session, user_id)
        score = await self.risk_score(session, user_id)
        logger.info(
            "Risk evaluation for %s: score=%d new_signals=%d", user_id, score, len(created),
        )
        return RiskAssessment(
            user_id=user_id,
            score=score,
            account_status=status,
            new_signals=created,
            moved_to_review=moved,
        )

    async def check_collusion(
        self, session: AsyncSession, verification: MutualVerificationModel,
    ) -> list[Finding]:
        """Collusion findings for the pair of a verification about to be confirmed."""
        now = self._now()
        result = await session.execute(
            select(MutualVerificationModel).where(
                or_(
                    (MutualVerificationModel.user_a_id == verification.user_a_id)
                    & (MutualVerificationModel.user_b_id == verification.user_b_id),
                    (MutualVerificationModel.user_a_id == verification.user_b_id)
                    & (MutualVerificationModel.user_b_id == verification.user_a_id),
                ),
                MutualVerificationModel.status != VerificationState.REJECTED.value,
                MutualVerificationModel.created_at >= now - COLLUSION_WINDOW,
            )
        )
        history = [_pair_fact(v) for v in result.scalars().all()]
        if verification.id not in {h.id for h in history}:
            history.append(_pair_fact(verification))
        return detect_collusion(verification.user_a_id, history, now)

    # ── Signals ──

    async def raise_signal(
        self,
        session: AsyncSession,
        user_id: str,
        signal_type: RiskSignalType | str,
        severity: int,
        message: str = "",
        source_key: Optional[str] = None,
        detail: Optional[dict[str, Any]] = None,
    ) -> RiskSignalModel:
        """Record one signal and re-check the review threshold."""
        try:
            signal_type = RiskSignalType(signal_type)
        except ValueError:
            raise ValidationError(f"Unknown risk signal type '{signal_type}'") from None
        if not isinstance(severity, int) or not 1 <= severity <= 10:
            raise ValidationError("Severity must be between 1 and 10")
        if await session.get(UserModel, user_id) is None:
            raise NotFoundError("User not found")

        finding = Finding(
            signal_type=signal_type,
            severity=severity,
            message=message,
            source_key=source_key or f"manual:{generate_uuid()}",
            detail=detail or {},
        )
        signal, _ = await self._record(session, user_id, finding)
        await self._apply_threshold(session, user_id)
        return signal

    async def resolve_signal(
        self, session: AsyncSession, signal_id: str, resolved_by: str,
    ) -> RiskSignalModel:
        signal = await session.get(RiskSignalModel, signal_id)
        if signal is None:
            raise NotFoundError("Risk signal not found")
        if signal.resolved:
            return signal
        signal.resolved = True
        signal.resolved_by = resolved_by
        signal.resolved_at = self._now()
        await session.flush()

        if self.audit_service:
            await self.audit_service.record_event(
                session, signal.user_id, "risk.signal_resolved", resolved_by,
                {"signal_id": signal.id, "signal_type": signal.signal_type},
            )
        return signal

    async def active_signals(
        self, session: AsyncSession, user_id: str,
    ) -> list[RiskSignalModel]:
        result = await session.execute(
            select(RiskSignalModel)
            .where(RiskSignalModel.user_id == user_id, RiskSignalModel.resolved.is_(False))
            .order_by(RiskSignalModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def risk_score(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            select(RiskSignalModel.signal_type, RiskSignalModel.severity).where(
                RiskSignalModel.user_id == user_id,
                RiskSignalModel.resolved.is_(False),
            )
        )
        return composite_score(
            (RiskSignalType(t), s) for t, s in result.all()
        )

    # ── Internal helpers ──

    async def _record(
        self, session: AsyncSession, user_id: str, finding: Finding,
    ) -> tuple[RiskSignalModel, bool]:
        result = await session.execute(
            select(RiskSignalModel).where(
                RiskSignalModel.user_id == user_id,
                RiskSignalModel.source_key == finding.source_key,
                RiskSignalModel.resolved.is_(False),
            )
        )
        existing = result.scalars().first()
        if existing is not None:
            return existing, False

        now = self._now()
        signal = RiskSignalModel(
            user_id=user_id,
            signal_type=finding.signal_type.value,
            severity=finding.severity,
            message=finding.message[:500],
            source_key=finding.source_key,
            detail=finding.detail,
            resolved=False,
            created_at=now,
            updated_at=now,
        )
        session.add(signal)
        await session.flush()

        if self.audit_service:
            await self.audit_service.record_event(
                session, user_id, "risk.signal_raised", "risk_engine",
                {
                    "signal_id": signal.id,
                    "signal_type": signal.signal_type,
                    "severity": signal.severity,
                    "source_key": signal.source_key,
                },
            )
        logger.info(
            "Risk signal %s (severity %d) raised for %s", signal.signal_type, signal.severity, user_id,
        )
        return signal, True

    async def _apply_threshold(
        self, session: AsyncSession, user_id: str,
    ) -> tuple[bool, str]:
        """Move an active account to review when its score crosses the threshold."""
        user = await session.get(UserModel, user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.account_status != AccountStatus.ACTIVE.value:
            return False, user.account_status

        score = await self.risk_score(session, user_id)
        if score < self.settings.risk_review_threshold:
            return False, user.account_status
        if self.identity_service is None:
            logger.warning("Risk score %d for %s but no identity service wired", score, user_id)
            return False, user.account_status

        await self.identity_service.set_status(
            session, user_id, AccountStatus.UNDER_REVIEW,
            actor="risk_engine", reason=f"risk score {score}",
        )
        logger.warning("Account %s moved to review (risk score %d)", user_id, score)
        return True, AccountStatus.UNDER_REVIEW.value

    async def _gather(self, session: AsyncSession, user_id: str) -> RiskInputs:
        user = await session.get(UserModel, user_id)
        if user is None:
            raise NotFoundError("User not found")
        now = self._now()
        inputs = RiskInputs(
            user_id=user_id,
            now=now,
            signup_device_id=user.signup_device_id,
            signup_ip=user.signup_ip,
        )

        result = await session.execute(
            select(EvidenceRecordModel.id).where(
                EvidenceRecordModel.user_id == user_id,
                EvidenceRecordModel.state == EvidenceState.REJECTED.value,
            )
        )
        inputs.rejected_evidence_ids = [row[0] for row in result.all()]

        result = await session.execute(
            select(SessionModel.device_id, SessionModel.ip_address).where(
                SessionModel.user_id == user_id,
                SessionModel.created_at >= now - LOGIN_LOOKBACK,
            )
        )
        inputs.recent_logins = [LoginFact(d or "", ip or "") for d, ip in result.all()]

        result = await session.execute(
            select(ReportModel.id).where(
                ReportModel.reported_id == user_id,
                ReportModel.status == ReportStatus.VERIFIED.value,
            )
        )
        inputs.verified_report_ids = [row[0] for row in result.all()]

        if user.signup_device_id:
            result = await session.execute(
                select(UserModel.id).where(
                    UserModel.signup_device_id == user.signup_device_id,
                    UserModel.id != user_id,
                )
            )
            inputs.accounts_sharing_device = [row[0] for row in result.all()]

        if user.signup_ip:
            result = await session.execute(
                select(UserModel.id).where(
                    UserModel.signup_ip == user.signup_ip,
                    UserModel.id != user_id,
                )
            )
            inputs.accounts_sharing_ip = [row[0] for row in result.all()]

            created = as_utc(user.created_at)
            result = await session.execute(
                select(func.count(UserModel.id)).where(
                    UserModel.signup_ip == user.signup_ip,
                    UserModel.created_at >= created - RAPID_SIGNUP_WINDOW,
                    UserModel.created_at <= created + RAPID_SIGNUP_WINDOW,
                )
            )
            inputs.recent_signups_from_ip = result.scalar_one()

        inputs.email_alias_matches = await self._alias_matches(session, user)

        result = await session.execute(
            select(MutualVerificationModel).where(
                or_(
                    MutualVerificationModel.user_a_id == user_id,
                    MutualVerificationModel.user_b_id == user_id,
                ),
                MutualVerificationModel.status != VerificationState.REJECTED.value,
                MutualVerificationModel.created_at >= now - COLLUSION_WINDOW,
            )
        )
        inputs.verifications = [_pair_fact(v) for v in result.scalars().all()]
        return inputs

    async def _alias_matches(self, session: AsyncSession, user: UserModel) -> list[str]:
        canonical = canonical_email(user.email)
        domain = canonical.split("@", 1)[1]
        domains = ["gmail.com", "googlemail.com"] if domain == "gmail.com" else [domain]
        result = await session.execute(
            select(UserModel.id, UserModel.email).where(
                or_(*(UserModel.email.like(f"%@{d}") for d in domains)),
                UserModel.id != user.id,
            )
        )
        return [uid for uid, email in result.all() if canonical_email(email) == canonical]


def _pair_fact(v: MutualVerificationModel) -> PairVerification:
    return PairVerification(
        id=v.id,
        initiator_id=v.user_a_id,
        responder_id=v.user_b_id,
        amount=v.amount,
        created_at=as_utc(v.created_at),
        status=v.status,
    )
