"""Trust score service: gather inputs, compute, snapshot, recompute weekly."""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.auth.models import SessionModel, SupersededRefreshTokenModel
from passport_engine.common.config import PassportSettings
from passport_engine.common.exceptions import NotFoundError
from passport_engine.common.models import Clock, as_utc, utcnow
from passport_engine.evidence.models import (
    EvidenceKind,
    EvidenceRecordModel,
    EvidenceState,
    LinkState,
)
from passport_engine.identity.models import (
    IdentityVerificationModel,
    UserModel,
    VerificationStatus,
)
from passport_engine.reports.models import ReportModel, ReportStatus
from passport_engine.risk.models import RiskSignalModel
from passport_engine.trustscore.calculator import (
    CONSISTENCY_WEEKS,
    ScoreInputs,
    compute_score,
    iso_week_key,
)
from passport_engine.trustscore.models import ScoreTrigger, TrustScoreSnapshotModel
from passport_engine.verification.models import MutualVerificationModel, VerificationState

logger = logging.getLogger(__name__)


class TrustScoreService:
    """Snapshots of the trust score, on demand and on a weekly schedule."""

    def __init__(self, settings: PassportSettings, clock: Clock | None = None):
        self.settings = settings
        self._now = clock or utcnow
        self._in_flight: set[str] = set()

    async def recalculate(
        self,
        session: AsyncSession,
        user_id: str,
        trigger: ScoreTrigger | str = ScoreTrigger.EVENT,
        period_key: Optional[str] = None,
    ) -> Optional[TrustScoreSnapshotModel]:
        """Compute and append one snapshot.

        Returns None when skipped: a run for this user is already in flight,
        or a snapshot for ``period_key`` already exists.
        """
        trigger = ScoreTrigger(trigger)
        if user_id in self._in_flight:
            logger.info("Trust score for %s already being computed; skipped", user_id)
            return None
        self._in_flight.add(user_id)
        try:
            if period_key and await self._period_done(session, user_id, period_key):
                logger.debug("Snapshot %s for %s exists; skipped", period_key, user_id)
                return None

            now = self._now()
            inputs = await self._gather(session, user_id, now)
            result = compute_score(inputs, now)
            snapshot = TrustScoreSnapshotModel(
                user_id=user_id,
                total=result.total,
                identity_score=result.identity,
                evidence_score=result.evidence,
                behaviour_score=result.behaviour,
                label=result.label,
                breakdown=result.breakdown,
                trigger=trigger.value,
                period_key=period_key,
                created_at=now,
            )
            session.add(snapshot)
            await session.flush()
            logger.info(
                "Trust score for %s: %d (%s, %s)", user_id, result.total, result.label, trigger.value,
            )
            return snapshot
        finally:
            self._in_flight.discard(user_id)

    async def current(self, session: AsyncSession, user_id: str) -> TrustScoreSnapshotModel:
        """Latest snapshot, computing the first one if none exists."""
        result = await session.execute(
            select(TrustScoreSnapshotModel)
            .where(TrustScoreSnapshotModel.user_id == user_id)
            .order_by(TrustScoreSnapshotModel.created_at.desc())
            .limit(1)
        )
        snapshot = result.scalar_one_or_none()
        if snapshot is None:
            snapshot = await self.recalculate(session, user_id, ScoreTrigger.EVENT)
            if snapshot is None:
                raise NotFoundError("Trust score is being computed; try again shortly")
        return snapshot

    async def history(
        self, session: AsyncSession, user_id: str, months: int = 6,
    ) -> list[TrustScoreSnapshotModel]:
        since = self._now() - timedelta(days=30 * months)
        result = await session.execute(
            select(TrustScoreSnapshotModel)
            .where(
                TrustScoreSnapshotModel.user_id == user_id,
                TrustScoreSnapshotModel.created_at >= since,
            )
            .order_by(TrustScoreSnapshotModel.created_at.asc())
        )
        return list(result.scalars().all())

    async def breakdown(self, session: AsyncSession, user_id: str) -> dict:
        snapshot = await self.current(session, user_id)
        return {
            "total": snapshot.total,
            "label": snapshot.label,
            "identity": snapshot.identity_score,
            "evidence": snapshot.evidence_score,
            "behaviour": snapshot.behaviour_score,
            "components": snapshot.breakdown,
            "computed_at": snapshot.created_at,
        }

    # ── Weekly batch ──

    async def run_weekly(self, db, period_key: Optional[str] = None) -> dict[str, int]:
        """Recompute every account for one ISO week.

        Accounts are independent: each runs in its own DB session, bounded
        by a semaphore, with retries on transient database errors.
        """
        period_key = period_key or iso_week_key(self._now())
        semaphore = asyncio.Semaphore(max(1, self.settings.recalc_concurrency))
        counts = {"processed": 0, "skipped": 0, "failed": 0}
        logger.info("Weekly trust score run %s starting", period_key)

        async def one(user_id: str) -> str:
            async with semaphore:
                return await self._scheduled_one(db, user_id, period_key)

        after = ""
        while True:
            async with db.get_session() as session:
                result = await session.execute(
                    select(UserModel.id)
                    .where(UserModel.id > after)
                    .order_by(UserModel.id)
                    .limit(self.settings.recalc_batch_size)
                )
                batch = [row[0] for row in result.all()]
            if not batch:
                break
            for outcome in await asyncio.gather(*(one(uid) for uid in batch)):
                counts[outcome] += 1
            after = batch[-1]

        logger.info("Weekly trust score run %s finished: %s", period_key, counts)
        return counts

    async def _scheduled_one(self, db, user_id: str, period_key: str) -> str:
        attempts = self.settings.recalc_max_retries + 1
        for attempt in range(attempts):
            try:
                async with db.get_session() as session:
                    snapshot = await self.recalculate(
                        session, user_id, ScoreTrigger.SCHEDULED, period_key=period_key,
                    )
                return "processed" if snapshot is not None else "skipped"
            except IntegrityError:
                # Another worker wrote this week's snapshot first.
                return "skipped"
            except OperationalError:
                if attempt + 1 >= attempts:
                    logger.exception("Trust score for %s failed after %d attempts", user_id, attempts)
                    return "failed"
                await asyncio.sleep(0.2 * 2 ** attempt)
            except Exception:
                logger.exception("Trust score for %s failed", user_id)
                return "failed"
        return "failed"

    # ── Internal helpers ──

    async def _period_done(self, session: AsyncSession, user_id: str, period_key: str) -> bool:
        result = await session.execute(
            select(TrustScoreSnapshotModel.id).where(
                TrustScoreSnapshotModel.user_id == user_id,
                TrustScoreSnapshotModel.period_key == period_key,
            )
        )
        return result.first() is not None

    async def _gather(self, session: AsyncSession, user_id: str, now) -> ScoreInputs:
        user = await session.get(UserModel, user_id)
        if user is None:
            raise NotFoundError("User not found")

        verification = await session.execute(
            select(IdentityVerificationModel.status).where(
                IdentityVerificationModel.user_id == user_id
            )
        )
        identity_status = verification.scalar_one_or_none()

        inputs = ScoreInputs(
            account_created_at=as_utc(user.created_at),
            email_verified=bool(user.email_verified),
            identity_verified=identity_status == VerificationStatus.VERIFIED.value,
            second_factor_enabled=bool(user.second_factor_enabled),
            phone_verified=bool(user.phone_verified),
        )

        result = await session.execute(
            select(EvidenceRecordModel.kind, EvidenceRecordModel.link_state, func.count())
            .where(
                EvidenceRecordModel.user_id == user_id,
                EvidenceRecordModel.state == EvidenceState.VALID.value,
            )
            .group_by(EvidenceRecordModel.kind, EvidenceRecordModel.link_state)
        )
        for kind, link_state, count in result.all():
            if kind == EvidenceKind.RECEIPT.value:
                inputs.valid_receipts += count
            elif kind == EvidenceKind.SCREENSHOT.value:
                inputs.valid_screenshots += count
            elif link_state == LinkState.VERIFIED.value:
                inputs.verified_profiles += count
            else:
                inputs.linked_profiles += count

        result = await session.execute(
            select(func.count(MutualVerificationModel.id)).where(
                or_(
                    MutualVerificationModel.user_a_id == user_id,
                    MutualVerificationModel.user_b_id == user_id,
                ),
                MutualVerificationModel.status == VerificationState.CONFIRMED.value,
                MutualVerificationModel.fraud_flag.is_(False),
            )
        )
        inputs.peer_confirmations = result.scalar_one()

        since = now - timedelta(weeks=CONSISTENCY_WEEKS + 1)
        result = await session.execute(
            select(SessionModel.created_at, SessionModel.last_used_at).where(
                SessionModel.user_id == user_id,
                or_(SessionModel.created_at >= since, SessionModel.last_used_at >= since),
            )
        )
        activity = []
        for created_at, last_used_at in result.all():
            activity.append(as_utc(created_at))
            if last_used_at is not None:
                activity.append(as_utc(last_used_at))
        result = await session.execute(
            select(SupersededRefreshTokenModel.superseded_at)
            .join(SessionModel, SessionModel.id == SupersededRefreshTokenModel.session_id)
            .where(
                SessionModel.user_id == user_id,
                SupersededRefreshTokenModel.superseded_at >= since,
            )
        )
        activity.extend(as_utc(row[0]) for row in result.all())
        inputs.activity = activity

        result = await session.execute(
            select(RiskSignalModel.severity).where(
                RiskSignalModel.user_id == user_id,
                RiskSignalModel.resolved.is_(False),
            )
        )
        inputs.unresolved_signal_severities = [row[0] for row in result.all()]

        result = await session.execute(
            select(func.count(ReportModel.id)).where(
                ReportModel.reported_id == user_id,
                ReportModel.status == ReportStatus.VERIFIED.value,
            )
        )
        inputs.verified_reports = result.scalar_one()
        return inputs
