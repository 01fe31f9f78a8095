"""Evidence service — ingest, score, deduplicate and manage evidence."""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.common.config import PassportSettings
from passport_engine.common.exceptions import (
    DuplicateEvidenceError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from passport_engine.common.models import Clock, as_utc, utcnow
from passport_engine.evidence.blobstore import BlobStore
from passport_engine.evidence.extractor import Extractor, platform_for_url
from passport_engine.evidence.integrity import parse_date, score_integrity
from passport_engine.evidence.models import (
    EvidenceKind,
    EvidenceRecordModel,
    EvidenceState,
    LinkState,
)
from passport_engine.identity.models import UserModel
from passport_engine.risk.models import RiskSignalType

logger = logging.getLogger(__name__)

MAX_EVIDENCE_BYTES = 10 * 1024 * 1024
PROFILE_TOKEN_PREFIX = "PASSPORT-VERIFY-"
PROFILE_TOKEN_TTL = timedelta(hours=24)


@dataclass
class EvidenceSubmission:
    kind: EvidenceKind
    data: Optional[bytes] = None
    content_type: str = ""
    source_url: Optional[str] = None
    platform: str = ""
    claimed_username: str = ""
    amount: Optional[float] = None
    currency: str = ""
    transaction_date: Optional[datetime] = None
    role: str = ""


def normalize_url(url: str) -> str:
    """Canonical form for hashing: lower-case host, no trailing slash, no fragment.

    The query is kept, sorted by key, because some platforms put the
    profile id there (``profile.php?id=...``).
    """
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    path = parsed.path.rstrip("/")
    query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))
    return urlunparse(("https", host, path, "", query, ""))


def content_hash_for(submission: EvidenceSubmission) -> str:
    if submission.kind == EvidenceKind.PROFILE_LINK:
        return hashlib.sha256(normalize_url(submission.source_url or "").encode()).hexdigest()
    return hashlib.sha256(submission.data or b"").hexdigest()


class EvidenceService:
    """Evidence ingestion and lifecycle."""

    def __init__(
        self,
        settings: PassportSettings,
        blob_store: BlobStore,
        extractor: Extractor,
        risk_service=None,
        audit_service=None,
        clock: Clock | None = None,
    ):
        self.settings = settings
        self.blob_store = blob_store
        self.extractor = extractor
        self.risk_service = risk_service
        self.audit_service = audit_service
        self._now = clock or utcnow

    # ── Ingest ──

    async def submit_evidence(
        self, session: AsyncSession, user_id: str, submission: EvidenceSubmission,
    ) -> EvidenceRecordModel:
        """Store, extract, score and persist one piece of evidence.

        Raises DuplicateEvidenceError when the same content was already
        submitted by anyone. Suspicious or rejected evidence is stored and
        also raises a risk signal against the submitter.
        """
        self._validate(submission)
        if await session.get(UserModel, user_id) is None:
            raise NotFoundError("User not found")

        content_hash = content_hash_for(submission)
        if await self._hash_exists(session, content_hash):
            logger.info("Duplicate evidence %s from user %s", content_hash[:12], user_id)
            raise DuplicateEvidenceError()

        # No row is locked while the slow collaborators run.
        blob_url = None
        if submission.data:
            blob_url = await self.blob_store.put(submission.data, submission.content_type)
        extraction = await self.extractor.extract(
            submission.kind, submission.data, submission.source_url,
        )

        now = self._now()
        fields = extraction.fields
        result = score_integrity(
            submission.kind,
            fields,
            extraction.confidence,
            now,
            claimed_username=submission.claimed_username,
            claimed_date=submission.transaction_date,
            amount=submission.amount,
            valid_threshold=self.settings.integrity_valid_threshold,
            reject_floor=self.settings.integrity_reject_floor,
        )

        record = EvidenceRecordModel(
            user_id=user_id,
            kind=submission.kind.value,
            content_hash=content_hash,
            blob_url=blob_url,
            content_type=submission.content_type,
            extracted=fields,
            extraction_confidence=extraction.confidence,
            integrity_score=result.score,
            integrity_reasons=result.reasons,
            fraud_flag=result.fraud_flag,
            state=result.state.value,
            created_at=now,
            updated_at=now,
        )
        if submission.kind == EvidenceKind.PROFILE_LINK:
            self._fill_profile(record, submission, fields)
        else:
            self._fill_transaction(record, submission, fields)

        session.add(record)
        try:
            await session.flush()
        except IntegrityError:
            # Lost the race to an identical submission.
            await session.rollback()
            raise DuplicateEvidenceError() from None

        if self.audit_service:
            await self.audit_service.record_event(
                session, user_id, "evidence.submitted", "system",
                {
                    "evidence_id": record.id,
                    "kind": record.kind,
                    "state": record.state,
                    "integrity_score": record.integrity_score,
                },
            )

        if result.state != EvidenceState.VALID:
            await self._flag(session, record)

        logger.info(
            "Evidence %s (%s) scored %d -> %s",
            record.id, record.kind, record.integrity_score, record.state,
        )
        return record

    def _validate(self, submission: EvidenceSubmission) -> None:
        if submission.kind == EvidenceKind.PROFILE_LINK:
            url = (submission.source_url or "").strip()
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.hostname:
                raise ValidationError("A valid profile URL is required")
            return
        if not submission.data:
            raise ValidationError("Evidence content is required")
        if len(submission.data) > MAX_EVIDENCE_BYTES:
            raise ValidationError("Evidence file is too large")
        if submission.amount is not None and submission.amount < 0:
            raise ValidationError("Amount cannot be negative")
        if submission.role and submission.role not in ("buyer", "seller"):
            raise ValidationError("Role must be buyer or seller")

    @staticmethod
    def _fill_transaction(
        record: EvidenceRecordModel, submission: EvidenceSubmission, fields: dict,
    ) -> None:
        record.platform = submission.platform or str(fields.get("platform") or "")
        amount = submission.amount if submission.amount is not None else fields.get("amount")
        try:
            record.amount = float(amount) if amount not in (None, "") else None
        except (TypeError, ValueError):
            record.amount = None
        record.currency = (submission.currency or str(fields.get("currency") or ""))[:3].upper()
        record.transaction_date = submission.transaction_date or parse_date(fields.get("date"))
        record.role = submission.role or str(fields.get("role") or "")

    @staticmethod
    def _fill_profile(
        record: EvidenceRecordModel, submission: EvidenceSubmission, fields: dict,
    ) -> None:
        url = normalize_url(submission.source_url or "")
        platform = submission.platform or str(fields.get("platform") or platform_for_url(url))
        handle = submission.claimed_username or str(fields.get("username") or "")
        record.profile_url = url
        record.platform = platform
        record.claimed_username = handle
        record.profile_key = f"{platform}:{handle.lstrip('@').lower()}" if handle else None
        record.link_state = LinkState.LINKED.value

    async def _flag(self, session: AsyncSession, record: EvidenceRecordModel) -> None:
        if self.risk_service is None:
            return
        signal_type = (
            RiskSignalType.PROFILE_MISMATCH
            if record.kind == EvidenceKind.PROFILE_LINK.value
            else RiskSignalType.FAKE_EVIDENCE
        )
        if record.fraud_flag:
            severity = 8
        elif record.state == EvidenceState.REJECTED.value:
            severity = 6
        else:
            severity = 3
        await self.risk_service.raise_signal(
            session,
            record.user_id,
            signal_type,
            severity,
            f"{record.kind} evidence scored {record.integrity_score} ({record.state})",
            source_key=f"evidence:{record.id}",
            detail={"evidence_id": record.id, "reasons": record.integrity_reasons},
        )

    async def _hash_exists(self, session: AsyncSession, content_hash: str) -> bool:
        result = await session.execute(
            select(EvidenceRecordModel.id).where(
                EvidenceRecordModel.content_hash == content_hash
            )
        )
        return result.first() is not None

    # ── Read ──

    async def get_evidence(self, session: AsyncSession, record_id: str) -> EvidenceRecordModel:
        record = await session.get(EvidenceRecordModel, record_id)
        if record is None:
            raise NotFoundError("Evidence not found")
        return record

    async def list_evidence(
        self,
        session: AsyncSession,
        user_id: str,
        kind: EvidenceKind | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EvidenceRecordModel]:
        query = select(EvidenceRecordModel).where(EvidenceRecordModel.user_id == user_id)
        if kind is not None:
            query = query.where(EvidenceRecordModel.kind == kind.value)
        result = await session.execute(
            query.order_by(EvidenceRecordModel.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    # ── Mutations ──

    async def transition_state(
        self,
        session: AsyncSession,
        record_id: str,
        state: EvidenceState,
        fraud_flag: bool | None = None,
        actor: str = "system",
    ) -> EvidenceRecordModel:
        """Change a record's state (and optionally its fraud flag)."""
        record = await self.get_evidence(session, record_id)
        previous = record.state
        record.state = state.value
        if fraud_flag is not None:
            record.fraud_flag = fraud_flag
        record.updated_at = self._now()
        await session.flush()
        logger.info(
            "Evidence %s moved %s -> %s by %s", record_id, previous, state.value, actor,
        )
        return record

    # ── Token-in-bio profile ownership ──

    async def issue_profile_token(
        self, session: AsyncSession, user_id: str, record_id: str,
    ) -> EvidenceRecordModel:
        """Hand out a token the user must paste into their public profile bio."""
        record = await self._owned_profile(session, user_id, record_id)
        if record.link_state == LinkState.VERIFIED.value:
            raise InvalidStateError("Profile is already verified")
        if record.profile_key:
            result = await session.execute(
                select(EvidenceRecordModel.id).where(
                    EvidenceRecordModel.profile_key == record.profile_key,
                    EvidenceRecordModel.link_state == LinkState.VERIFIED.value,
                    EvidenceRecordModel.user_id != user_id,
                )
            )
            if result.first() is not None:
                raise ForbiddenError("This profile is already verified by another account")

        record.verify_token = f"{PROFILE_TOKEN_PREFIX}{secrets.token_hex(4).upper()}"
        record.verify_token_expires_at = self._now() + PROFILE_TOKEN_TTL
        await session.flush()
        return record

    async def confirm_profile_token(
        self, session: AsyncSession, user_id: str, record_id: str, scraped_bio: str,
    ) -> EvidenceRecordModel:
        """Upgrade a profile link to verified if its token shows up in the bio."""
        record = await self._owned_profile(session, user_id, record_id)
        if record.link_state == LinkState.VERIFIED.value:
            return record
        now = self._now()
        expires = as_utc(record.verify_token_expires_at)
        if not record.verify_token or expires is None or expires <= now:
            raise InvalidStateError("No live verification token; request a new one")
        if record.verify_token not in (scraped_bio or ""):
            raise ValidationError("Verification token not found in profile")

        record.link_state = LinkState.VERIFIED.value
        record.ownership_locked_at = now
        record.verify_token = None
        record.verify_token_expires_at = None
        await session.flush()
        logger.info("Profile %s verified for user %s", record.id, user_id)
        return record

    async def _owned_profile(
        self, session: AsyncSession, user_id: str, record_id: str,
    ) -> EvidenceRecordModel:
        record = await self.get_evidence(session, record_id)
        if record.user_id != user_id:
            raise NotFoundError("Evidence not found")
        if record.kind != EvidenceKind.PROFILE_LINK.value:
            raise ValidationError("Only profile links can be verified this way")
        return record
