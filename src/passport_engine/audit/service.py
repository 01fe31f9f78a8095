"""Security audit chain — tamper-evident per-user event log.

Each event links to its predecessor by hash and carries an HMAC signature
made with the current keyring entry, so a rewritten or reordered history is
detectable by ``verify_chain``.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.audit.models import AuditEventModel
from passport_engine.common.config import PassportSettings

logger = logging.getLogger(__name__)


@dataclass
class ChainVerification:
    valid: bool
    events_checked: int
    break_at: str | None = None


def event_digest(
    sequence: int,
    event_type: str,
    actor: str,
    detail: dict[str, Any],
    prev_hash: str | None,
) -> str:
    canonical = json.dumps(
        {
            "sequence": sequence,
            "event_type": event_type,
            "actor": actor,
            "detail": detail,
            "prev_hash": prev_hash,
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


class AuditService:
    """Append-only, hash-chained security events per user."""

    def __init__(self, settings: PassportSettings):
        self.settings = settings

    async def record_event(
        self,
        session: AsyncSession,
        user_id: str,
        event_type: str,
        actor: str = "system",
        detail: dict[str, Any] | None = None,
    ) -> AuditEventModel:
        # Round-trip through JSON so the hash covers exactly what is stored.
        detail = json.loads(json.dumps(detail or {}, default=str))
        head = await self.get_chain_head(session, user_id)
        sequence = head.sequence + 1 if head else 1
        prev_hash = head.event_hash if head else None
        digest = event_digest(sequence, event_type, actor, detail, prev_hash)

        event = AuditEventModel(
            user_id=user_id,
            sequence=sequence,
            event_type=event_type,
            actor=actor,
            detail=detail,
            prev_hash=prev_hash,
            event_hash=digest,
            signature=self._sign(digest),
        )
        session.add(event)
        await session.flush()
        logger.debug("Audit %s #%d for user %s", event_type, sequence, user_id)
        return event

    async def get_chain_head(
        self, session: AsyncSession, user_id: str,
    ) -> AuditEventModel | None:
        result = await session.execute(
            select(AuditEventModel)
            .where(AuditEventModel.user_id == user_id)
            .order_by(AuditEventModel.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_events(
        self,
        session: AsyncSession,
        user_id: str,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEventModel]:
        """Newest first."""
        query = select(AuditEventModel).where(AuditEventModel.user_id == user_id)
        if event_type:
            query = query.where(AuditEventModel.event_type == event_type)
        result = await session.execute(
            query.order_by(AuditEventModel.sequence.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def verify_chain(self, session: AsyncSession, user_id: str) -> ChainVerification:
        result = await session.execute(
            select(AuditEventModel)
            .where(AuditEventModel.user_id == user_id)
            .order_by(AuditEventModel.sequence.asc())
        )
        prev_hash = None
        checked = 0
        for event in result.scalars():
            digest = event_digest(
                event.sequence, event.event_type, event.actor, event.detail, event.prev_hash,
            )
            if (
                event.prev_hash != prev_hash
                or event.sequence != checked + 1
                or event.event_hash != digest
                or not self._signature_matches(digest, event.signature)
            ):
                logger.warning("Audit chain for user %s broken at %s", user_id, event.id)
                return ChainVerification(valid=False, events_checked=checked, break_at=event.id)
            prev_hash = event.event_hash
            checked += 1
        return ChainVerification(valid=True, events_checked=checked)

    def _sign(self, digest: str) -> str:
        return hmac.new(
            self.settings.current_hmac_key.encode(), digest.encode(), hashlib.sha256,
        ).hexdigest()

    def _signature_matches(self, digest: str, signature: str) -> bool:
        """Accept a signature from any key still in the keyring."""
        return any(
            hmac.compare_digest(
                hmac.new(key.encode(), digest.encode(), hashlib.sha256).hexdigest(),
                signature,
            )
            for key in self.settings.hmac_keyring.values()
        )
