"""Session service — issue, rotate, revoke and authenticate sessions."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.auth.models import SessionModel, SupersededRefreshTokenModel
from passport_engine.auth.tokens import (
    AccessTokenSigner,
    TokenPair,
    generate_refresh_token,
    hash_refresh_token,
)
from passport_engine.common.config import PassportSettings
from passport_engine.common.exceptions import UnauthorizedError
from passport_engine.common.models import Clock, as_utc, utcnow
from passport_engine.identity.models import UserModel

logger = logging.getLogger(__name__)

# Refresh `last_used_at` at most this often from access-token checks.
_TOUCH_INTERVAL = timedelta(hours=1)


@dataclass
class DeviceInfo:
    device_id: str = ""
    ip_address: str = ""
    user_agent: str = ""


class SessionService:
    """Refresh-token sessions with rotation and replay detection.

    Each session holds the hash of exactly one live refresh token. Every
    rotation records the replaced hash; presenting a replaced hash later
    means the token was copied, and the whole session is revoked.
    """

    def __init__(
        self,
        settings: PassportSettings,
        audit_service=None,
        clock: Clock | None = None,
    ):
        self.settings = settings
        self.audit_service = audit_service
        self.signer = AccessTokenSigner(settings.secret_key, settings.access_token_ttl)
        self._now = clock or utcnow

    async def issue_session(
        self,
        session: AsyncSession,
        user: UserModel,
        device: DeviceInfo | None = None,
    ) -> TokenPair:
        device = device or DeviceInfo()
        now = self._now()
        refresh_token = generate_refresh_token()
        expires_at = now + timedelta(seconds=self.settings.refresh_token_ttl)

        row = SessionModel(
            user_id=user.id,
            refresh_token_hash=hash_refresh_token(refresh_token),
            expires_at=expires_at,
            device_id=device.device_id[:200],
            ip_address=device.ip_address[:50],
            user_agent=device.user_agent[:500],
            active=True,
            last_used_at=now,
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        await session.flush()

        if self.audit_service:
            await self.audit_service.record_event(
                session, user.id, "session.issued", "system",
                {"session_id": row.id, "device_id": row.device_id, "ip": row.ip_address},
            )
        logger.info("Session %s issued for user %s", row.id, user.id)
        return self._pair(user.id, row.id, refresh_token, expires_at)

    async def refresh_session(self, session: AsyncSession, refresh_token: str) -> TokenPair:
        """Rotate a refresh token. Replay of a rotated-away token revokes the session."""
        token_hash = hash_refresh_token(refresh_token or "")
        now = self._now()

        result = await session.execute(
            select(SessionModel).where(SessionModel.refresh_token_hash == token_hash)
        )
        row = result.scalar_one_or_none()
        if row is None:
            superseded = await session.get(SupersededRefreshTokenModel, token_hash)
            if superseded is not None:
                await self._revoke_for_replay(session, superseded.session_id)
            raise UnauthorizedError()

        if not row.active or as_utc(row.expires_at) <= now:
            raise UnauthorizedError()

        new_token = generate_refresh_token()
        new_expiry = now + timedelta(seconds=self.settings.refresh_token_ttl)
        result = await session.execute(
            update(SessionModel)
            .where(
                SessionModel.id == row.id,
                SessionModel.refresh_token_hash == token_hash,
                SessionModel.active.is_(True),
            )
            .values(
                refresh_token_hash=hash_refresh_token(new_token),
                expires_at=new_expiry,
                last_used_at=now,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            # Someone else rotated this exact token first.
            await self._revoke_for_replay(session, row.id)
            raise UnauthorizedError()

        session.add(
            SupersededRefreshTokenModel(
                token_hash=token_hash, session_id=row.id, superseded_at=now,
            )
        )
        await session.flush()

        if self.audit_service:
            await self.audit_service.record_event(
                session, row.user_id, "session.rotated", "system", {"session_id": row.id},
            )
        return self._pair(row.user_id, row.id, new_token, new_expiry)

    async def revoke_session(
        self,
        session: AsyncSession,
        refresh_token: str | None = None,
        session_id: str | None = None,
        reason: str = "logout",
    ) -> bool:
        """Mark one session inactive. Returns False if nothing matched."""
        if refresh_token is not None:
            result = await session.execute(
                select(SessionModel).where(
                    SessionModel.refresh_token_hash == hash_refresh_token(refresh_token)
                )
            )
            row = result.scalar_one_or_none()
        elif session_id is not None:
            row = await session.get(SessionModel, session_id)
        else:
            raise ValueError("refresh_token or session_id is required")
        if row is None or not row.active:
            return False

        result = await session.execute(
            update(SessionModel)
            .where(SessionModel.id == row.id, SessionModel.active.is_(True))
            .values(active=False, revoke_reason=reason, updated_at=self._now())
        )
        if result.rowcount != 1:
            return False

        if self.audit_service:
            await self.audit_service.record_event(
                session, row.user_id, "session.revoked", "system",
                {"session_id": row.id, "reason": reason},
            )
        logger.info("Session %s revoked (%s)", row.id, reason)
        return True

    async def revoke_all(
        self, session: AsyncSession, user_id: str, reason: str = "revoked_all",
    ) -> int:
        """Sign a user out everywhere."""
        result = await session.execute(
            update(SessionModel)
            .where(SessionModel.user_id == user_id, SessionModel.active.is_(True))
            .values(active=False, revoke_reason=reason, updated_at=self._now())
        )
        if result.rowcount and self.audit_service:
            await self.audit_service.record_event(
                session, user_id, "session.revoked", "system",
                {"all": True, "count": result.rowcount, "reason": reason},
            )
        return result.rowcount

    async def authenticate(
        self, session: AsyncSession, access_token: str,
    ) -> tuple[UserModel, SessionModel]:
        """Resolve a bearer access token to its user and live session."""
        payload = self.signer.load(access_token)
        now = self._now()

        row = await session.get(SessionModel, payload["sid"])
        if (
            row is None
            or not row.active
            or row.user_id != payload["sub"]
            or as_utc(row.expires_at) <= now
        ):
            raise UnauthorizedError()

        user = await session.get(UserModel, row.user_id)
        if user is None:
            raise UnauthorizedError()

        last_used = as_utc(row.last_used_at)
        if last_used is None or now - last_used >= _TOUCH_INTERVAL:
            row.last_used_at = now
            await session.flush()
        return user, row

    async def list_sessions(self, session: AsyncSession, user_id: str) -> list[SessionModel]:
        result = await session.execute(
            select(SessionModel)
            .where(SessionModel.user_id == user_id, SessionModel.active.is_(True))
            .order_by(SessionModel.created_at.desc())
        )
        return list(result.scalars().all())

    # ── Internal helpers ──

    async def _revoke_for_replay(self, session: AsyncSession, session_id: str) -> None:
        row = await session.get(SessionModel, session_id)
        if row is None:
            return
        await session.execute(
            update(SessionModel)
            .where(SessionModel.id == session_id)
            .values(active=False, revoke_reason="replay_detected", updated_at=self._now())
        )
        if self.audit_service:
            await self.audit_service.record_event(
                session, row.user_id, "session.replay_detected", "system",
                {"session_id": session_id},
            )
        # Revocation must outlive the Unauthorized raised by the caller.
        await session.commit()
        logger.warning("Refresh token replay on session %s; session revoked", session_id)

    def _pair(
        self, user_id: str, session_id: str, refresh_token: str, refresh_expires_at: datetime,
    ) -> TokenPair:
        return TokenPair(
            access_token=self.signer.sign(user_id, session_id),
            refresh_token=refresh_token,
            session_id=session_id,
            user_id=user_id,
            access_expires_in=self.settings.access_token_ttl,
            refresh_expires_at=refresh_expires_at,
        )
