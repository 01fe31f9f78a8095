"""Persistence seams for one-time codes and request windows.

``OtpStore`` and ``RateLimiter`` are the interfaces the OTP service talks to.
The SQL implementations here make every mutation a single conditional
``UPDATE`` whose row count decides the outcome, so two workers racing on the
same email cannot both win.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.auth.models import OneTimeCodeModel, RateLimitWindowModel
from passport_engine.common.models import as_utc


@dataclass
class OtpRecord:
    id: str
    email: str
    salt: str
    code_hash: str
    expires_at: datetime
    attempts: int
    consumed: bool


class OtpStore(Protocol):
    async def replace(
        self, session: AsyncSession, email: str, salt: str, code_hash: str,
        created_at: datetime, expires_at: datetime,
    ) -> OtpRecord: ...

    async def latest_active(self, session: AsyncSession, email: str) -> OtpRecord | None: ...

    async def increment_attempts(
        self, session: AsyncSession, code_id: str, observed_attempts: int,
    ) -> bool: ...

    async def consume(self, session: AsyncSession, code_id: str) -> bool: ...

    async def invalidate(self, session: AsyncSession, email: str) -> int: ...

    async def purge_expired(self, session: AsyncSession, now: datetime) -> int: ...


class RateLimiter(Protocol):
    async def consume(
        self, session: AsyncSession, key: str, limit: int,
        window_seconds: int, now: datetime,
    ) -> bool: ...

    async def purge_expired(self, session: AsyncSession, now: datetime) -> int: ...


def _to_record(row: OneTimeCodeModel) -> OtpRecord:
    return OtpRecord(
        id=row.id,
        email=row.email,
        salt=row.salt,
        code_hash=row.code_hash,
        expires_at=as_utc(row.expires_at),
        attempts=row.attempts,
        consumed=row.consumed,
    )


class SqlOtpStore:
    """OtpStore backed by the ``otp_codes`` table."""

    async def replace(
        self,
        session: AsyncSession,
        email: str,
        salt: str,
        code_hash: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> OtpRecord:
        """Consume every live code for the email, then insert the new one."""
        await self.invalidate(session, email)
        row = OneTimeCodeModel(
            email=email,
            salt=salt,
            code_hash=code_hash,
            created_at=created_at,
            expires_at=expires_at,
            attempts=0,
            consumed=False,
        )
        session.add(row)
        await session.flush()
        return _to_record(row)

    async def latest_active(self, session: AsyncSession, email: str) -> OtpRecord | None:
        result = await session.execute(
            select(OneTimeCodeModel)
            .where(
                OneTimeCodeModel.email == email,
                OneTimeCodeModel.consumed.is_(False),
            )
            .order_by(OneTimeCodeModel.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_record(row) if row else None

    async def increment_attempts(
        self, session: AsyncSession, code_id: str, observed_attempts: int,
    ) -> bool:
        result = await session.execute(
            update(OneTimeCodeModel)
            .where(
                OneTimeCodeModel.id == code_id,
                OneTimeCodeModel.attempts == observed_attempts,
                OneTimeCodeModel.consumed.is_(False),
            )
            .values(attempts=observed_attempts + 1)
        )
        return result.rowcount == 1

    async def consume(self, session: AsyncSession, code_id: str) -> bool:
        result = await session.execute(
            update(OneTimeCodeModel)
            .where(
                OneTimeCodeModel.id == code_id,
                OneTimeCodeModel.consumed.is_(False),
            )
            .values(consumed=True)
        )
        return result.rowcount == 1

    async def invalidate(self, session: AsyncSession, email: str) -> int:
        result = await session.execute(
            update(OneTimeCodeModel)
            .where(
                OneTimeCodeModel.email == email,
                OneTimeCodeModel.consumed.is_(False),
            )
            .values(consumed=True)
        )
        return result.rowcount

    async def purge_expired(self, session: AsyncSession, now: datetime) -> int:
        result = await session.execute(
            delete(OneTimeCodeModel).where(
                or_(
                    OneTimeCodeModel.expires_at < now,
                    OneTimeCodeModel.consumed.is_(True),
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class SqlRateLimiter:
    """Fixed-window counter backed by the ``otp_rate_windows`` table.

    A window opens on the first request, counts up to ``limit`` and is only
    reset by a request arriving after it has expired.
    """

    async def consume(
        self,
        session: AsyncSession,
        key: str,
        limit: int,
        window_seconds: int,
        now: datetime,
    ) -> bool:
        """Take one slot from the window for ``key``. False when exhausted."""
        new_expiry = now + timedelta(seconds=window_seconds)

        # Expired window: start a fresh one holding this request.
        result = await session.execute(
            update(RateLimitWindowModel)
            .where(
                RateLimitWindowModel.key == key,
                RateLimitWindowModel.window_expires_at <= now,
            )
            .values(count=1, window_expires_at=new_expiry)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return True

        # Live window with room left.
        result = await session.execute(
            update(RateLimitWindowModel)
            .where(
                RateLimitWindowModel.key == key,
                RateLimitWindowModel.window_expires_at > now,
                RateLimitWindowModel.count < limit,
            )
            .values(count=RateLimitWindowModel.count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return True

        existing = await session.execute(
            select(RateLimitWindowModel.id).where(RateLimitWindowModel.key == key)
        )
        if existing.first() is not None:
            return False

        session.add(
            RateLimitWindowModel(key=key, count=1, window_expires_at=new_expiry)
        )
        try:
            await session.flush()
        except IntegrityError:
            # Another worker opened the window first. This is the first write
            # of the unit of work, so rolling back loses nothing else.
            await session.rollback()
            return False
        return True

    async def purge_expired(self, session: AsyncSession, now: datetime) -> int:
        result = await session.execute(
            delete(RateLimitWindowModel).where(
                RateLimitWindowModel.window_expires_at <= now
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
