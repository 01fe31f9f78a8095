"""Passwordless one-time code issue and verification."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.auth.codes import generate_code, generate_salt, hash_code, verify_code_hash
from passport_engine.auth.dispatch import Dispatcher
from passport_engine.auth.stores import OtpStore, RateLimiter
from passport_engine.common.config import PassportSettings
from passport_engine.common.exceptions import (
    DeliveryFailedError,
    InvalidOrExpiredOtpError,
    RateLimitExceededError,
    ValidationError,
)
from passport_engine.common.logging import hash_email
from passport_engine.common.models import Clock, as_utc, utcnow
from passport_engine.identity.service import normalize_email

logger = logging.getLogger(__name__)


@dataclass
class OtpIssue:
    email: str
    expires_at: datetime


class OtpService:
    """Issues and verifies short-lived numeric login codes.

    The plaintext code exists only in memory between generation and the
    dispatcher call; the store holds a salted HMAC of it.
    """

    def __init__(
        self,
        settings: PassportSettings,
        store: OtpStore,
        rate_limiter: RateLimiter,
        dispatcher: Dispatcher,
        clock: Clock | None = None,
    ):
        self.settings = settings
        self.store = store
        self.rate_limiter = rate_limiter
        self.dispatcher = dispatcher
        self._now = clock or utcnow

    async def request_code(self, session: AsyncSession, email: str) -> OtpIssue:
        """Issue a code and hand it to the dispatcher.

        Raises RateLimitExceededError once the window for this email is full,
        and DeliveryFailedError if the dispatcher reports failure.
        """
        email = normalize_email(email)
        now = self._now()

        allowed = await self.rate_limiter.consume(
            session,
            f"otp:{email}",
            self.settings.otp_requests_per_window,
            self.settings.otp_window_seconds,
            now,
        )
        if not allowed:
            logger.warning("OTP request window exhausted for %s", hash_email(email))
            raise RateLimitExceededError(
                "Too many code requests. Please wait a few minutes and try again."
            )

        code = generate_code(self.settings.otp_length)
        salt = generate_salt()
        expires_at = now + timedelta(seconds=self.settings.otp_ttl_seconds)
        await self.store.replace(
            session, email, salt,
            hash_code(self.settings.secret_key, salt, code),
            now, expires_at,
        )

        minutes = max(1, self.settings.otp_ttl_seconds // 60)
        delivered = await self.dispatcher.send(
            email,
            "Your sign-in code",
            f"Your sign-in code is {code}.\n\n"
            f"It expires in {minutes} minutes. If you did not ask for it, ignore this email.",
        )
        if not delivered:
            await self.store.invalidate(session, email)
            # The window slot stays spent and the code stays dead.
            await session.commit()
            logger.error("OTP delivery failed for %s", hash_email(email))
            raise DeliveryFailedError()

        logger.info("OTP issued for %s", hash_email(email))
        return OtpIssue(email=email, expires_at=expires_at)

    async def verify_code(self, session: AsyncSession, email: str, code: str) -> bool:
        """Return True exactly once for a correct, live code.

        Every failure raises the same InvalidOrExpiredOtpError so callers
        learn nothing about whether the email exists.
        """
        try:
            email = normalize_email(email)
        except ValidationError:
            raise InvalidOrExpiredOtpError() from None
        code = (code or "").strip()
        now = self._now()

        record = await self.store.latest_active(session, email)
        if record is None:
            raise InvalidOrExpiredOtpError()
        if as_utc(record.expires_at) <= now:
            raise InvalidOrExpiredOtpError()
        if record.attempts >= self.settings.otp_max_attempts:
            logger.warning("OTP attempt cap reached for %s", hash_email(email))
            raise InvalidOrExpiredOtpError()

        if not await self.store.increment_attempts(session, record.id, record.attempts):
            raise InvalidOrExpiredOtpError()

        if not verify_code_hash(self.settings.secret_key, record.salt, code, record.code_hash):
            # Keep the spent attempt even though the caller's unit of work fails.
            await session.commit()
            logger.info(
                "OTP mismatch for %s (attempt %d)", hash_email(email), record.attempts + 1,
            )
            raise InvalidOrExpiredOtpError()

        if not await self.store.consume(session, record.id):
            raise InvalidOrExpiredOtpError()

        logger.info("OTP verified for %s", hash_email(email))
        return True

    async def revoke_codes(self, session: AsyncSession, email: str) -> int:
        """Kill every live code for an email."""
        return await self.store.invalidate(session, normalize_email(email))

    async def purge_expired(self, session: AsyncSession) -> dict[str, int]:
        now = self._now()
        codes = await self.store.purge_expired(session, now)
        windows = await self.rate_limiter.purge_expired(session, now)
        logger.info("Purged %d codes and %d request windows", codes, windows)
        return {"codes": codes, "windows": windows}
