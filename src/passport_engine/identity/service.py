"""Identity service — registration, lookup, status, external ID verification."""

import logging
import re
import secrets
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.common.config import PassportSettings
from passport_engine.common.exceptions import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from passport_engine.common.logging import hash_email
from passport_engine.common.models import Clock, utcnow
from passport_engine.identity.models import (
    ACCOUNT_TRANSITIONS,
    AccountStatus,
    IdentityVerificationModel,
    UserModel,
    VerificationStatus,
)
from passport_engine.identity.provider import IdentityVerificationProvider

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
_USERNAME_STRIP = re.compile(r"[^a-z0-9_.]")


def normalize_email(email: str) -> str:
    """Lower-case and strip an email, raising ValidationError if malformed."""
    if not isinstance(email, str):
        raise ValidationError("Email is required")
    normalized = email.strip().lower()
    if len(normalized) > 255 or not EMAIL_RE.match(normalized):
        raise ValidationError("Invalid email address")
    return normalized


class IdentityService:
    """Identity registry operations."""

    def __init__(
        self,
        settings: PassportSettings,
        audit_service=None,
        provider: Optional[IdentityVerificationProvider] = None,
        trustscore_service=None,
        clock: Clock | None = None,
    ):
        self.settings = settings
        self.audit_service = audit_service
        self.provider = provider
        self.trustscore_service = trustscore_service
        self._now = clock or utcnow

    # ── Lookup ──

    async def get(self, session: AsyncSession, user_id: str) -> UserModel:
        user = await session.get(UserModel, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def find_by_email(
        self, session: AsyncSession, email: str,
    ) -> UserModel | None:
        result = await session.execute(
            select(UserModel).where(UserModel.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def resolve_identifier(
        self, session: AsyncSession, identifier: str,
    ) -> UserModel:
        """Resolve a username or email to a user, or raise NotFoundError."""
        value = (identifier or "").strip().lower()
        if not value:
            raise ValidationError("A username or email is required")
        result = await session.execute(
            select(UserModel).where(
                or_(UserModel.username == value, UserModel.email == value)
            )
        )
        user = result.scalars().first()
        if user is None:
            raise NotFoundError(f"User '{identifier}' not found")
        return user

    # ── Registration ──

    async def get_or_create(
        self,
        session: AsyncSession,
        email: str,
        signup_ip: str | None = None,
        signup_device_id: str | None = None,
        display_name: str = "",
    ) -> tuple[UserModel, bool]:
        """Return (user, created)."""
        email = normalize_email(email)
        existing = await self.find_by_email(session, email)
        if existing is not None:
            return existing, False

        now = self._now()
        user = UserModel(
            email=email,
            username=await self._unique_username(session, email),
            display_name=display_name or email.split("@")[0],
            account_status=AccountStatus.ACTIVE.value,
            signup_ip=signup_ip,
            signup_device_id=signup_device_id,
            created_at=now,
            updated_at=now,
        )
        session.add(user)
        await session.flush()
        logger.info("Identity created for email %s", hash_email(email))
        return user, True

    async def _unique_username(self, session: AsyncSession, email: str) -> str:
        base = _USERNAME_STRIP.sub("", email.split("@")[0])[:30] or "user"
        candidate = base
        while True:
            taken = await session.execute(
                select(UserModel.id).where(UserModel.username == candidate)
            )
            if taken.first() is None:
                return candidate
            candidate = f"{base}{secrets.randbelow(10000):04d}"

    # ── Flags ──

    async def mark_email_verified(self, session: AsyncSession, user: UserModel) -> None:
        if not user.email_verified:
            user.email_verified = True
            await session.flush()

    async def enable_second_factor(self, session: AsyncSession, user_id: str) -> UserModel:
        user = await self.get(session, user_id)
        user.second_factor_enabled = True
        await session.flush()
        return user

    async def mark_phone_verified(self, session: AsyncSession, user_id: str) -> UserModel:
        user = await self.get(session, user_id)
        user.phone_verified = True
        await session.flush()
        return user

    # ── Status ──

    async def set_status(
        self,
        session: AsyncSession,
        user_id: str,
        status: AccountStatus,
        actor: str = "system",
        reason: str = "",
    ) -> UserModel:
        """Move an account to a new status through the transition table."""
        user = await self.get(session, user_id)
        current = AccountStatus(user.account_status)
        if current == status:
            return user
        if status not in ACCOUNT_TRANSITIONS[current]:
            raise InvalidStateError(
                f"Cannot move account from {current.value} to {status.value}"
            )

        result = await session.execute(
            update(UserModel)
            .where(UserModel.id == user_id, UserModel.account_status == current.value)
            .values(account_status=status.value, updated_at=self._now())
        )
        if result.rowcount != 1:
            raise InvalidStateError("Account status changed concurrently")
        await session.refresh(user)

        if self.audit_service:
            await self.audit_service.record_event(
                session, user_id, "account.status_changed", actor,
                {"from": current.value, "to": status.value, "reason": reason},
            )
        logger.info("Account %s moved %s -> %s", user_id, current.value, status.value)
        return user

    # ── External identity verification ──

    async def start_identity_verification(
        self, session: AsyncSession, user_id: str, reference_id: str,
    ) -> IdentityVerificationModel:
        """Record the provider reference for a user's verification attempt."""
        await self.get(session, user_id)
        if not reference_id or not reference_id.strip():
            raise ValidationError("A verification reference is required")

        row = await self._verification_row(session, user_id)
        if row is None:
            row = IdentityVerificationModel(
                user_id=user_id,
                reference_id=reference_id.strip(),
                status=VerificationStatus.PENDING.value,
            )
            session.add(row)
        elif row.status == VerificationStatus.VERIFIED.value:
            raise InvalidStateError("Identity is already verified")
        else:
            row.reference_id = reference_id.strip()
            row.status = VerificationStatus.PENDING.value
        await session.flush()
        return row

    async def sync_identity_verification(
        self, session: AsyncSession, user_id: str,
    ) -> IdentityVerificationModel:
        """Poll the provider and, on a fresh verification, rescore immediately."""
        row = await self._verification_row(session, user_id)
        if row is None:
            raise NotFoundError("No identity verification in progress")
        if self.provider is None:
            raise InvalidStateError("No identity verification provider configured")

        result = await self.provider.get_status(row.reference_id)
        newly_verified = (
            result.status == VerificationStatus.VERIFIED
            and row.status != VerificationStatus.VERIFIED.value
        )
        row.status = result.status.value
        row.checked_at = result.checked_at
        await session.flush()

        if newly_verified:
            logger.info("Identity verified for user %s", user_id)
            if self.trustscore_service:
                await self.trustscore_service.recalculate(session, user_id, trigger="event")
        return row

    async def is_identity_verified(self, session: AsyncSession, user_id: str) -> bool:
        row = await self._verification_row(session, user_id)
        return row is not None and row.status == VerificationStatus.VERIFIED.value

    async def _verification_row(
        self, session: AsyncSession, user_id: str,
    ) -> IdentityVerificationModel | None:
        result = await session.execute(
            select(IdentityVerificationModel).where(
                IdentityVerificationModel.user_id == user_id
            )
        )
        return result.scalar_one_or_none()
