"""Login orchestration: code check, identity, session."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from passport_engine.auth.otp import OtpService
from passport_engine.auth.sessions import DeviceInfo, SessionService
from passport_engine.auth.tokens import TokenPair
from passport_engine.common.exceptions import ForbiddenError
from passport_engine.identity.models import AccountStatus, UserModel
from passport_engine.identity.service import IdentityService

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: UserModel
    tokens: TokenPair
    created: bool


class AuthService:
    """Turns a verified one-time code into a session."""

    def __init__(
        self,
        otp_service: OtpService,
        session_service: SessionService,
        identity_service: IdentityService,
        audit_service=None,
        risk_service=None,
        trustscore_service=None,
    ):
        self.otp = otp_service
        self.sessions = session_service
        self.identity = identity_service
        self.audit_service = audit_service
        self.risk_service = risk_service
        self.trustscore_service = trustscore_service

    async def login_with_code(
        self,
        session: AsyncSession,
        email: str,
        code: str,
        device: DeviceInfo | None = None,
    ) -> LoginResult:
        device = device or DeviceInfo()
        await self.otp.verify_code(session, email, code)

        user, created = await self.identity.get_or_create(
            session, email,
            signup_ip=device.ip_address or None,
            signup_device_id=device.device_id or None,
        )
        await self.identity.mark_email_verified(session, user)

        if self.audit_service:
            await self.audit_service.record_event(
                session, user.id, "otp.verified", "system",
                {"new_account": created, "ip": device.ip_address},
            )

        if user.account_status == AccountStatus.SUSPENDED.value:
            # The code is spent either way.
            await session.commit()
            logger.warning("Login refused for suspended account %s", user.id)
            raise ForbiddenError("Account suspended")

        tokens = await self.sessions.issue_session(session, user, device)

        if created:
            if self.risk_service:
                await self.risk_service.evaluate(session, user.id)
            if self.trustscore_service:
                await self.trustscore_service.recalculate(session, user.id, trigger="event")
        return LoginResult(user=user, tokens=tokens, created=created)
