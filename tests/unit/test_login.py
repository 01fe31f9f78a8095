"""Tests for turning a verified code into an account and a session."""

import pytest
from sqlalchemy import select

from passport_engine.auth.sessions import DeviceInfo
from passport_engine.common.exceptions import ForbiddenError, InvalidOrExpiredOtpError
from passport_engine.identity.models import AccountStatus
from passport_engine.trustscore.models import TrustScoreSnapshotModel
from tests.helpers import make_user


async def _login(db, stack, email="new@example.com", device=None):
    async with db.get_session() as session:
        await stack.otp.request_code(session, email)
    code = stack.dispatcher.last_code(email)
    async with db.get_session() as session:
        return await stack.auth.login_with_code(session, email, code, device)


class TestLogin:
    async def test_first_login_creates_account(self, db, stack):
        result = await _login(db, stack, device=DeviceInfo(device_id="d1", ip_address="10.1.1.1"))
        assert result.created is True
        assert result.user.email == "new@example.com"
        assert result.user.email_verified is True
        assert result.user.signup_ip == "10.1.1.1"
        assert result.tokens.user_id == result.user.id

    async def test_first_login_seeds_trust_score(self, db, stack):
        result = await _login(db, stack)
        async with db.get_session() as session:
            rows = await session.execute(
                select(TrustScoreSnapshotModel).where(
                    TrustScoreSnapshotModel.user_id == result.user.id
                )
            )
            snapshots = list(rows.scalars())
        assert len(snapshots) == 1
        assert snapshots[0].trigger == "event"

    async def test_second_login_reuses_account(self, db, stack):
        first = await _login(db, stack)
        second = await _login(db, stack)
        assert second.created is False
        assert second.user.id == first.user.id
        assert second.tokens.session_id != first.tokens.session_id

    async def test_login_records_audit_event(self, db, stack):
        result = await _login(db, stack)
        async with db.get_session() as session:
            events = await stack.audit.get_events(session, result.user.id, "otp.verified")
        assert len(events) == 1
        assert events[0].detail["new_account"] is True

    async def test_bad_code_creates_nothing(self, db, stack):
        async with db.get_session() as session:
            await stack.otp.request_code(session, "new@example.com")
        code = stack.dispatcher.last_code()
        wrong = "000000" if code != "000000" else "111111"
        with pytest.raises(InvalidOrExpiredOtpError):
            async with db.get_session() as session:
                await stack.auth.login_with_code(session, "new@example.com", wrong)
        async with db.get_session() as session:
            assert await stack.identity.find_by_email(session, "new@example.com") is None

    async def test_suspended_account_refused_and_code_spent(self, db, stack):
        user_id = await make_user(db, stack, "banned@example.com")
        async with db.get_session() as session:
            await stack.identity.set_status(session, user_id, AccountStatus.SUSPENDED, actor="admin")

        async with db.get_session() as session:
            await stack.otp.request_code(session, "banned@example.com")
        code = stack.dispatcher.last_code()

        with pytest.raises(ForbiddenError):
            async with db.get_session() as session:
                await stack.auth.login_with_code(session, "banned@example.com", code)

        with pytest.raises(InvalidOrExpiredOtpError):
            async with db.get_session() as session:
                await stack.auth.login_with_code(session, "banned@example.com", code)

        async with db.get_session() as session:
            assert await stack.sessions.list_sessions(session, user_id) == []
