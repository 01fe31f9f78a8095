"""Tests for one-time code issue, verification and request windows."""

import logging
from datetime import timedelta

import pytest
from sqlalchemy import Select, insert, update

from passport_engine.auth.models import OneTimeCodeModel, RateLimitWindowModel
from passport_engine.auth.otp import OtpService
from passport_engine.auth.stores import SqlOtpStore
from passport_engine.common.exceptions import (
    DeliveryFailedError,
    InvalidOrExpiredOtpError,
    RateLimitExceededError,
    ValidationError,
)
from tests.fakes import FakeSession, InMemoryOtpStore, InMemoryRateLimiter, RecordingDispatcher
from tests.helpers import interleave


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


async def _request(db, stack, email="a@x.com"):
    async with db.get_session() as session:
        return await stack.otp.request_code(session, email)


async def _verify(db, stack, code, email="a@x.com"):
    async with db.get_session() as session:
        return await stack.otp.verify_code(session, email, code)


class TestRequestCode:
    async def test_issues_code_and_dispatches(self, db, stack):
        issue = await _request(db, stack, "  A@X.com ")
        assert issue.email == "a@x.com"
        assert len(stack.dispatcher.sent) == 1
        code = stack.dispatcher.last_code("a@x.com")
        assert len(code) == 6 and code.isdigit()

    async def test_expiry_is_five_minutes(self, db, stack, clock):
        issue = await _request(db, stack)
        assert (issue.expires_at - clock.now).total_seconds() == 300

    async def test_fourth_request_in_window_is_rate_limited(self, db, stack):
        for _ in range(3):
            await _request(db, stack)
        with pytest.raises(RateLimitExceededError) as exc_info:
            await _request(db, stack)
        assert exc_info.value.code == "rate_limit_exceeded"
        assert exc_info.value.retryable is True
        assert len(stack.dispatcher.sent) == 3

    async def test_window_is_per_email(self, db, stack):
        for _ in range(3):
            await _request(db, stack, "a@x.com")
        await _request(db, stack, "b@x.com")

    async def test_window_resets_after_expiry(self, db, stack, clock):
        for _ in range(3):
            await _request(db, stack)
        clock.advance(seconds=301)
        await _request(db, stack)
        assert len(stack.dispatcher.sent) == 4

    async def test_invalid_email_rejected(self, db, stack):
        with pytest.raises(ValidationError):
            await _request(db, stack, "not-an-email")
        assert stack.dispatcher.sent == []

    async def test_delivery_failure_kills_code_and_spends_slot(self, db, stack):
        stack.dispatcher.fail = True
        with pytest.raises(DeliveryFailedError) as exc_info:
            await _request(db, stack)
        assert exc_info.value.retryable is True

        stack.dispatcher.fail = False
        await _request(db, stack)
        await _request(db, stack)
        with pytest.raises(RateLimitExceededError):
            await _request(db, stack)

    async def test_code_not_in_logs(self, db, stack, caplog, monkeypatch):
        monkeypatch.setattr(logging.getLogger("passport_engine"), "propagate", True)
        caplog.set_level(logging.DEBUG, logger="passport_engine")
        await _request(db, stack)
        code = stack.dispatcher.last_code()
        assert code not in caplog.text


class TestVerifyCode:
    async def test_latest_code_verifies_once(self, db, stack):
        for _ in range(3):
            await _request(db, stack)
        code = stack.dispatcher.last_code()
        assert await _verify(db, stack, code) is True
        with pytest.raises(InvalidOrExpiredOtpError) as exc_info:
            await _verify(db, stack, code)
        assert exc_info.value.code == "invalid_otp"

    async def test_new_code_replaces_old(self, db, stack):
        await _request(db, stack)
        first = stack.dispatcher.last_code()
        await _request(db, stack)
        second = stack.dispatcher.last_code()
        if first != second:
            with pytest.raises(InvalidOrExpiredOtpError):
                await _verify(db, stack, first)
        assert await _verify(db, stack, second) is True

    async def test_wrong_code_fails_generically(self, db, stack):
        await _request(db, stack)
        code = stack.dispatcher.last_code()
        with pytest.raises(InvalidOrExpiredOtpError) as exc_info:
            await _verify(db, stack, _wrong(code))
        assert exc_info.value.message == "Invalid or expired code"

    async def test_unknown_email_fails_generically(self, db, stack):
        with pytest.raises(InvalidOrExpiredOtpError) as exc_info:
            await _verify(db, stack, "123456", email="nobody@x.com")
        assert exc_info.value.message == "Invalid or expired code"

    async def test_malformed_email_fails_generically(self, db, stack):
        with pytest.raises(InvalidOrExpiredOtpError):
            await _verify(db, stack, "123456", email="nope")

    async def test_attempt_cap_locks_code(self, db, stack):
        await _request(db, stack)
        code = stack.dispatcher.last_code()
        for _ in range(5):
            with pytest.raises(InvalidOrExpiredOtpError):
                await _verify(db, stack, _wrong(code))
        with pytest.raises(InvalidOrExpiredOtpError):
            await _verify(db, stack, code)

    async def test_attempts_below_cap_still_allow_success(self, db, stack):
        await _request(db, stack)
        code = stack.dispatcher.last_code()
        for _ in range(4):
            with pytest.raises(InvalidOrExpiredOtpError):
                await _verify(db, stack, _wrong(code))
        assert await _verify(db, stack, code) is True

    async def test_expired_code_fails(self, db, stack, clock):
        await _request(db, stack)
        code = stack.dispatcher.last_code()
        clock.advance(seconds=301)
        with pytest.raises(InvalidOrExpiredOtpError):
            await _verify(db, stack, code)

    async def test_revoke_codes(self, db, stack):
        await _request(db, stack)
        code = stack.dispatcher.last_code()
        async with db.get_session() as session:
            assert await stack.otp.revoke_codes(session, "a@x.com") == 1
        with pytest.raises(InvalidOrExpiredOtpError):
            await _verify(db, stack, code)


class TestLostRaces:
    async def test_code_consumed_by_another_worker(self, db, stack, monkeypatch):
        await _request(db, stack)
        code = stack.dispatcher.last_code()

        async def consume_first(execute):
            await execute(
                update(OneTimeCodeModel)
                .where(OneTimeCodeModel.email == "a@x.com")
                .values(consumed=True)
            )

        with pytest.raises(InvalidOrExpiredOtpError):
            async with db.get_session() as session:
                # Second update on the table is the consume.
                interleave(monkeypatch, session, "otp_codes", consume_first, nth=2)
                await stack.otp.verify_code(session, "a@x.com", code)

        with pytest.raises(InvalidOrExpiredOtpError):
            await _verify(db, stack, code)

    async def test_attempt_counted_by_another_worker(self, db, stack, monkeypatch):
        await _request(db, stack)
        code = stack.dispatcher.last_code()

        async def count_first(execute):
            await execute(
                update(OneTimeCodeModel)
                .where(OneTimeCodeModel.email == "a@x.com")
                .values(attempts=OneTimeCodeModel.attempts + 1)
            )

        with pytest.raises(InvalidOrExpiredOtpError):
            async with db.get_session() as session:
                interleave(monkeypatch, session, "otp_codes", count_first)
                await stack.otp.verify_code(session, "a@x.com", code)

        async with db.get_session() as session:
            record = await SqlOtpStore().latest_active(session, "a@x.com")
        assert record.attempts == 1
        assert record.consumed is False

    async def test_window_opened_by_another_worker(self, db, stack, clock, monkeypatch):
        async def open_first(execute):
            await execute(
                insert(RateLimitWindowModel).values(
                    key="otp:a@x.com", count=1,
                    window_expires_at=clock.now + timedelta(seconds=300),
                )
            )

        with pytest.raises(RateLimitExceededError):
            async with db.get_session() as session:
                interleave(
                    monkeypatch, session, "otp_rate_windows", open_first,
                    kind=Select, after=True,
                )
                await stack.otp.request_code(session, "a@x.com")
        assert stack.dispatcher.sent == []

        # The other worker's slot counts toward the window.
        await _request(db, stack)
        await _request(db, stack)
        with pytest.raises(RateLimitExceededError):
            await _request(db, stack)


class TestPurge:
    async def test_purge_removes_expired_codes_and_windows(self, db, stack, clock):
        await _request(db, stack, "a@x.com")
        await _request(db, stack, "b@x.com")
        clock.advance(minutes=10)
        async with db.get_session() as session:
            counts = await stack.otp.purge_expired(session)
        assert counts == {"codes": 2, "windows": 2}


class TestInMemoryCollaborators:
    @pytest.fixture
    def service(self, settings, clock):
        return OtpService(
            settings, InMemoryOtpStore(), InMemoryRateLimiter(), RecordingDispatcher(),
            clock=clock,
        )

    async def test_fourth_request_limited(self, service):
        session = FakeSession()
        for _ in range(3):
            await service.request_code(session, "a@x.com")
        with pytest.raises(RateLimitExceededError):
            await service.request_code(session, "a@x.com")

    async def test_verifies_once_and_persists_failed_attempt(self, service):
        session = FakeSession()
        await service.request_code(session, "a@x.com")
        code = service.dispatcher.last_code()
        with pytest.raises(InvalidOrExpiredOtpError):
            await service.verify_code(session, "a@x.com", _wrong(code))
        assert session.commits == 1
        assert await service.verify_code(session, "a@x.com", code) is True
        with pytest.raises(InvalidOrExpiredOtpError):
            await service.verify_code(session, "a@x.com", code)
