"""Tests for the report pipeline."""

import pytest

from passport_engine.common.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    RateLimitExceededError,
    SelfReportError,
    ValidationError,
)
from passport_engine.reports.models import ReportStatus
from passport_engine.risk.models import RiskSignalType
from tests.helpers import build_stack, make_settings, make_user

DESCRIPTION = "Item never arrived and the seller stopped replying to messages."


@pytest.fixture
async def people(db, stack):
    reporter = await make_user(db, stack, "reporter@example.com")
    reported = await make_user(db, stack, "reported@example.com")
    return reporter, reported


async def _file(db, stack, reporter, target="reported@example.com",
                category="item_not_received", description=DESCRIPTION):
    async with db.get_session() as session:
        return await stack.reports.file_report(session, reporter, target, category, description)


async def _review(db, stack, report_id, status, reviewer="admin", notes=""):
    async with db.get_session() as session:
        return await stack.reports.review(session, report_id, status, reviewer, notes)


class TestFile:
    async def test_file_report(self, db, stack, people):
        reporter, reported = people
        report = await _file(db, stack, reporter)
        assert report.reported_id == reported
        assert report.status == ReportStatus.PENDING.value

    async def test_short_description(self, db, stack, people):
        reporter, _ = people
        with pytest.raises(ValidationError):
            await _file(db, stack, reporter, description="too short")

    async def test_long_description(self, db, stack, people):
        reporter, _ = people
        with pytest.raises(ValidationError):
            await _file(db, stack, reporter, description="x" * 2001)

    async def test_unknown_category(self, db, stack, people):
        reporter, _ = people
        with pytest.raises(ValidationError):
            await _file(db, stack, reporter, category="rude")

    async def test_cannot_report_self(self, db, stack, people):
        reporter, _ = people
        with pytest.raises(SelfReportError):
            await _file(db, stack, reporter, target="reporter@example.com")

    async def test_unknown_target(self, db, stack, people):
        reporter, _ = people
        with pytest.raises(NotFoundError):
            await _file(db, stack, reporter, target="ghost@example.com")

    async def test_five_per_day(self, db, stack, people, clock):
        reporter, _ = people
        for _ in range(5):
            await _file(db, stack, reporter)
        with pytest.raises(RateLimitExceededError) as exc_info:
            await _file(db, stack, reporter)
        assert exc_info.value.retryable is True

        clock.advance(hours=25)
        await _file(db, stack, reporter)

    async def test_verified_identity_requirement(self, db, people, clock):
        strict = build_stack(make_settings(reports_require_verified_identity=True), clock)
        reporter, _ = people
        with pytest.raises(ForbiddenError):
            await _file(db, strict, reporter)

        async with db.get_session() as session:
            await strict.identity.start_identity_verification(session, reporter, "ref-1")
            await strict.identity.sync_identity_verification(session, reporter)
        await _file(db, strict, reporter)


class TestReview:
    async def test_verified_report_raises_signal(self, db, stack, people):
        reporter, reported = people
        report = await _file(db, stack, reporter)
        reviewed = await _review(db, stack, report.id, "verified", notes="Confirmed with courier")
        assert reviewed.status == ReportStatus.VERIFIED.value
        assert reviewed.reviewed_by == "admin"
        assert reviewed.review_notes == "Confirmed with courier"

        async with db.get_session() as session:
            signals = await stack.risk.active_signals(session, reported)
            assert [(s.signal_type, s.severity) for s in signals] == [
                (RiskSignalType.REPORTED.value, 5),
            ]
            assert await stack.risk.active_signals(session, reporter) == []

    async def test_dismissed_raises_nothing(self, db, stack, people):
        reporter, reported = people
        report = await _file(db, stack, reporter)
        await _review(db, stack, report.id, "under_review")
        await _review(db, stack, report.id, "dismissed")
        async with db.get_session() as session:
            assert await stack.risk.active_signals(session, reported) == []

    async def test_terminal_states_are_final(self, db, stack, people):
        reporter, _ = people
        report = await _file(db, stack, reporter)
        await _review(db, stack, report.id, "dismissed")
        with pytest.raises(InvalidStateError):
            await _review(db, stack, report.id, "verified")

    async def test_cannot_go_back_to_pending(self, db, stack, people):
        reporter, _ = people
        report = await _file(db, stack, reporter)
        with pytest.raises(InvalidStateError):
            await _review(db, stack, report.id, "pending")

    async def test_unknown_status(self, db, stack, people):
        reporter, _ = people
        report = await _file(db, stack, reporter)
        with pytest.raises(ValidationError):
            await _review(db, stack, report.id, "closed")

    async def test_list_by_status(self, db, stack, people):
        reporter, _ = people
        first = await _file(db, stack, reporter)
        await _file(db, stack, reporter)
        await _review(db, stack, first.id, "under_review")
        async with db.get_session() as session:
            pending = await stack.reports.list_reports(session, ReportStatus.PENDING)
            everything = await stack.reports.list_reports(session)
        assert len(pending) == 1
        assert len(everything) == 2


class TestAttachments:
    async def test_reporter_attaches_file(self, db, stack, people):
        reporter, _ = people
        report = await _file(db, stack, reporter)
        async with db.get_session() as session:
            attachment = await stack.reports.attach_evidence(
                session, report.id, reporter, b"\x89PNG...", "image/png",
            )
        assert attachment.size_bytes == 7
        assert stack.blobs.blobs[attachment.blob_url] == b"\x89PNG..."
        async with db.get_session() as session:
            assert len(await stack.reports.attachments(session, report.id)) == 1

    async def test_others_cannot_attach_or_view(self, db, stack, people):
        reporter, reported = people
        report = await _file(db, stack, reporter)
        async with db.get_session() as session:
            with pytest.raises(ForbiddenError):
                await stack.reports.attach_evidence(session, report.id, reported, b"x", "text/plain")
            with pytest.raises(ForbiddenError):
                await stack.reports.get_report(session, report.id, reported)

    async def test_empty_file(self, db, stack, people):
        reporter, _ = people
        report = await _file(db, stack, reporter)
        async with db.get_session() as session:
            with pytest.raises(ValidationError):
                await stack.reports.attach_evidence(session, report.id, reporter, b"", "text/plain")
