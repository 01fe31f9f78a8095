"""Tests for evidence ingestion, dedup and profile ownership."""

from unittest.mock import AsyncMock

import pytest

from passport_engine.common.exceptions import (
    DuplicateEvidenceError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from passport_engine.evidence.models import EvidenceKind, EvidenceState, LinkState
from passport_engine.evidence.service import (
    EvidenceSubmission,
    content_hash_for,
    normalize_url,
)
from passport_engine.risk.models import RiskSignalType
from tests.helpers import make_user


def _receipt(data=b"receipt-bytes", **kwargs):
    return EvidenceSubmission(
        kind=EvidenceKind.RECEIPT, data=data, content_type="message/rfc822", **kwargs,
    )


def _profile(url, handle=""):
    return EvidenceSubmission(
        kind=EvidenceKind.PROFILE_LINK, source_url=url, claimed_username=handle,
    )


async def _submit(db, stack, user_id, submission):
    async with db.get_session() as session:
        return await stack.evidence.submit_evidence(session, user_id, submission)


@pytest.fixture
async def user_id(db, stack):
    return await make_user(db, stack, "seller@example.com")


class TestNormalization:
    def test_normalize_url(self):
        assert normalize_url("http://WWW.Vinted.co.uk/member/sam/#about") == \
            "https://vinted.co.uk/member/sam"
        assert normalize_url("https://facebook.com/profile.php?id=1001&b=2") == \
            "https://facebook.com/profile.php?b=2&id=1001"

    def test_profile_hash_ignores_host_case_and_slash(self):
        a = content_hash_for(_profile("https://Vinted.co.uk/member/sam"))
        b = content_hash_for(_profile("https://www.vinted.co.uk/member/sam/"))
        assert a == b

    def test_profile_hash_keeps_query(self):
        a = content_hash_for(_profile("https://www.facebook.com/profile.php?id=1001"))
        b = content_hash_for(_profile("https://www.facebook.com/profile.php?id=2002"))
        assert a != b


class TestSubmit:
    async def test_clean_receipt_is_valid(self, db, stack, user_id):
        record = await _submit(db, stack, user_id, _receipt(amount=25.0, currency="gbp"))
        assert record.state == EvidenceState.VALID.value
        assert record.integrity_score == 100
        assert record.currency == "GBP"
        assert record.blob_url in stack.blobs.blobs
        assert record.transaction_date is not None

    async def test_same_bytes_rejected_for_anyone(self, db, stack, user_id):
        other = await make_user(db, stack, "buyer@example.com")
        await _submit(db, stack, user_id, _receipt())
        with pytest.raises(DuplicateEvidenceError):
            await _submit(db, stack, user_id, _receipt())
        with pytest.raises(DuplicateEvidenceError):
            await _submit(db, stack, other, _receipt())
        assert stack.extractor.calls == 1

    async def test_profiles_differing_by_query_are_distinct(self, db, stack, user_id):
        other = await make_user(db, stack, "buyer@example.com")
        base = "https://www.facebook.com/profile.php?id="
        first = await _submit(db, stack, user_id, _profile(base + "1001"))
        second = await _submit(db, stack, other, _profile(base + "2002"))
        assert first.content_hash != second.content_hash
        assert second.profile_url == "https://facebook.com/profile.php?id=2002"

    async def test_losing_insert_race_is_duplicate(self, db, stack, user_id, monkeypatch):
        other = await make_user(db, stack, "buyer@example.com")
        winner = await _submit(db, stack, user_id, _receipt())

        # Second submitter read "no such hash" before the winner committed.
        monkeypatch.setattr(stack.evidence, "_hash_exists", AsyncMock(return_value=False))
        with pytest.raises(DuplicateEvidenceError):
            await _submit(db, stack, other, _receipt())

        async with db.get_session() as session:
            assert await stack.evidence.list_evidence(session, other) == []
        # Same bytes share the winner's content-addressed blob.
        assert list(stack.blobs.blobs) == [winner.blob_url]

    async def test_empty_content_rejected(self, db, stack, user_id):
        with pytest.raises(ValidationError):
            await _submit(db, stack, user_id, _receipt(data=b""))

    async def test_negative_amount_rejected(self, db, stack, user_id):
        with pytest.raises(ValidationError):
            await _submit(db, stack, user_id, _receipt(amount=-1.0))

    async def test_bad_role_rejected(self, db, stack, user_id):
        with pytest.raises(ValidationError):
            await _submit(db, stack, user_id, _receipt(role="broker"))

    async def test_unknown_user(self, db, stack):
        with pytest.raises(NotFoundError):
            await _submit(db, stack, "missing", _receipt())

    async def test_fraudulent_evidence_raises_signal(self, db, stack, user_id):
        stack.extractor.fields = {"template_match": True, "amount": 10, "date": "2026-10-10"}
        record = await _submit(db, stack, user_id, _receipt())
        assert record.fraud_flag is True
        assert record.state == EvidenceState.REJECTED.value

        async with db.get_session() as session:
            signals = await stack.risk.active_signals(session, user_id)
        assert len(signals) == 1
        assert signals[0].signal_type == RiskSignalType.FAKE_EVIDENCE.value
        assert signals[0].severity == 8
        assert signals[0].source_key == f"evidence:{record.id}"

    async def test_suspicious_screenshot_raises_mild_signal(self, db, stack, user_id):
        stack.extractor.fields = {"edited": True}
        record = await _submit(db, stack, user_id, EvidenceSubmission(
            kind=EvidenceKind.SCREENSHOT, data=b"png", content_type="image/png",
        ))
        assert record.state == EvidenceState.SUSPICIOUS.value
        async with db.get_session() as session:
            signals = await stack.risk.active_signals(session, user_id)
        assert [s.severity for s in signals] == [3]

    async def test_submission_is_audited(self, db, stack, user_id):
        record = await _submit(db, stack, user_id, _receipt())
        async with db.get_session() as session:
            events = await stack.audit.get_events(session, user_id, "evidence.submitted")
        assert events[0].detail["evidence_id"] == record.id

    async def test_list_by_kind(self, db, stack, user_id):
        await _submit(db, stack, user_id, _receipt(b"one"))
        await _submit(db, stack, user_id, _receipt(b"two"))
        await _submit(db, stack, user_id, _profile("https://depop.com/sam", "sam"))
        async with db.get_session() as session:
            receipts = await stack.evidence.list_evidence(session, user_id, EvidenceKind.RECEIPT)
            everything = await stack.evidence.list_evidence(session, user_id)
        assert len(receipts) == 2
        assert len(everything) == 3

    async def test_transition_state(self, db, stack, user_id):
        record = await _submit(db, stack, user_id, _receipt())
        async with db.get_session() as session:
            updated = await stack.evidence.transition_state(
                session, record.id, EvidenceState.REJECTED, fraud_flag=True, actor="admin",
            )
        assert updated.state == EvidenceState.REJECTED.value
        assert updated.fraud_flag is True


class TestProfileLinks:
    URL = "https://www.vinted.co.uk/member/sam_sells"

    async def test_profile_link_starts_linked(self, db, stack, user_id):
        record = await _submit(db, stack, user_id, _profile(self.URL, "sam_sells"))
        assert record.link_state == LinkState.LINKED.value
        assert record.platform == "vinted"
        assert record.profile_key == "vinted:sam_sells"
        assert record.blob_url is None

    async def test_invalid_url_rejected(self, db, stack, user_id):
        with pytest.raises(ValidationError):
            await _submit(db, stack, user_id, _profile("ftp://vinted.co.uk/x", "x"))

    async def test_token_in_bio_verifies(self, db, stack, user_id, clock):
        record = await _submit(db, stack, user_id, _profile(self.URL, "sam_sells"))
        async with db.get_session() as session:
            issued = await stack.evidence.issue_profile_token(session, user_id, record.id)
        token = issued.verify_token
        assert token.startswith("PASSPORT-VERIFY-")

        async with db.get_session() as session:
            with pytest.raises(ValidationError):
                await stack.evidence.confirm_profile_token(session, user_id, record.id, "hello")

        async with db.get_session() as session:
            confirmed = await stack.evidence.confirm_profile_token(
                session, user_id, record.id, f"Selling vintage. {token}",
            )
        assert confirmed.link_state == LinkState.VERIFIED.value
        assert confirmed.verify_token is None
        assert confirmed.ownership_locked_at is not None

    async def test_expired_token(self, db, stack, user_id, clock):
        record = await _submit(db, stack, user_id, _profile(self.URL, "sam_sells"))
        async with db.get_session() as session:
            issued = await stack.evidence.issue_profile_token(session, user_id, record.id)
        clock.advance(hours=25)
        async with db.get_session() as session:
            with pytest.raises(InvalidStateError):
                await stack.evidence.confirm_profile_token(
                    session, user_id, record.id, issued.verify_token,
                )

    async def test_verified_profile_is_locked_to_owner(self, db, stack, user_id):
        record = await _submit(db, stack, user_id, _profile(self.URL, "sam_sells"))
        async with db.get_session() as session:
            issued = await stack.evidence.issue_profile_token(session, user_id, record.id)
        async with db.get_session() as session:
            await stack.evidence.confirm_profile_token(
                session, user_id, record.id, issued.verify_token,
            )

        thief = await make_user(db, stack, "thief@example.com")
        copy = await _submit(
            db, stack, thief, _profile("https://vinted.com/member/sam_sells", "sam_sells"),
        )
        async with db.get_session() as session:
            with pytest.raises(ForbiddenError):
                await stack.evidence.issue_profile_token(session, thief, copy.id)

    async def test_only_owner_can_request_token(self, db, stack, user_id):
        record = await _submit(db, stack, user_id, _profile(self.URL, "sam_sells"))
        other = await make_user(db, stack, "other@example.com")
        async with db.get_session() as session:
            with pytest.raises(NotFoundError):
                await stack.evidence.issue_profile_token(session, other, record.id)

    async def test_receipts_cannot_use_token_flow(self, db, stack, user_id):
        record = await _submit(db, stack, user_id, _receipt())
        async with db.get_session() as session:
            with pytest.raises(ValidationError):
                await stack.evidence.issue_profile_token(session, user_id, record.id)

