"""Tests for the trust score formula (pure functions)."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from passport_engine.trustscore.calculator import (
    BEHAVIOUR_MAX,
    EVIDENCE_MAX,
    IDENTITY_MAX,
    ScoreInputs,
    active_weeks,
    compute_score,
    iso_week_key,
    label_for,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _inputs(**kwargs) -> ScoreInputs:
    return ScoreInputs(account_created_at=NOW, **kwargs)


class TestWorkedExample:
    @pytest.fixture
    def alice(self):
        return _inputs(
            email_verified=True,
            identity_verified=True,
            valid_receipts=5,
            unresolved_signal_severities=[10],
        )

    def test_components(self, alice):
        result = compute_score(alice, NOW)
        assert (result.identity, result.evidence, result.behaviour) == (200, 50, 100)
        assert result.total == 350
        assert result.label == "low"

    def test_peer_confirmation_only_moves_evidence(self, alice):
        before = compute_score(alice, NOW)
        after = compute_score(replace(alice, peer_confirmations=1), NOW)
        assert after.evidence == before.evidence + 15
        assert after.identity == before.identity
        assert after.behaviour == before.behaviour
        assert after.total == 365


class TestComponents:
    def test_empty_account(self):
        result = compute_score(_inputs(), NOW)
        assert (result.identity, result.evidence, result.behaviour) == (0, 0, 150)
        assert result.label == "high_risk"

    def test_every_component_clamped(self):
        result = compute_score(
            ScoreInputs(
                account_created_at=NOW - timedelta(days=3650),
                email_verified=True,
                identity_verified=True,
                second_factor_enabled=True,
                phone_verified=True,
                valid_receipts=500,
                valid_screenshots=500,
                verified_profiles=50,
                linked_profiles=50,
                peer_confirmations=50,
                activity=[NOW - timedelta(weeks=k) for k in range(8)],
            ),
            NOW,
        )
        assert result.identity == IDENTITY_MAX
        assert sum(result.breakdown["evidence"].values()) == 200 + 60 + 80 + 90
        assert result.evidence == EVIDENCE_MAX
        # Account age only approaches its maximum.
        assert result.behaviour == BEHAVIOUR_MAX - 1
        assert result.total == 999

    def test_profiles_share_a_cap(self):
        result = compute_score(_inputs(verified_profiles=3, linked_profiles=3), NOW)
        assert result.breakdown["evidence"]["profiles"] == 80

    def test_behaviour_never_negative(self):
        result = compute_score(_inputs(unresolved_signal_severities=[10] * 10, verified_reports=3), NOW)
        assert result.behaviour == 0

    def test_verified_report_penalty(self):
        result = compute_score(_inputs(verified_reports=1), NOW)
        assert result.behaviour == 75

    def test_account_age_grows_and_flattens(self):
        ages = [
            compute_score(ScoreInputs(account_created_at=NOW - timedelta(days=d)), NOW)
            .breakdown["behaviour"]["account_age"]
            for d in (0, 30, 180, 720, 3650)
        ]
        assert ages == sorted(ages)
        assert ages[0] == 0
        assert ages[-1] <= 100

    def test_deterministic(self):
        inputs = _inputs(valid_receipts=3, activity=[NOW - timedelta(days=3)])
        assert compute_score(inputs, NOW) == compute_score(inputs, NOW)


class TestConsistency:
    def test_counts_distinct_weeks(self):
        activity = [NOW, NOW - timedelta(hours=1), NOW - timedelta(weeks=2)]
        assert active_weeks(activity, NOW) == 2

    def test_ignores_old_and_future_activity(self):
        activity = [NOW - timedelta(weeks=20), NOW + timedelta(days=2)]
        assert active_weeks(activity, NOW) == 0


class TestLabels:
    @pytest.mark.parametrize("total,label", [
        (0, "high_risk"),
        (200, "high_risk"),
        (201, "low"),
        (400, "low"),
        (401, "moderate"),
        (601, "high"),
        (800, "high"),
        (801, "very_high"),
        (1000, "very_high"),
    ])
    def test_bands(self, total, label):
        assert label_for(total) == label

    def test_iso_week_key(self):
        assert iso_week_key(NOW) == "2026-W43"
        assert iso_week_key(datetime(2027, 1, 1, tzinfo=timezone.utc)) == "2026-W53"
