"""The trust score formula.

Pure and deterministic: for fixed inputs and ``as_of`` the result never
changes. Three components, each clamped to its own range, summed to a total
in 0-1000.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

IDENTITY_MAX = 250
EVIDENCE_MAX = 400
BEHAVIOUR_MAX = 350

EMAIL_VERIFIED_POINTS = 50
IDENTITY_VERIFIED_POINTS = 150
SECOND_FACTOR_POINTS = 30
PHONE_VERIFIED_POINTS = 20

RECEIPT_POINTS, RECEIPT_CAP = 10, 200
SCREENSHOT_POINTS, SCREENSHOT_CAP = 5, 60
VERIFIED_PROFILE_POINTS, LINKED_PROFILE_POINTS, PROFILE_CAP = 20, 8, 80
PEER_POINTS, PEER_CAP = 15, 90

CLEAN_RECORD_BASE = 150
ACCOUNT_AGE_MAX = 100
ACCOUNT_AGE_SCALE_DAYS = 180
CONSISTENCY_MAX = 100
CONSISTENCY_WEEKS = 8
SIGNAL_PENALTY_PER_SEVERITY = 5
VERIFIED_REPORT_PENALTY = 75

LABELS = (
    (801, "very_high"),
    (601, "high"),
    (401, "moderate"),
    (201, "low"),
)


@dataclass
class ScoreInputs:
    account_created_at: datetime
    email_verified: bool = False
    identity_verified: bool = False
    second_factor_enabled: bool = False
    phone_verified: bool = False
    valid_receipts: int = 0
    valid_screenshots: int = 0
    verified_profiles: int = 0
    linked_profiles: int = 0
    peer_confirmations: int = 0
    activity: list[datetime] = field(default_factory=list)
    unresolved_signal_severities: list[int] = field(default_factory=list)
    verified_reports: int = 0


@dataclass
class ScoreResult:
    identity: int
    evidence: int
    behaviour: int
    total: int
    label: str
    breakdown: dict[str, Any] = field(default_factory=dict)


def iso_week_key(moment: datetime) -> str:
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


def label_for(total: int) -> str:
    for floor, label in LABELS:
        if total >= floor:
            return label
    return "high_risk"


def _clamp(value: int, upper: int) -> int:
    return max(0, min(upper, value))


def identity_component(inputs: ScoreInputs) -> tuple[int, dict[str, int]]:
    parts = {
        "email_verified": EMAIL_VERIFIED_POINTS if inputs.email_verified else 0,
        "identity_verified": IDENTITY_VERIFIED_POINTS if inputs.identity_verified else 0,
        "second_factor": SECOND_FACTOR_POINTS if inputs.second_factor_enabled else 0,
        "phone_verified": PHONE_VERIFIED_POINTS if inputs.phone_verified else 0,
    }
    return _clamp(sum(parts.values()), IDENTITY_MAX), parts


def evidence_component(inputs: ScoreInputs) -> tuple[int, dict[str, int]]:
    parts = {
        "receipts": min(RECEIPT_CAP, RECEIPT_POINTS * inputs.valid_receipts),
        "screenshots": min(SCREENSHOT_CAP, SCREENSHOT_POINTS * inputs.valid_screenshots),
        "profiles": min(
            PROFILE_CAP,
            VERIFIED_PROFILE_POINTS * inputs.verified_profiles
            + LINKED_PROFILE_POINTS * inputs.linked_profiles,
        ),
        "peer_verifications": min(PEER_CAP, PEER_POINTS * inputs.peer_confirmations),
    }
    return _clamp(sum(parts.values()), EVIDENCE_MAX), parts


def active_weeks(activity: list[datetime], as_of: datetime) -> int:
    """How many of the last ``CONSISTENCY_WEEKS`` ISO weeks saw activity."""
    window = {iso_week_key(as_of - timedelta(weeks=k)) for k in range(CONSISTENCY_WEEKS)}
    seen = {iso_week_key(moment) for moment in activity if moment <= as_of}
    return len(window & seen)


def behaviour_component(inputs: ScoreInputs, as_of: datetime) -> tuple[int, dict[str, int]]:
    days = max(0.0, (as_of - inputs.account_created_at).total_seconds() / 86400)
    weeks = active_weeks(inputs.activity, as_of)
    parts = {
        "clean_record": CLEAN_RECORD_BASE,
        "account_age": math.floor(ACCOUNT_AGE_MAX * (1 - math.exp(-days / ACCOUNT_AGE_SCALE_DAYS))),
        "login_consistency": math.floor(CONSISTENCY_MAX * weeks / CONSISTENCY_WEEKS),
        "risk_signals": -SIGNAL_PENALTY_PER_SEVERITY * sum(inputs.unresolved_signal_severities),
        "verified_reports": -VERIFIED_REPORT_PENALTY * inputs.verified_reports,
    }
    return _clamp(sum(parts.values()), BEHAVIOUR_MAX), parts


def compute_score(inputs: ScoreInputs, as_of: datetime) -> ScoreResult:
    identity, identity_parts = identity_component(inputs)
    evidence, evidence_parts = evidence_component(inputs)
    behaviour, behaviour_parts = behaviour_component(inputs, as_of)
    total = identity + evidence + behaviour
    return ScoreResult(
        identity=identity,
        evidence=evidence,
        behaviour=behaviour,
        total=total,
        label=label_for(total),
        breakdown={
            "identity": identity_parts,
            "evidence": evidence_parts,
            "behaviour": behaviour_parts,
        },
    )
