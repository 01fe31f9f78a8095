"""Pure risk detectors and the composite risk score.

Each detector looks at one slice of pre-gathered facts and returns findings.
A finding's ``source_key`` names the condition it observed; re-running a
detector on unchanged facts yields the same keys.
"""

import hashlib
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from passport_engine.risk.models import RiskSignalType

# Multiplier applied to each unresolved signal's severity.
SIGNAL_WEIGHTS: dict[RiskSignalType, float] = {
    RiskSignalType.FAKE_EVIDENCE: 3.0,
    RiskSignalType.COLLUSION: 2.5,
    RiskSignalType.DEVICE_MISMATCH: 1.0,
    RiskSignalType.IP_RISK: 1.0,
    RiskSignalType.REPORTED: 2.0,
    RiskSignalType.DUPLICATE_ACCOUNT: 2.0,
    RiskSignalType.PROFILE_MISMATCH: 1.5,
    RiskSignalType.SUSPICIOUS_LOGIN: 1.0,
    RiskSignalType.RAPID_ACCOUNT_CREATION: 1.5,
    RiskSignalType.ABNORMAL_ACTIVITY: 1.0,
    RiskSignalType.PROFILE_CONCERN: 0.2,
}

LINEAR_LIMIT = 50.0

REPEATED_REJECTIONS = 3
DEVICE_SPREAD = 3
IP_SPREAD = 5
SHARED_IP_ACCOUNTS = 3
RAPID_SIGNUPS = 3
RAPID_SIGNUP_WINDOW = timedelta(hours=24)
COLLUSION_WINDOW = timedelta(days=30)
COLLUSION_PAIR_COUNT = 3
RECIPROCAL_WINDOW = timedelta(days=7)
IDENTICAL_AMOUNT_WINDOW = timedelta(days=7)


@dataclass
class Finding:
    signal_type: RiskSignalType
    severity: int
    message: str
    source_key: str
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class PairVerification:
    """A mutual verification as seen from one party."""
    id: str
    initiator_id: str
    responder_id: str
    amount: float
    created_at: datetime
    status: str


@dataclass
class LoginFact:
    device_id: str
    ip_address: str


@dataclass
class RiskInputs:
    user_id: str
    now: datetime
    signup_device_id: Optional[str] = None
    signup_ip: Optional[str] = None
    rejected_evidence_ids: list[str] = field(default_factory=list)
    recent_logins: list[LoginFact] = field(default_factory=list)
    verified_report_ids: list[str] = field(default_factory=list)
    accounts_sharing_device: list[str] = field(default_factory=list)
    accounts_sharing_ip: list[str] = field(default_factory=list)
    email_alias_matches: list[str] = field(default_factory=list)
    recent_signups_from_ip: int = 0
    verifications: list[PairVerification] = field(default_factory=list)


def canonical_email(email: str) -> str:
    """Collapse '+tag' aliases, and dots for Gmail, to one mailbox."""
    local, _, domain = email.strip().lower().partition("@")
    local = local.split("+", 1)[0]
    if domain in ("gmail.com", "googlemail.com"):
        local = local.replace(".", "")
        domain = "gmail.com"
    return f"{local}@{domain}"


def pair_key(a: str, b: str) -> str:
    return ":".join(sorted((a, b)))


def composite_score(signals: Iterable[tuple[RiskSignalType, int]]) -> int:
    """
    Weighted sum of unresolved severities, compressed above 50.

    raw <= 50 → raw
    raw > 50  → 50 + 50 * (1 - exp(-(raw - 50) / 50))
    Result is clamped to 0-100.
    """
    raw = sum(SIGNAL_WEIGHTS.get(t, 1.0) * s for t, s in signals)
    if raw > LINEAR_LIMIT:
        raw = LINEAR_LIMIT + 50.0 * (1.0 - math.exp(-(raw - LINEAR_LIMIT) / 50.0))
    return int(max(0, min(100, round(raw))))


# ── Detectors ──


def detect_repeated_rejections(inputs: RiskInputs) -> list[Finding]:
    count = len(inputs.rejected_evidence_ids)
    if count < REPEATED_REJECTIONS:
        return []
    return [Finding(
        RiskSignalType.FAKE_EVIDENCE,
        min(10, 2 + count),
        f"{count} evidence submissions rejected",
        "evidence:repeated_rejections",
        {"evidence_ids": inputs.rejected_evidence_ids[:20]},
    )]


def detect_login_spread(inputs: RiskInputs) -> list[Finding]:
    findings = []
    devices = {
        f.device_id for f in inputs.recent_logins
        if f.device_id and f.device_id != inputs.signup_device_id
    }
    if len(devices) >= DEVICE_SPREAD:
        findings.append(Finding(
            RiskSignalType.DEVICE_MISMATCH,
            3,
            f"Signed in from {len(devices)} unfamiliar devices",
            "login:device_spread",
            {"devices": len(devices)},
        ))
    ips = {f.ip_address for f in inputs.recent_logins if f.ip_address}
    if len(ips) >= IP_SPREAD:
        findings.append(Finding(
            RiskSignalType.SUSPICIOUS_LOGIN,
            2,
            f"Signed in from {len(ips)} addresses",
            "login:ip_spread",
            {"addresses": len(ips)},
        ))
    return findings


def detect_verified_reports(inputs: RiskInputs) -> list[Finding]:
    return [
        Finding(
            RiskSignalType.REPORTED, 5, "Verified report against this account",
            f"report:{report_id}", {"report_id": report_id},
        )
        for report_id in inputs.verified_report_ids
    ]


def detect_duplicate_accounts(inputs: RiskInputs) -> list[Finding]:
    findings = []
    if inputs.accounts_sharing_device:
        findings.append(Finding(
            RiskSignalType.DUPLICATE_ACCOUNT,
            6,
            f"Signup device shared with {len(inputs.accounts_sharing_device)} other account(s)",
            "duplicate:device",
            {"accounts": inputs.accounts_sharing_device[:20]},
        ))
    if inputs.email_alias_matches:
        findings.append(Finding(
            RiskSignalType.DUPLICATE_ACCOUNT,
            5,
            "Email is an alias of an existing account",
            "duplicate:email_alias",
            {"accounts": inputs.email_alias_matches[:20]},
        ))
    if len(inputs.accounts_sharing_ip) + 1 >= SHARED_IP_ACCOUNTS:
        findings.append(Finding(
            RiskSignalType.IP_RISK,
            3,
            f"Signup address used by {len(inputs.accounts_sharing_ip) + 1} accounts",
            "duplicate:shared_ip",
            {"accounts": inputs.accounts_sharing_ip[:20]},
        ))
    return findings


def detect_rapid_creation(inputs: RiskInputs) -> list[Finding]:
    if not inputs.signup_ip or inputs.recent_signups_from_ip < RAPID_SIGNUPS:
        return []
    ip_digest = hashlib.sha256(inputs.signup_ip.encode()).hexdigest()[:12]
    return [Finding(
        RiskSignalType.RAPID_ACCOUNT_CREATION,
        4,
        f"{inputs.recent_signups_from_ip} accounts created from one address within a day",
        f"rapid_creation:{ip_digest}",
        {"count": inputs.recent_signups_from_ip},
    )]


def detect_collusion(
    user_id: str, verifications: list[PairVerification], now: datetime,
) -> list[Finding]:
    """Look for verification patterns that suggest a pair is farming scores.

    ``verifications`` should hold the user's non-rejected verifications; a
    candidate about to be confirmed may be included.
    """
    by_counterparty: dict[str, list[PairVerification]] = {}
    for v in verifications:
        if now - v.created_at > COLLUSION_WINDOW:
            continue
        other = v.responder_id if v.initiator_id == user_id else v.initiator_id
        by_counterparty.setdefault(other, []).append(v)

    findings = []
    for other, items in by_counterparty.items():
        key = pair_key(user_id, other)
        detail = {"counterparty": other, "verification_ids": [v.id for v in items]}

        if len(items) >= COLLUSION_PAIR_COUNT:
            findings.append(Finding(
                RiskSignalType.COLLUSION, 7,
                f"{len(items)} verifications with the same person within 30 days",
                f"collusion:{key}:repeated", detail,
            ))

        outgoing = [v for v in items if v.initiator_id == user_id]
        incoming = [v for v in items if v.initiator_id == other]
        if any(
            abs(a.created_at - b.created_at) <= RECIPROCAL_WINDOW
            for a in outgoing for b in incoming
        ):
            findings.append(Finding(
                RiskSignalType.COLLUSION, 6,
                "Reciprocal verifications within 7 days",
                f"collusion:{key}:reciprocal", detail,
            ))

        recent = sorted(items, key=lambda v: v.created_at)
        for i, a in enumerate(recent):
            if any(
                b.amount == a.amount and b.created_at - a.created_at <= IDENTICAL_AMOUNT_WINDOW
                for b in recent[i + 1:]
            ):
                findings.append(Finding(
                    RiskSignalType.COLLUSION, 5,
                    "Repeated identical amounts between the same pair",
                    f"collusion:{key}:amounts", detail,
                ))
                break
    return findings


def run_detectors(inputs: RiskInputs) -> list[Finding]:
    findings: list[Finding] = []
    findings += detect_repeated_rejections(inputs)
    findings += detect_login_spread(inputs)
    findings += detect_verified_reports(inputs)
    findings += detect_duplicate_accounts(inputs)
    findings += detect_rapid_creation(inputs)
    findings += detect_collusion(inputs.user_id, inputs.verifications, inputs.now)
    return findings
