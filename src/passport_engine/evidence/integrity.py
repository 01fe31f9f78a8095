"""Integrity scoring for submitted evidence.

Pure functions: same inputs, same score. The score starts at 100 and loses
points for each weakness found in the extracted fields.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from difflib import SequenceMatcher
from typing import Any, Optional

from passport_engine.evidence.models import EvidenceKind, EvidenceState

LOW_CONFIDENCE_PENALTY = 25
MEDIUM_CONFIDENCE_PENALTY = 10
NO_AUTH_HEADERS_PENALTY = 30
FORWARDED_PENALTY = 10
NO_LIVE_CAPTURE_PENALTY = 20
EDITED_METADATA_PENALTY = 25
TIMESTAMP_SKEW_PENALTY = 20
MISSING_FIELDS_PENALTY = 10
USERNAME_MISMATCH_MAX_PENALTY = 40
TEMPLATE_MATCH_PENALTY = 50

MAX_DATE_SKEW = timedelta(days=7)


@dataclass
class IntegrityResult:
    score: int
    state: EvidenceState
    fraud_flag: bool
    reasons: list[str] = field(default_factory=list)


def parse_date(value: Any) -> Optional[datetime]:
    """Best-effort ISO-8601 parse, UTC when no zone is given."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def username_similarity(a: str, b: str) -> float:
    """Similarity in [0, 1] of two handles, ignoring case and a leading '@'."""
    a = (a or "").strip().lstrip("@").lower()
    b = (b or "").strip().lstrip("@").lower()
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def classify(
    score: int, fraud_flag: bool, valid_threshold: int = 60, reject_floor: int = 30,
) -> EvidenceState:
    """
    Map a score to a state.

    fraud flag or score < reject_floor → rejected
    score >= valid_threshold           → valid
    else                               → suspicious
    """
    if fraud_flag or score < reject_floor:
        return EvidenceState.REJECTED
    if score >= valid_threshold:
        return EvidenceState.VALID
    return EvidenceState.SUSPICIOUS


def score_integrity(
    kind: EvidenceKind,
    fields: dict[str, Any],
    confidence: float,
    now: datetime,
    claimed_username: str = "",
    claimed_date: Optional[datetime] = None,
    amount: Optional[float] = None,
    valid_threshold: int = 60,
    reject_floor: int = 30,
) -> IntegrityResult:
    """Score one piece of evidence from its extracted fields."""
    score = 100
    reasons: list[str] = []
    fraud_flag = False

    def deduct(points: int, reason: str) -> None:
        nonlocal score
        score -= points
        reasons.append(reason)

    if confidence < 0.5:
        deduct(LOW_CONFIDENCE_PENALTY, "low_extraction_confidence")
    elif confidence < 0.8:
        deduct(MEDIUM_CONFIDENCE_PENALTY, "medium_extraction_confidence")

    if kind == EvidenceKind.RECEIPT:
        if not fields.get("auth_headers_present"):
            deduct(NO_AUTH_HEADERS_PENALTY, "missing_authenticated_source")
        if fields.get("forwarded"):
            deduct(FORWARDED_PENALTY, "forwarded_message")
        if amount is None and fields.get("amount") in (None, ""):
            deduct(MISSING_FIELDS_PENALTY, "missing_amount_or_date")
        elif claimed_date is None and parse_date(fields.get("date")) is None:
            deduct(MISSING_FIELDS_PENALTY, "missing_amount_or_date")

    elif kind == EvidenceKind.SCREENSHOT:
        if not fields.get("live_capture"):
            deduct(NO_LIVE_CAPTURE_PENALTY, "no_live_capture_attestation")
        if fields.get("edited"):
            deduct(EDITED_METADATA_PENALTY, "edited_image_metadata")

    elif kind == EvidenceKind.PROFILE_LINK:
        scraped = str(fields.get("username") or "")
        if claimed_username and scraped:
            similarity = username_similarity(claimed_username, scraped)
            penalty = round(USERNAME_MISMATCH_MAX_PENALTY * (1.0 - similarity))
            if penalty > 0:
                deduct(penalty, "username_mismatch")
        elif claimed_username:
            deduct(USERNAME_MISMATCH_MAX_PENALTY, "username_mismatch")

    if _has_timestamp_skew(fields, claimed_date, now):
        deduct(TIMESTAMP_SKEW_PENALTY, "timestamp_skew")

    if fields.get("template_match"):
        deduct(TEMPLATE_MATCH_PENALTY, "template_match")
        fraud_flag = True

    score = max(0, min(100, score))
    return IntegrityResult(
        score=score,
        state=classify(score, fraud_flag, valid_threshold, reject_floor),
        fraud_flag=fraud_flag,
        reasons=reasons,
    )


def _has_timestamp_skew(
    fields: dict[str, Any], claimed_date: Optional[datetime], now: datetime,
) -> bool:
    claimed = parse_date(claimed_date) or parse_date(fields.get("date"))
    metadata = parse_date(fields.get("metadata_date"))
    tolerance = timedelta(days=1)
    for value in (claimed, metadata):
        if value is not None and value > now + tolerance:
            return True
    if claimed is not None and metadata is not None:
        return abs(claimed - metadata) > MAX_DATE_SKEW
    return False
