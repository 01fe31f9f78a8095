"""Pydantic schemas for trust score endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class TrustScoreResponse(BaseModel):
    user_id: str
    total: int
    label: str
    identity_score: int
    evidence_score: int
    behaviour_score: int
    trigger: str
    period_key: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TrustScoreBreakdown(BaseModel):
    total: int
    label: str
    identity: int
    evidence: int
    behaviour: int
    components: dict[str, Any] = {}
    computed_at: datetime


class RecalculateResponse(BaseModel):
    user_id: str
    skipped: bool = False
    snapshot: Optional[TrustScoreResponse] = None


class WeeklyRunResponse(BaseModel):
    period_key: str
    processed: int
    skipped: int
    failed: int
