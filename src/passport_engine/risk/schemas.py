"""Pydantic schemas for risk endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from passport_engine.risk.models import RiskSignalType


class RiskSignalResponse(BaseModel):
    id: str
    user_id: str
    signal_type: str
    severity: int
    message: str
    source_key: str
    detail: dict[str, Any] = {}
    resolved: bool
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RiskSignalCreate(BaseModel):
    user_id: str
    signal_type: RiskSignalType
    severity: int = Field(..., ge=1, le=10)
    message: str = Field(default="", max_length=500)


class RiskSummaryResponse(BaseModel):
    user_id: str
    score: int
    account_status: str
    signals: list[RiskSignalResponse] = []


class RiskAssessmentResponse(BaseModel):
    user_id: str
    score: int
    account_status: str
    moved_to_review: bool
    new_signals: list[RiskSignalResponse] = []
