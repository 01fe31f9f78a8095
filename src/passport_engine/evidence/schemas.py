"""Pydantic schemas for evidence endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from passport_engine.common.schemas import ErrorResponse
from passport_engine.evidence.models import EvidenceKind, EvidenceState


class EvidenceSubmit(BaseModel):
    kind: EvidenceKind
    # Receipts and screenshots: file bytes, base64-encoded.
    content_base64: Optional[str] = None
    content_type: str = Field(default="", max_length=100)
    # Profile links.
    url: Optional[str] = Field(default=None, max_length=500)
    claimed_username: str = Field(default="", max_length=100)
    platform: str = Field(default="", max_length=50)
    amount: Optional[float] = None
    currency: str = Field(default="", max_length=3)
    transaction_date: Optional[datetime] = None
    role: str = Field(default="", max_length=10)


class EvidenceResponse(BaseModel):
    id: str
    kind: str
    state: str
    integrity_score: int
    integrity_reasons: list[str] = []
    fraud_flag: bool
    extraction_confidence: float
    extracted: dict[str, Any] = {}
    platform: str = ""
    amount: Optional[float] = None
    currency: str = ""
    transaction_date: Optional[datetime] = None
    role: str = ""
    profile_url: Optional[str] = None
    claimed_username: str = ""
    link_state: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class EvidenceSubmitResponse(BaseModel):
    evidence: EvidenceResponse
    fraud_detected: bool = False
    warning: Optional[ErrorResponse] = None


class ProfileTokenResponse(BaseModel):
    evidence_id: str
    token: str
    expires_at: datetime
    instructions: str = "Add this token to your public profile bio, then confirm."


class ProfileConfirm(BaseModel):
    # Bio text as scraped from the profile page.
    bio: str = Field(..., max_length=5000)


class EvidenceStateUpdate(BaseModel):
    state: EvidenceState
    fraud_flag: Optional[bool] = None
