"""Pydantic schemas for mutual verification endpoints."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from passport_engine.common.schemas import ErrorResponse
from passport_engine.verification.models import TransactionRole


class VerificationCreate(BaseModel):
    # Username or email of the other party.
    counterparty: str = Field(..., min_length=1, max_length=255)
    item: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., gt=0)
    currency: str = Field(default="GBP", min_length=3, max_length=3)
    role: TransactionRole
    transaction_date: datetime


class VerificationRespond(BaseModel):
    decision: Literal["confirm", "reject"]
    role: Optional[TransactionRole] = None


class VerificationResponse(BaseModel):
    id: str
    user_a_id: str
    user_b_id: str
    item: str
    amount: float
    currency: str
    role_a: str
    role_b: str
    transaction_date: datetime
    status: str
    fraud_flag: bool
    reason: str = ""
    responded_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class VerificationOutcome(BaseModel):
    verification: VerificationResponse
    fraud_detected: bool = False
    warning: Optional[ErrorResponse] = None
