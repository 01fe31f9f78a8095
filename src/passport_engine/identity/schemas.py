"""Pydantic schemas for identity endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from passport_engine.identity.models import AccountStatus


class UserResponse(BaseModel):
    id: str
    email: str
    username: str
    display_name: str
    email_verified: bool
    phone_verified: bool
    second_factor_enabled: bool
    account_status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class PublicProfileResponse(BaseModel):
    username: str
    display_name: str
    account_status: str
    member_since: datetime


class IdentityVerificationStart(BaseModel):
    reference_id: str = Field(..., min_length=1, max_length=255)


class IdentityVerificationResponse(BaseModel):
    user_id: str
    reference_id: str
    status: str
    checked_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AccountStatusUpdate(BaseModel):
    status: AccountStatus
    reason: str = Field(default="", max_length=500)


class SessionResponse(BaseModel):
    id: str
    device_id: str
    ip_address: str
    user_agent: str
    created_at: datetime
    last_used_at: Optional[datetime] = None
    expires_at: datetime
    current: bool = False
