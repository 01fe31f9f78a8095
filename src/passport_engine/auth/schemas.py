"""Pydantic schemas for auth endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class OtpRequest(BaseModel):
    email: str = Field(..., max_length=255)


class OtpRequestResponse(BaseModel):
    email: str
    expires_at: datetime
    message: str = "If the address is valid, a sign-in code is on its way."


class OtpVerifyRequest(BaseModel):
    email: str = Field(..., max_length=255)
    code: str = Field(..., max_length=12)
    device_id: str = Field(default="", max_length=200)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    session_id: str
    user_id: str
    new_account: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=200)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=200)
