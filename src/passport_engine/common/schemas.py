"""Shared Pydantic schemas for Passport-Engine."""

from pydantic import BaseModel

from passport_engine.common.exceptions import PassportError


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "passport-engine"
    database: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    code: str
    retryable: bool = False

    @classmethod
    def from_error(cls, exc: PassportError) -> "ErrorResponse":
        return cls(error=exc.message, code=exc.code, retryable=exc.retryable)
