"""Pydantic schemas for report endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from passport_engine.reports.models import ReportCategory, ReportStatus


class ReportCreate(BaseModel):
    # Username or email of the person being reported.
    reported: str = Field(..., min_length=1, max_length=255)
    category: ReportCategory
    description: str = Field(..., max_length=5000)


class ReportAttachmentCreate(BaseModel):
    content_base64: str
    content_type: str = Field(default="application/octet-stream", max_length=100)


class ReportAttachmentResponse(BaseModel):
    id: str
    report_id: str
    blob_url: str
    content_type: str
    size_bytes: int
    created_at: datetime

    model_config = {"from_attributes": True}


class ReportResponse(BaseModel):
    id: str
    reporter_id: str
    reported_id: str
    category: str
    description: str
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ReportAdminResponse(ReportResponse):
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: str = ""


class ReportReview(BaseModel):
    status: ReportStatus
    notes: str = Field(default="", max_length=2000)
