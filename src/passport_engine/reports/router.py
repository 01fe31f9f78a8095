"""Reports API router: filing by users, review by staff."""

import base64
import binascii
from typing import Optional

from fastapi import APIRouter, Depends, Query

from passport_engine.common.exceptions import ValidationError
from passport_engine.common.security import (
    StaffContext,
    UserContext,
    require_capability,
    require_user,
)
from passport_engine.reports.models import ReportStatus
from passport_engine.reports.schemas import (
    ReportAdminResponse,
    ReportAttachmentCreate,
    ReportAttachmentResponse,
    ReportCreate,
    ReportResponse,
    ReportReview,
)

router = APIRouter()


def _get_service():
    from passport_engine.deps import get_report_service
    return get_report_service()


def _get_db():
    from passport_engine.deps import get_db
    return get_db()


@router.post("/reports", response_model=ReportResponse, status_code=201)
async def file_report(body: ReportCreate, user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        report = await svc.file_report(
            session, user.user_id, body.reported, body.category, body.description,
        )
        return ReportResponse.model_validate(report)


@router.get("/reports/mine", response_model=list[ReportResponse])
async def my_reports(user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return [ReportResponse.model_validate(r) for r in await svc.my_reports(session, user.user_id)]


@router.get("/reports/{report_id}", response_model=ReportResponse)
async def get_report(report_id: str, user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return ReportResponse.model_validate(await svc.get_report(session, report_id, user.user_id))


@router.post(
    "/reports/{report_id}/evidence",
    response_model=ReportAttachmentResponse,
    status_code=201,
)
async def attach_evidence(
    report_id: str,
    body: ReportAttachmentCreate,
    user: UserContext = Depends(require_user),
):
    try:
        data = base64.b64decode(body.content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("content_base64 is not valid base64") from None
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        attachment = await svc.attach_evidence(
            session, report_id, user.user_id, data, body.content_type,
        )
        return ReportAttachmentResponse.model_validate(attachment)


# ── Admin ──

@router.get("/admin/reports", response_model=list[ReportAdminResponse])
async def list_reports(
    status: Optional[ReportStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _staff: StaffContext = Depends(require_capability("reports.review")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        rows = await svc.list_reports(session, status, limit=limit, offset=offset)
        return [ReportAdminResponse.model_validate(r) for r in rows]


@router.get(
    "/admin/reports/{report_id}/evidence",
    response_model=list[ReportAttachmentResponse],
)
async def list_attachments(
    report_id: str,
    _staff: StaffContext = Depends(require_capability("reports.review")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return [
            ReportAttachmentResponse.model_validate(a)
            for a in await svc.attachments(session, report_id)
        ]


@router.post("/admin/reports/{report_id}/review", response_model=ReportAdminResponse)
async def review_report(
    report_id: str,
    body: ReportReview,
    staff: StaffContext = Depends(require_capability("reports.review")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        report = await svc.review(
            session, report_id, body.status, reviewer=staff.actor, notes=body.notes,
        )
        return ReportAdminResponse.model_validate(report)
