"""Evidence API router."""

import base64
import binascii

from fastapi import APIRouter, Depends, Query

from passport_engine.common.exceptions import FraudDetectedError, NotFoundError, ValidationError
from passport_engine.common.schemas import ErrorResponse
from passport_engine.common.security import (
    StaffContext,
    UserContext,
    require_capability,
    require_user,
)
from passport_engine.evidence.models import EvidenceKind
from passport_engine.evidence.schemas import (
    EvidenceResponse,
    EvidenceStateUpdate,
    EvidenceSubmit,
    EvidenceSubmitResponse,
    ProfileConfirm,
    ProfileTokenResponse,
)
from passport_engine.evidence.service import EvidenceSubmission

router = APIRouter()


def _get_service():
    from passport_engine.deps import get_evidence_service
    return get_evidence_service()


def _get_db():
    from passport_engine.deps import get_db
    return get_db()


def _decode(content: str | None) -> bytes | None:
    if not content:
        return None
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("content_base64 is not valid base64") from None


@router.post("/evidence", response_model=EvidenceSubmitResponse, status_code=201)
async def submit_evidence(body: EvidenceSubmit, user: UserContext = Depends(require_user)):
    submission = EvidenceSubmission(
        kind=body.kind,
        data=_decode(body.content_base64),
        content_type=body.content_type,
        source_url=body.url,
        platform=body.platform,
        claimed_username=body.claimed_username,
        amount=body.amount,
        currency=body.currency,
        transaction_date=body.transaction_date,
        role=body.role,
    )
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        record = await svc.submit_evidence(session, user.user_id, submission)
        return EvidenceSubmitResponse(
            evidence=EvidenceResponse.model_validate(record),
            fraud_detected=record.fraud_flag,
            warning=ErrorResponse.from_error(FraudDetectedError()) if record.fraud_flag else None,
        )


@router.get("/evidence", response_model=list[EvidenceResponse])
async def list_evidence(
    kind: EvidenceKind | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: UserContext = Depends(require_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        records = await svc.list_evidence(session, user.user_id, kind, limit=limit, offset=offset)
        return [EvidenceResponse.model_validate(r) for r in records]


@router.get("/evidence/{evidence_id}", response_model=EvidenceResponse)
async def get_evidence(evidence_id: str, user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        record = await svc.get_evidence(session, evidence_id)
        if record.user_id != user.user_id:
            raise NotFoundError("Evidence not found")
        return EvidenceResponse.model_validate(record)


@router.post("/evidence/{evidence_id}/profile-token", response_model=ProfileTokenResponse)
async def issue_profile_token(evidence_id: str, user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        record = await svc.issue_profile_token(session, user.user_id, evidence_id)
        return ProfileTokenResponse(
            evidence_id=record.id,
            token=record.verify_token,
            expires_at=record.verify_token_expires_at,
        )


@router.post("/evidence/{evidence_id}/profile-confirm", response_model=EvidenceResponse)
async def confirm_profile_token(
    evidence_id: str, body: ProfileConfirm, user: UserContext = Depends(require_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        record = await svc.confirm_profile_token(session, user.user_id, evidence_id, body.bio)
        return EvidenceResponse.model_validate(record)


@router.patch("/admin/evidence/{evidence_id}/state", response_model=EvidenceResponse)
async def set_evidence_state(
    evidence_id: str,
    body: EvidenceStateUpdate,
    staff: StaffContext = Depends(require_capability("evidence.review")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        record = await svc.transition_state(
            session, evidence_id, body.state, fraud_flag=body.fraud_flag, actor=staff.actor,
        )
        return EvidenceResponse.model_validate(record)
