"""Mutual verification API router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from passport_engine.common.exceptions import FraudDetectedError
from passport_engine.common.schemas import ErrorResponse
from passport_engine.common.security import UserContext, require_user
from passport_engine.verification.models import VerificationState
from passport_engine.verification.schemas import (
    VerificationCreate,
    VerificationOutcome,
    VerificationRespond,
    VerificationResponse,
)

router = APIRouter(prefix="/verifications")


def _get_service():
    from passport_engine.deps import get_verification_service
    return get_verification_service()


def _get_db():
    from passport_engine.deps import get_db
    return get_db()


@router.post("", response_model=VerificationResponse, status_code=201)
async def create_verification(
    body: VerificationCreate, user: UserContext = Depends(require_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        verification = await svc.create(
            session,
            user.user_id,
            body.counterparty,
            item=body.item,
            amount=body.amount,
            role_a=body.role,
            transaction_date=body.transaction_date,
            currency=body.currency,
        )
        return VerificationResponse.model_validate(verification)


@router.get("/incoming", response_model=list[VerificationResponse])
async def list_incoming(
    status: Optional[VerificationState] = Query(None),
    user: UserContext = Depends(require_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        rows = await svc.incoming(session, user.user_id, status)
        return [VerificationResponse.model_validate(v) for v in rows]


@router.get("/mine", response_model=list[VerificationResponse])
async def list_mine(
    status: Optional[VerificationState] = Query(None),
    user: UserContext = Depends(require_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        rows = await svc.mine(session, user.user_id, status)
        return [VerificationResponse.model_validate(v) for v in rows]


@router.get("/{verification_id}", response_model=VerificationResponse)
async def get_verification(verification_id: str, user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        verification = await svc.get(session, verification_id, user_id=user.user_id)
        return VerificationResponse.model_validate(verification)


@router.post("/{verification_id}/respond", response_model=VerificationOutcome)
async def respond(
    verification_id: str,
    body: VerificationRespond,
    user: UserContext = Depends(require_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        verification = await svc.respond(
            session,
            verification_id,
            user.user_id,
            body.decision,
            role_b=body.role.value if body.role else None,
        )
        return VerificationOutcome(
            verification=VerificationResponse.model_validate(verification),
            fraud_detected=verification.fraud_flag,
            warning=(
                ErrorResponse.from_error(FraudDetectedError()) if verification.fraud_flag else None
            ),
        )
