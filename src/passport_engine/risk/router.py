"""Risk API router (staff only)."""

from fastapi import APIRouter, Depends

from passport_engine.common.security import StaffContext, require_capability
from passport_engine.risk.schemas import (
    RiskAssessmentResponse,
    RiskSignalCreate,
    RiskSignalResponse,
    RiskSummaryResponse,
)

router = APIRouter(prefix="/admin/risk")


def _get_service():
    from passport_engine.deps import get_risk_service
    return get_risk_service()


def _get_db():
    from passport_engine.deps import get_db
    return get_db()


@router.get("/{user_id}", response_model=RiskSummaryResponse)
async def get_risk(
    user_id: str, _staff: StaffContext = Depends(require_capability("risk.read")),
):
    from passport_engine.deps import get_identity_service

    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        user = await get_identity_service().get(session, user_id)
        signals = await svc.active_signals(session, user_id)
        return RiskSummaryResponse(
            user_id=user_id,
            score=await svc.risk_score(session, user_id),
            account_status=user.account_status,
            signals=[RiskSignalResponse.model_validate(s) for s in signals],
        )


@router.post("/{user_id}/evaluate", response_model=RiskAssessmentResponse)
async def evaluate(
    user_id: str, _staff: StaffContext = Depends(require_capability("risk.evaluate")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        assessment = await svc.evaluate(session, user_id)
        return RiskAssessmentResponse(
            user_id=assessment.user_id,
            score=assessment.score,
            account_status=assessment.account_status,
            moved_to_review=assessment.moved_to_review,
            new_signals=[RiskSignalResponse.model_validate(s) for s in assessment.new_signals],
        )


@router.post("/signals", response_model=RiskSignalResponse, status_code=201)
async def raise_signal(
    body: RiskSignalCreate,
    staff: StaffContext = Depends(require_capability("risk.evaluate")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        signal = await svc.raise_signal(
            session,
            body.user_id,
            body.signal_type,
            body.severity,
            message=body.message,
            detail={"raised_by": staff.actor},
        )
        return RiskSignalResponse.model_validate(signal)


@router.post("/signals/{signal_id}/resolve", response_model=RiskSignalResponse)
async def resolve_signal(
    signal_id: str, staff: StaffContext = Depends(require_capability("risk.resolve")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        signal = await svc.resolve_signal(session, signal_id, resolved_by=staff.actor)
        return RiskSignalResponse.model_validate(signal)
