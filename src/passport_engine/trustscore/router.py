"""Trust score API router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from passport_engine.common.models import utcnow
from passport_engine.common.security import (
    StaffContext,
    UserContext,
    require_capability,
    require_user,
)
from passport_engine.trustscore.calculator import iso_week_key
from passport_engine.trustscore.models import ScoreTrigger
from passport_engine.trustscore.schemas import (
    RecalculateResponse,
    TrustScoreBreakdown,
    TrustScoreResponse,
    WeeklyRunResponse,
)

router = APIRouter()


def _get_service():
    from passport_engine.deps import get_trustscore_service
    return get_trustscore_service()


def _get_db():
    from passport_engine.deps import get_db
    return get_db()


@router.get("/me/trustscore", response_model=TrustScoreResponse)
async def my_trustscore(user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return TrustScoreResponse.model_validate(await svc.current(session, user.user_id))


@router.get("/me/trustscore/history", response_model=list[TrustScoreResponse])
async def my_trustscore_history(
    months: int = Query(6, ge=1, le=24),
    user: UserContext = Depends(require_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        rows = await svc.history(session, user.user_id, months=months)
        return [TrustScoreResponse.model_validate(s) for s in rows]


@router.get("/me/trustscore/breakdown", response_model=TrustScoreBreakdown)
async def my_trustscore_breakdown(user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return TrustScoreBreakdown(**await svc.breakdown(session, user.user_id))


# ── Admin ──

@router.post("/admin/trustscore/{user_id}/recalculate", response_model=RecalculateResponse)
async def recalculate(
    user_id: str,
    _staff: StaffContext = Depends(require_capability("trustscore.recalculate")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        snapshot = await svc.recalculate(session, user_id, ScoreTrigger.MANUAL)
        return RecalculateResponse(
            user_id=user_id,
            skipped=snapshot is None,
            snapshot=TrustScoreResponse.model_validate(snapshot) if snapshot else None,
        )


@router.post("/admin/trustscore/run-weekly", response_model=WeeklyRunResponse)
async def run_weekly(
    period_key: Optional[str] = Query(None, pattern=r"^\d{4}-W\d{2}$"),
    _staff: StaffContext = Depends(require_capability("trustscore.recalculate")),
):
    svc = _get_service()
    key = period_key or iso_week_key(utcnow())
    counts = await svc.run_weekly(_get_db(), period_key=key)
    return WeeklyRunResponse(period_key=key, **counts)
