"""Audit chain API router."""

from fastapi import APIRouter, Depends, Query

from passport_engine.audit.schemas import AuditChainVerification, AuditEventResponse
from passport_engine.common.security import StaffContext, require_capability

router = APIRouter(prefix="/admin")


def _get_service():
    from passport_engine.deps import get_audit_service
    return get_audit_service()


def _get_db():
    from passport_engine.deps import get_db
    return get_db()


@router.get("/audit/{user_id}", response_model=list[AuditEventResponse])
async def get_audit_events(
    user_id: str,
    event_type: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _staff: StaffContext = Depends(require_capability("audit.read")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        events = await svc.get_events(
            session, user_id, event_type=event_type, limit=limit, offset=offset,
        )
        return [AuditEventResponse.model_validate(e) for e in events]


@router.get("/audit/{user_id}/verify", response_model=AuditChainVerification)
async def verify_audit_chain(
    user_id: str, _staff: StaffContext = Depends(require_capability("audit.read")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.verify_chain(session, user_id)
        return AuditChainVerification.model_validate(result)
