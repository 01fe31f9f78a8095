"""Identity API router: the caller's account, sessions and admin status."""

from fastapi import APIRouter, Depends

from passport_engine.common.security import (
    StaffContext,
    UserContext,
    require_capability,
    require_user,
)
from passport_engine.identity.models import AccountStatus
from passport_engine.identity.schemas import (
    AccountStatusUpdate,
    IdentityVerificationResponse,
    IdentityVerificationStart,
    PublicProfileResponse,
    SessionResponse,
    UserResponse,
)

router = APIRouter()


def _get_service():
    from passport_engine.deps import get_identity_service
    return get_identity_service()


def _get_db():
    from passport_engine.deps import get_db
    return get_db()


# ── Self ──

@router.get("/me", response_model=UserResponse)
async def get_me(user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return UserResponse.model_validate(await svc.get(session, user.user_id))


@router.post("/me/second-factor", response_model=UserResponse)
async def enable_second_factor(user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return UserResponse.model_validate(await svc.enable_second_factor(session, user.user_id))


@router.post(
    "/me/identity-verification",
    response_model=IdentityVerificationResponse,
    status_code=201,
)
async def start_identity_verification(
    body: IdentityVerificationStart, user: UserContext = Depends(require_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        row = await svc.start_identity_verification(session, user.user_id, body.reference_id)
        return IdentityVerificationResponse.model_validate(row)


@router.post("/me/identity-verification/sync", response_model=IdentityVerificationResponse)
async def sync_identity_verification(user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        row = await svc.sync_identity_verification(session, user.user_id)
        return IdentityVerificationResponse.model_validate(row)


@router.get("/me/sessions", response_model=list[SessionResponse])
async def list_my_sessions(user: UserContext = Depends(require_user)):
    from passport_engine.deps import get_session_service

    db = _get_db()
    async with db.get_session() as session:
        rows = await get_session_service().list_sessions(session, user.user_id)
        return [
            SessionResponse(
                id=r.id,
                device_id=r.device_id,
                ip_address=r.ip_address,
                user_agent=r.user_agent,
                created_at=r.created_at,
                last_used_at=r.last_used_at,
                expires_at=r.expires_at,
                current=r.id == user.session_id,
            )
            for r in rows
        ]


@router.delete("/me/sessions", status_code=204)
async def sign_out_everywhere(user: UserContext = Depends(require_user)):
    from passport_engine.deps import get_session_service

    db = _get_db()
    async with db.get_session() as session:
        await get_session_service().revoke_all(session, user.user_id, reason="user_signout_all")


# ── Public ──

@router.get("/users/{identifier}", response_model=PublicProfileResponse)
async def get_public_profile(identifier: str, _user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        target = await svc.resolve_identifier(session, identifier)
        return PublicProfileResponse(
            username=target.username,
            display_name=target.display_name,
            account_status=target.account_status,
            member_since=target.created_at,
        )


# ── Admin ──

@router.patch("/admin/users/{user_id}/status", response_model=UserResponse)
async def set_account_status(
    user_id: str,
    body: AccountStatusUpdate,
    staff: StaffContext = Depends(require_capability("identity.manage")),
):
    from passport_engine.deps import get_session_service

    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        target = await svc.set_status(
            session, user_id, body.status, actor=staff.actor, reason=body.reason,
        )
        if body.status == AccountStatus.SUSPENDED:
            await get_session_service().revoke_all(session, user_id, reason="suspended")
        return UserResponse.model_validate(target)


@router.post("/admin/users/{user_id}/phone-verified", response_model=UserResponse)
async def mark_phone_verified(
    user_id: str, _staff: StaffContext = Depends(require_capability("identity.manage")),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return UserResponse.model_validate(await svc.mark_phone_verified(session, user_id))
