"""Auth API router: one-time codes and session lifecycle."""

from fastapi import APIRouter, Request

from passport_engine.auth.schemas import (
    LogoutRequest,
    OtpRequest,
    OtpRequestResponse,
    OtpVerifyRequest,
    RefreshRequest,
    TokenResponse,
)
from passport_engine.auth.sessions import DeviceInfo
from passport_engine.auth.tokens import TokenPair

router = APIRouter(prefix="/auth")


def _get_db():
    from passport_engine.deps import get_db
    return get_db()


def _device(request: Request, device_id: str = "") -> DeviceInfo:
    return DeviceInfo(
        device_id=device_id,
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
    )


def _token_response(pair: TokenPair, new_account: bool = False) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.access_expires_in,
        session_id=pair.session_id,
        user_id=pair.user_id,
        new_account=new_account,
    )


@router.post("/otp/request", response_model=OtpRequestResponse, status_code=202)
async def request_code(body: OtpRequest):
    from passport_engine.deps import get_otp_service

    svc = get_otp_service()
    db = _get_db()
    async with db.get_session() as session:
        issue = await svc.request_code(session, body.email)
        return OtpRequestResponse(email=issue.email, expires_at=issue.expires_at)


@router.post("/otp/verify", response_model=TokenResponse)
async def verify_code(body: OtpVerifyRequest, request: Request):
    from passport_engine.deps import get_auth_service

    svc = get_auth_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.login_with_code(
            session, body.email, body.code, _device(request, body.device_id),
        )
        return _token_response(result.tokens, result.created)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest):
    from passport_engine.deps import get_session_service

    svc = get_session_service()
    db = _get_db()
    async with db.get_session() as session:
        pair = await svc.refresh_session(session, body.refresh_token)
        return _token_response(pair)


@router.post("/logout", status_code=204)
async def logout(body: LogoutRequest):
    from passport_engine.deps import get_session_service

    svc = get_session_service()
    db = _get_db()
    async with db.get_session() as session:
        await svc.revoke_session(session, refresh_token=body.refresh_token)
