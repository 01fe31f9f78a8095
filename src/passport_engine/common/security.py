"""Authentication dependencies for staff keys and user bearer tokens."""

import hmac
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Header

from passport_engine.common.exceptions import ForbiddenError, UnauthorizedError
from passport_engine.common.permissions import has_capability


@dataclass
class StaffContext:
    """Resolved staff caller."""
    role: str
    actor: str


@dataclass
class UserContext:
    """Resolved end-user caller."""
    user_id: str
    session_id: str
    email: str


def _role_for_key(api_key: str) -> Optional[str]:
    from passport_engine.common.config import get_settings

    settings = get_settings()
    if hmac.compare_digest(api_key, settings.api_key):
        return "admin"
    if hmac.compare_digest(api_key, settings.reviewer_key):
        return "reviewer"
    return None


def require_capability(capability: str) -> Callable:
    """Build a dependency that admits staff whose role holds ``capability``."""

    async def dependency(
        x_passport_api_key: str = Header(None, alias="X-Passport-Api-Key"),
    ) -> StaffContext:
        from passport_engine.deps import get_capabilities

        if not x_passport_api_key:
            raise UnauthorizedError("Missing API key")
        role = _role_for_key(x_passport_api_key)
        if role is None:
            raise ForbiddenError("Invalid API key")
        if not has_capability(get_capabilities(), role, capability):
            raise ForbiddenError(f"Role '{role}' lacks '{capability}'")
        return StaffContext(role=role, actor=f"staff:{role}")

    return dependency


async def require_user(
    authorization: str = Header(None, alias="Authorization"),
) -> UserContext:
    """FastAPI dependency resolving ``Authorization: Bearer <access token>``."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()

    from passport_engine.deps import get_db, get_session_service

    db = get_db()
    async with db.get_session() as session:
        user, row = await get_session_service().authenticate(session, token)
        return UserContext(user_id=user.id, session_id=row.id, email=user.email)
