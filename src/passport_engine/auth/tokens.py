"""Access and refresh token primitives.

Access tokens are itsdangerous-signed ``{sub, sid}`` payloads with a
timestamp, checked for age on every load. Refresh tokens are opaque random
strings; only their SHA-256 is persisted.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from passport_engine.common.exceptions import UnauthorizedError

REFRESH_TOKEN_BYTES = 64
_ACCESS_SALT = "passport-access"


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    session_id: str
    user_id: str
    access_expires_in: int
    refresh_expires_at: datetime
    token_type: str = "bearer"


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)


def hash_refresh_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class AccessTokenSigner:
    """Signs and verifies short-lived access tokens."""

    def __init__(self, secret_key: str, ttl_seconds: int = 900):
        self._serializer = URLSafeTimedSerializer(secret_key, salt=_ACCESS_SALT)
        self.ttl_seconds = ttl_seconds

    def sign(self, user_id: str, session_id: str) -> str:
        return self._serializer.dumps({"sub": user_id, "sid": session_id})

    def load(self, token: str) -> dict[str, Any]:
        """Return the payload, or raise UnauthorizedError if bad or too old."""
        try:
            data = self._serializer.loads(token, max_age=self.ttl_seconds)
        except SignatureExpired:
            raise UnauthorizedError("Access token expired") from None
        except BadSignature:
            raise UnauthorizedError("Invalid access token") from None
        if not isinstance(data, dict) or "sub" not in data or "sid" not in data:
            raise UnauthorizedError("Invalid access token")
        return data
