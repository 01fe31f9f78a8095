"""Passport-Engine configuration via pydantic-settings."""

import json
import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "secret_key": "insecure-dev-key-change-me",
    "hmac_key": "insecure-hmac-key-change-me",
    "api_key": "insecure-admin-key-change-me",
    "reviewer_key": "insecure-reviewer-key-change-me",
}


class PassportSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PASSPORT_")

    environment: str = "development"
    log_level: str = "INFO"
    secret_key: str = "insecure-dev-key-change-me"
    hmac_key: str = "insecure-hmac-key-change-me"

    # HMAC keyring: JSON dict mapping version (int) to key string.
    # e.g. '{"0": "old-key", "1": "new-key"}'
    # When set, hmac_key is ignored.  When empty, hmac_key is used as version 0.
    hmac_keys: str = ""

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/passport.db"
    # SQLite only: how long a writer waits on a locked database.
    db_busy_timeout_ms: int = 5000

    # API
    api_title: str = "Passport-Engine"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    reviewer_key: str = "insecure-reviewer-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Role -> capability overrides, JSON dict of role to list of capabilities.
    role_capabilities: str = ""

    # One-time codes
    otp_length: int = 6
    otp_ttl_seconds: int = 300
    otp_max_attempts: int = 5
    otp_requests_per_window: int = 3
    otp_window_seconds: int = 300

    # Sessions
    access_token_ttl: int = 900  # 15 minutes
    refresh_token_ttl: int = 2592000  # 30 days

    # Email delivery
    email_provider: str = ""  # "sendgrid" or "resend"
    email_api_key: str = ""
    email_from: str = "no-reply@passport.local"
    email_from_name: str = "Passport"

    # External collaborators
    identity_provider_url: str = ""
    identity_provider_token: str = ""
    extractor_url: str = ""
    extractor_token: str = ""
    blob_dir: str = "./data/blobs"

    # Evidence integrity
    integrity_valid_threshold: int = 60
    integrity_reject_floor: int = 30

    # Risk
    risk_review_threshold: int = 80

    # Reports
    reports_per_day: int = 5
    report_min_description: int = 20
    report_max_description: int = 2000
    reports_require_verified_identity: bool = False

    # Trust score recomputation
    scheduler_enabled: bool = False
    recalc_concurrency: int = 8
    recalc_batch_size: int = 100
    recalc_max_retries: int = 2

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    @property
    def hmac_keyring(self) -> dict[int, str]:
        """Return HMAC keyring as {version_int: key_str}.

        If hmac_keys is set, parse it as JSON.
        Otherwise, fall back to scalar hmac_key as version 0.
        """
        if self.hmac_keys:
            try:
                raw = json.loads(self.hmac_keys)
            except (json.JSONDecodeError, TypeError) as exc:
                raise ValueError(
                    f"PASSPORT_HMAC_KEYS must be valid JSON (e.g. '{{\"0\": \"key\"}}'), got: {self.hmac_keys!r}"
                ) from exc
            return {int(k): v for k, v in raw.items()}
        return {0: self.hmac_key}

    @property
    def current_hmac_version(self) -> int:
        """Return the highest version number in the keyring."""
        return max(self.hmac_keyring.keys())

    @property
    def current_hmac_key(self) -> str:
        """Return the HMAC key for the current (highest) version."""
        ring = self.hmac_keyring
        return ring[max(ring.keys())]

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"PASSPORT_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys — set PASSPORT_SECRET_KEY, PASSPORT_HMAC_KEY, "
                "PASSPORT_API_KEY, PASSPORT_REVIEWER_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> PassportSettings:
    settings = PassportSettings()
    settings.validate_for_production()
    return settings
