"""Client for the third-party identity verification provider.

The provider holds the documents; this core only ever learns a status and
the time it was decided.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import httpx

from passport_engine.identity.models import VerificationStatus

logger = logging.getLogger(__name__)

# Provider status strings that map onto our three states.
_STATUS_MAP = {
    "verified": VerificationStatus.VERIFIED,
    "succeeded": VerificationStatus.VERIFIED,
    "failed": VerificationStatus.FAILED,
    "canceled": VerificationStatus.FAILED,
    "requires_input": VerificationStatus.PENDING,
    "processing": VerificationStatus.PENDING,
    "pending": VerificationStatus.PENDING,
}


@dataclass
class ProviderStatus:
    status: VerificationStatus
    checked_at: datetime


class IdentityVerificationProvider(Protocol):
    async def get_status(self, reference_id: str) -> ProviderStatus: ...


class HttpVerificationProvider:
    """Calls the provider's ``/v1/verifications/{reference}`` endpoint."""

    def __init__(self, base_url: str, token: str, timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    async def get_status(self, reference_id: str) -> ProviderStatus:
        """Fetch the verification status. Raises on HTTP errors."""
        url = f"{self.base_url}/v1/verifications/{reference_id}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(
                url, headers={"Authorization": f"Bearer {self.token}"},
            )
            resp.raise_for_status()
            data = resp.json()

        raw_status = str(data.get("status", "pending")).lower()
        status = _STATUS_MAP.get(raw_status, VerificationStatus.PENDING)
        checked_at = datetime.now(timezone.utc)
        if data.get("updated_at"):
            try:
                checked_at = datetime.fromisoformat(str(data["updated_at"]))
            except ValueError:
                logger.warning("Unparseable provider timestamp for %s", reference_id)
        if checked_at.tzinfo is None:
            checked_at = checked_at.replace(tzinfo=timezone.utc)
        return ProviderStatus(status=status, checked_at=checked_at)
