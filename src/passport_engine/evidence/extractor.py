"""Field extraction for evidence payloads.

The real OCR / parsing / scraping work happens in an external service; this
module only defines the seam and two implementations of it.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol
from urllib.parse import urlparse

import httpx

from passport_engine.evidence.models import EvidenceKind

logger = logging.getLogger(__name__)

# Hosts we recognise for profile links, mapped to a platform name.
KNOWN_PLATFORMS = {
    "vinted.co.uk": "vinted",
    "vinted.com": "vinted",
    "ebay.co.uk": "ebay",
    "ebay.com": "ebay",
    "depop.com": "depop",
    "etsy.com": "etsy",
    "facebook.com": "facebook",
    "instagram.com": "instagram",
}


@dataclass
class ExtractionResult:
    fields: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0


class Extractor(Protocol):
    async def extract(
        self, kind: EvidenceKind, data: Optional[bytes], source_url: Optional[str],
    ) -> ExtractionResult: ...


def platform_for_url(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return KNOWN_PLATFORMS.get(host, host)


def username_from_url(url: str) -> str:
    """Last non-empty path segment, e.g. ``/member/123-jane`` → ``123-jane``."""
    segments = [s for s in urlparse(url).path.split("/") if s]
    return segments[-1].lstrip("@") if segments else ""


class StructuredPayloadExtractor:
    """Reads fields straight from JSON payloads.

    Used when the client already ran extraction (mobile OCR, mail parser) and
    uploads the structured result. Non-JSON bytes yield no fields and zero
    confidence.
    """

    async def extract(
        self, kind: EvidenceKind, data: Optional[bytes], source_url: Optional[str],
    ) -> ExtractionResult:
        if kind == EvidenceKind.PROFILE_LINK:
            if not source_url:
                return ExtractionResult()
            return ExtractionResult(
                fields={
                    "platform": platform_for_url(source_url),
                    "username": username_from_url(source_url),
                },
                confidence=0.9,
            )

        if not data:
            return ExtractionResult()
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return ExtractionResult()
        if not isinstance(payload, dict):
            return ExtractionResult()

        raw_fields = payload.get("fields", payload)
        confidence = payload.get("confidence", 1.0)
        try:
            confidence = max(0.0, min(1.0, float(confidence)))
        except (TypeError, ValueError):
            confidence = 0.0
        return ExtractionResult(fields=dict(raw_fields), confidence=confidence)


class HttpExtractor:
    """Posts payloads to the extraction service's ``/v1/extract`` endpoint."""

    def __init__(self, base_url: str, token: str = "", timeout: float = 60.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    async def extract(
        self, kind: EvidenceKind, data: Optional[bytes], source_url: Optional[str],
    ) -> ExtractionResult:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        form = {"kind": kind.value, "source_url": source_url or ""}
        files = {"file": ("evidence", data, "application/octet-stream")} if data else None

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{self.base_url}/v1/extract", data=form, files=files, headers=headers,
            )
            resp.raise_for_status()
            body = resp.json()

        logger.debug("Extractor returned %d fields for %s", len(body.get("fields", {})), kind.value)
        return ExtractionResult(
            fields=dict(body.get("fields") or {}),
            confidence=float(body.get("confidence", 0.0)),
        )
