"""Outbound one-time code delivery — SendGrid / Resend integration."""

import logging
from typing import Protocol

import httpx

from passport_engine.common.logging import hash_email

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    async def send(self, destination: str, subject: str, body: str) -> bool: ...


class EmailDispatcher:
    """Sends plain-text email.

    Supports SendGrid and Resend via configuration. Without a provider it
    logs the attempt (never the body) and reports failure.
    """

    def __init__(
        self,
        provider: str = "",
        api_key: str = "",
        from_email: str = "no-reply@passport.local",
        from_name: str = "Passport",
        timeout: float = 30.0,
    ):
        self.provider = provider.lower()  # "sendgrid" or "resend"
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    async def send(self, destination: str, subject: str, body: str) -> bool:
        if self.provider == "sendgrid":
            return await self._send_sendgrid(destination, subject, body)
        elif self.provider == "resend":
            return await self._send_resend(destination, subject, body)
        logger.info(
            "No email provider configured; dropped message to %s",
            hash_email(destination),
        )
        return False

    async def _send_sendgrid(self, to: str, subject: str, body: str) -> bool:
        """Send via SendGrid v3 API."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    "https://api.sendgrid.com/v3/mail/send",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "personalizations": [{"to": [{"email": to}]}],
                        "from": {"email": self.from_email, "name": self.from_name},
                        "subject": subject,
                        "content": [{"type": "text/plain", "value": body}],
                    },
                )
        except httpx.HTTPError:
            logger.exception("SendGrid send failed")
            return False
        if resp.status_code in (200, 202):
            logger.info("SendGrid email sent to %s", hash_email(to))
            return True
        logger.warning("SendGrid error: %s", resp.status_code)
        return False

    async def _send_resend(self, to: str, subject: str, body: str) -> bool:
        """Send via Resend API."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    "https://api.resend.com/emails",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "from": f"{self.from_name} <{self.from_email}>",
                        "to": [to],
                        "subject": subject,
                        "text": body,
                    },
                )
        except httpx.HTTPError:
            logger.exception("Resend send failed")
            return False
        if resp.status_code in (200, 201):
            logger.info("Resend email sent to %s", hash_email(to))
            return True
        logger.warning("Resend error: %s", resp.status_code)
        return False
