"""Outbound email delivery.

The engine only depends on ``BaseMailer.send``. ``ResendMailer`` is a thin
adapter over the Resend HTTP API; one instance is built per tenant API key.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class MailResult:
    """Result of a single send attempt."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    delivered_at: Optional[str] = None


class BaseMailer(ABC):
    """Abstract base for email providers."""

    provider: str

    @abstractmethod
    async def send(
        self,
        from_identity: str,
        to: str,
        subject: str,
        html: str,
    ) -> MailResult:
        """Send one HTML email. Must not raise on provider errors."""
        ...


MailerFactory = Callable[[str], BaseMailer]


class ResendMailer(BaseMailer):
    """Send email through ``POST https://api.resend.com/emails``."""

    provider = "resend"

    def __init__(
        self,
        api_key: str,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key
        self.api_url = api_url or settings.RESEND_API_URL
        self.timeout = timeout or settings.MAILER_TIMEOUT_SECONDS
        self._transport = transport

    async def send(
        self,
        from_identity: str,
        to: str,
        subject: str,
        html: str,
    ) -> MailResult:
        payload = {
            "from": from_identity,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Resend request failed: {e}")
            return MailResult(success=False, error=str(e) or type(e).__name__)

        if response.is_success:
            body = _json_or_empty(response)
            return MailResult(
                success=True,
                message_id=body.get("id"),
                status_code=response.status_code,
                delivered_at=datetime.now(timezone.utc).isoformat(),
            )

        body = _json_or_empty(response)
        message = body.get("message") or body.get("error") or response.text or "Unknown error"
        logger.warning(f"Resend rejected email to {to}: HTTP {response.status_code} {message}")
        return MailResult(
            success=False,
            error=f"HTTP {response.status_code}: {message}",
            status_code=response.status_code,
        )


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def build_mailer(api_key: str) -> BaseMailer:
    """Default mailer factory: one provider client per tenant key."""
    provider = get_settings().EMAIL_PROVIDER
    if provider != ResendMailer.provider:
        raise ValueError(f"Unsupported email provider: {provider}")
    return ResendMailer(api_key)
