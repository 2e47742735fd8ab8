"""
Email delivery collaborator and the identity email templates.

The outbox dispatcher is the only caller of ``EmailSender.send``; any
exception it raises is treated as retryable.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Optional, Protocol
from urllib.parse import quote

import httpx
import structlog

from tenantgate.core.logging import mask_email

log = structlog.get_logger()

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: Optional[str] = None


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class LogEmailSender:
    """Used when no provider is configured: logs the message instead of sending."""

    async def send(self, message: EmailMessage) -> None:
        log.warning("email.not_sent", reason="no_provider", to=mask_email(message.to),
                    subject=message.subject)


class SendGridEmailSender:
    """Sends through the SendGrid v3 API."""

    def __init__(self, api_key: str, from_email: str, timeout: float = 10.0):
        self._api_key = api_key
        self._from_email = from_email
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, message: EmailMessage) -> None:
        if self._client is None:
            await self.open()
        content = []
        if message.text:
            content.append({"type": "text/plain", "value": message.text})
        content.append({"type": "text/html", "value": message.html})

        resp = await self._client.post(
            SENDGRID_SEND_URL,
            json={
                "personalizations": [{"to": [{"email": message.to}]}],
                "from": {"email": self._from_email},
                "subject": message.subject,
                "content": content,
            },
        )
        resp.raise_for_status()
        log.info("email.sent", to=mask_email(message.to), subject=message.subject)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def verification_link(frontend_url: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/verify-email?token={quote(token)}"


def invite_link(frontend_url: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/accept-invite?token={quote(token)}"


def render_verification_email(to: str, full_name: str, link: str) -> EmailMessage:
    greeting = f"Hi {full_name}," if full_name else "Hi,"
    text = (
        f"{greeting}\n\n"
        "Please confirm your email address to finish setting up your account:\n"
        f"{link}\n\n"
        "This link expires in 24 hours. If you did not sign up, ignore this email."
    )
    html = (
        f"<p>{escape(greeting)}</p>"
        "<p>Please confirm your email address to finish setting up your account.</p>"
        f'<p><a href="{escape(link)}">Verify email address</a></p>'
        "<p>This link expires in 24 hours. If you did not sign up, ignore this email.</p>"
    )
    return EmailMessage(to=to, subject="Verify your email address", html=html, text=text)


def render_invite_email(to: str, org_name: str, role: str, link: str,
                        message: Optional[str] = None) -> EmailMessage:
    text = f"You've been invited to join {org_name} as a {role}. Accept here: {link}"
    html = (
        f"<p>You've been invited to join <strong>{escape(org_name)}</strong> "
        f"as a {escape(role)}.</p>"
    )
    if message:
        text += f"\n\nMessage from your inviter:\n{message}"
        html += f"<blockquote>{escape(message)}</blockquote>"
    html += f'<p><a href="{escape(link)}">Accept invitation</a></p>'
    return EmailMessage(to=to, subject=f"Invitation to join {org_name}", html=html, text=text)


def build_email_sender(api_key: str, from_email: str, timeout: float = 10.0) -> EmailSender:
    """SendGrid when an API key is configured, otherwise log-only delivery."""
    if api_key:
        return SendGridEmailSender(api_key, from_email, timeout=timeout)
    log.warning("email.provider_not_configured")
    return LogEmailSender()
