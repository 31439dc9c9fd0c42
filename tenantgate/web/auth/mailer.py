"""Outbound email delivery for one-time passcodes."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Protocol

import httpx
import structlog

from tenantgate.exceptions import DeliveryError

logger = structlog.get_logger(__name__)


class EmailSender(Protocol):
    """Anything that can deliver an HTML email. Raises DeliveryError on failure."""

    async def send(self, to: str, subject: str, html: str) -> None: ...


class ResendEmailSender:
    """Delivers mail through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._from_email = from_email
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport

    async def send(self, to: str, subject: str, html: str) -> None:
        payload = {"from": self._from_email, "to": [to], "subject": subject, "html": html}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    self._api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("email_send_failed", error=str(exc))
            msg = "Failed to send email"
            raise DeliveryError(msg) from exc
        logger.info("email_sent", subject=subject)


class ConsoleEmailSender:
    """Development sender: logs the message instead of delivering it."""

    async def send(self, to: str, subject: str, html: str) -> None:
        logger.info("email_console_delivery", to=to, subject=subject, html=html)


@dataclass(frozen=True, slots=True)
class OtpEmail:
    subject: str
    html: str


def render_otp_email(code: str, application: str, ttl_minutes: int = 10) -> OtpEmail:
    """Build the verification email for ``code``."""
    app = escape(application)
    html = f"""<!DOCTYPE html>
<html>
  <head><meta charset="utf-8" /><title>Your Verification Code</title></head>
  <body style="font-family: Arial, sans-serif; color: #1f2937; background: #f4f6f8;">
    <div style="max-width: 560px; margin: 40px auto; background: #fff; padding: 32px;
                border-radius: 14px;">
      <h1 style="font-size: 22px; margin: 0;">Verify your email</h1>
      <p style="color: #6b7280; margin: 8px 0 24px;">{app}</p>
      <p>Use the verification code below. It is valid for the next
         <strong>{ttl_minutes} minutes</strong>.</p>
      <div style="font-size: 32px; font-weight: 700; letter-spacing: 6px;
                  text-align: center; padding: 20px; margin: 32px 0;
                  background: #f9fafb; border: 1px solid #e5e7eb; border-radius: 12px;">
        {escape(code)}
      </div>
      <p style="font-size: 14px; color: #6b7280;">If you didn't request this code,
         you can safely ignore this email.</p>
      <p style="font-size: 12px; color: #9ca3af; text-align: center;">
         This is an automated message. Please do not reply.</p>
    </div>
  </body>
</html>
"""
    return OtpEmail(subject=f"Your OTP for {application}", html=html)
