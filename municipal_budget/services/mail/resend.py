"""
Resend Mail Provider Client

Used by the mail relay only. Talks to the Resend REST API directly:
POST https://api.resend.com/emails with a bearer API key.
"""

from typing import Optional

import requests
import structlog

from municipal_budget.config import ResendSettings, get_settings
from municipal_budget.errors import DeliveryError
from municipal_budget.services.mail.templates import render_verification_email


logger = structlog.get_logger(__name__)


class MailerNotConfiguredError(DeliveryError):
    """No usable API key for the mail provider."""
    pass


class ResendMailer:
    """Sends transactional emails through Resend."""

    def __init__(
        self,
        settings: Optional[ResendSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self._settings = settings or get_settings().resend
        self._session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    @property
    def sender(self) -> str:
        return f"{self._settings.from_name} <{self._settings.from_email}>"

    def send_verification_code(
        self,
        to_address: str,
        code: str,
        expiry_minutes: int,
    ) -> str:
        """
        Send a verification code email.

        Returns:
            Resend email id

        Raises:
            MailerNotConfiguredError: If no API key is set
            DeliveryError: If Resend rejects the message or is unreachable
        """
        if not self.is_configured:
            raise MailerNotConfiguredError(
                "Email service not configured. Check RESEND_API_KEY in .env"
            )

        subject, html, text = render_verification_email(code, expiry_minutes)

        try:
            response = self._session.post(
                self._settings.api_url,
                headers={"Authorization": f"Bearer {self._settings.api_key}"},
                json={
                    "from": self.sender,
                    "to": [to_address],
                    "subject": subject,
                    "html": html,
                    "text": text,
                },
                timeout=self._settings.timeout_seconds,
            )
        except requests.RequestException as e:
            raise DeliveryError(f"Resend unreachable: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            message = body.get("message") or response.reason or "unknown error"
            raise DeliveryError(f"Resend rejected the message ({response.status_code}): {message}")

        email_id = body.get("id", "")
        logger.info("verification_email_sent", to=to_address, email_id=email_id)
        return email_id
