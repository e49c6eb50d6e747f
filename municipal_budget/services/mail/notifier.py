"""
Verification Code Notifier

DESIGN DECISION: Delivery is best-effort. A notifier either returns a
delivery id or raises DeliveryError; callers decide what failure means.
For login codes it means nothing: the code stays valid.

MailRelayNotifier posts to the mail relay (see municipal_budget.relay),
which holds the mail provider credentials. The portal never does.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import requests
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from municipal_budget.config import MailRelaySettings, get_settings
from municipal_budget.errors import DeliveryError


logger = structlog.get_logger(__name__)


class Notifier(ABC):
    """Sends a verification code to an address."""

    @abstractmethod
    async def send(self, to_address: str, code: str, expiry_minutes: int) -> str:
        """
        Deliver a code.

        Returns:
            Provider delivery id (may be empty)

        Raises:
            DeliveryError: If delivery failed
        """
        pass


class MailRelayNotifier(Notifier):
    """
    Notifier backed by the mail relay HTTP API.

    POST {api_url}/api/send-mfa-code with {email, code, expiryMinutes}.
    Connection errors are retried once; HTTP errors are not.
    """

    def __init__(
        self,
        settings: Optional[MailRelaySettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self._settings = settings or get_settings().mail_relay
        self._session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self._settings.api_url.rstrip('/')}/api/send-mfa-code"

    async def send(self, to_address: str, code: str, expiry_minutes: int) -> str:
        try:
            return await asyncio.to_thread(self._post, to_address, code, expiry_minutes)
        except requests.RequestException as e:
            raise DeliveryError(f"Mail relay unreachable: {e}")

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        retry=retry_if_exception_type(requests.ConnectionError),
        reraise=True,
    )
    def _post(self, to_address: str, code: str, expiry_minutes: int) -> str:
        response = self._session.post(
            self.endpoint,
            json={
                "email": to_address,
                "code": code,
                "expiryMinutes": expiry_minutes,
            },
            timeout=self._settings.timeout_seconds,
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code != 200 or not body.get("success"):
            message = body.get("message") or response.reason or "unknown error"
            raise DeliveryError(
                f"Mail relay returned {response.status_code}: {message}"
            )

        delivery_id = str(body.get("emailId") or "")
        logger.info("verification_email_relayed", to=to_address, email_id=delivery_id)
        return delivery_id
