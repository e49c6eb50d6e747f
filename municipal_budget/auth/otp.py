"""
One-Time Verification Codes

Second authentication factor: a short numeric code emailed to the user.

Lifecycle of a code for one email:

    NONE --issue--> PENDING --verify ok--------> VERIFIED
                       |    --past expiry------> EXPIRED
                       |    --max bad guesses--> EXHAUSTED
                       +--issue again--> PENDING (fresh code, zero attempts)

Every terminal state deletes the record.

CRITICAL: The code itself never leaves this module except through the
notifier. It is not returned, not logged and not stored in clear (the
record keeps a SHA-256 digest).
"""

import asyncio
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

import structlog

from municipal_budget.audit import AuditLogger
from municipal_budget.config import OtpSettings, get_settings
from municipal_budget.errors import DeliveryError
from municipal_budget.models.audit import AuditEventBuilder
from municipal_budget.models.otp import (
    OtpChallenge,
    OtpFailureReason,
    OtpRecord,
    OtpVerification,
)
from municipal_budget.models.user import normalize_email
from municipal_budget.services.mail import Notifier
from municipal_budget.services.storage import OtpRepository


logger = structlog.get_logger(__name__)


class OtpManager:
    """Issues and verifies one-time codes, one live code per email."""

    def __init__(
        self,
        repository: OtpRepository,
        notifier: Optional[Notifier] = None,
        settings: Optional[OtpSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            repository: Where live records are kept
            notifier: Delivery channel. If None, codes are generated but
                      never delivered (challenge reports delivered=False).
            clock: Returns the current UTC time; injectable for tests
        """
        self._repo = repository
        self._notifier = notifier
        self._settings = settings or get_settings().otp
        self._audit_logger = audit_logger
        self._clock = clock or datetime.utcnow
        self._lock = asyncio.Lock()

    @property
    def max_attempts(self) -> int:
        return self._settings.max_attempts

    def _generate_code(self) -> str:
        length = self._settings.code_length
        return f"{secrets.randbelow(10 ** length):0{length}d}"

    @staticmethod
    def _digest(code: str) -> str:
        return hashlib.sha256(code.encode("utf-8")).hexdigest()

    async def issue(
        self,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> OtpChallenge:
        """
        Generate a fresh code for `email` and try to deliver it.

        Replaces any previous code for the same email. Delivery failure
        does not invalidate the code.
        """
        address = email.strip()
        key = normalize_email(email)
        code = self._generate_code()
        expires_at = self._clock() + timedelta(minutes=self._settings.expiry_minutes)

        async with self._lock:
            records = await self._repo.load_all()
            records[key] = OtpRecord(
                email=key,
                code_hash=self._digest(code),
                expires_at=expires_at,
            )
            await self._repo.save_all(records)

        delivered, delivery_id, message = await self._deliver(
            address, code, correlation_id
        )

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.otp_issued(
                email=key,
                expires_at=expires_at,
                delivered=delivered,
                correlation_id=correlation_id,
            ))

        return OtpChallenge(
            email=key,
            expires_at=expires_at,
            expiry_minutes=self._settings.expiry_minutes,
            delivered=delivered,
            delivery_id=delivery_id,
            message=message,
        )

    async def _deliver(
        self,
        address: str,
        code: str,
        correlation_id: Optional[UUID],
    ) -> tuple[bool, Optional[str], str]:
        """Returns (delivered, delivery_id, message)."""
        if self._notifier is None:
            logger.warning("otp_notifier_missing", email=address)
            return False, None, "Code generated but no email channel is configured"

        try:
            delivery_id = await asyncio.wait_for(
                self._notifier.send(address, code, self._settings.expiry_minutes),
                timeout=self._settings.delivery_timeout_seconds,
            )
        except (DeliveryError, asyncio.TimeoutError) as e:
            error = str(e) or "delivery timed out"
            logger.warning("otp_delivery_failed", email=address, error=error)
            if self._audit_logger:
                await self._audit_logger.log(AuditEventBuilder.otp_delivery_failed(
                    email=normalize_email(address),
                    error_message=error,
                    correlation_id=correlation_id,
                ))
            return False, None, f"Code generated but the email could not be sent: {error}"
        except Exception as e:
            # A notifier outside the contract; the code still stands
            logger.exception("otp_notifier_crashed", email=address)
            if self._audit_logger:
                await self._audit_logger.log(AuditEventBuilder.otp_delivery_failed(
                    email=normalize_email(address),
                    error_message=f"{type(e).__name__}: {e}",
                    correlation_id=correlation_id,
                ))
            return False, None, "Code generated but the email could not be sent"

        return True, delivery_id or None, f"A verification code was sent to {address}"

    async def verify(
        self,
        email: str,
        candidate: str,
        correlation_id: Optional[UUID] = None,
    ) -> OtpVerification:
        """
        Check a submitted code.

        A successful check consumes the code. Failed checks count against
        the attempt limit; reaching it discards the code.
        """
        key = normalize_email(email)
        submitted = (candidate or "").strip()
        now = self._clock()

        async with self._lock:
            records = await self._repo.load_all()
            # Other emails' stale codes go; ours stays so we can say "expired"
            live = {
                k: r for k, r in records.items()
                if k == key or not r.is_expired(now)
            }
            record = live.get(key)

            if record is None:
                result = self._rejected(
                    OtpFailureReason.NO_CODE,
                    "No code found. Please request a new code.",
                )
            elif record.is_expired(now):
                del live[key]
                result = self._rejected(
                    OtpFailureReason.EXPIRED,
                    "The code has expired. Please request a new code.",
                )
            elif record.attempts >= self.max_attempts:
                del live[key]
                result = self._exhausted()
            elif not hmac.compare_digest(record.code_hash, self._digest(submitted)):
                attempts = record.attempts + 1
                if attempts >= self.max_attempts:
                    del live[key]
                    result = self._exhausted()
                else:
                    live[key] = record.model_copy(update={"attempts": attempts})
                    remaining = self.max_attempts - attempts
                    result = self._rejected(
                        OtpFailureReason.MISMATCH,
                        f"Incorrect code. {remaining} attempt(s) remaining.",
                        remaining_attempts=remaining,
                    )
            else:
                del live[key]
                result = OtpVerification(valid=True, message="Code verified")

            if live != records:
                await self._repo.save_all(live)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.otp_checked(
                email=key,
                valid=result.valid,
                reason=result.reason.value if result.reason else None,
                correlation_id=correlation_id,
            ))

        return result

    async def remaining_seconds(self, email: str) -> int:
        """Seconds until the live code expires; 0 if there is none."""
        record = (await self._repo.load_all()).get(normalize_email(email))
        if record is None:
            return 0
        return max(0, int((record.expires_at - self._clock()).total_seconds()))

    async def has_valid_code(self, email: str) -> bool:
        record = (await self._repo.load_all()).get(normalize_email(email))
        return (
            record is not None
            and not record.is_expired(self._clock())
            and record.attempts < self.max_attempts
        )

    @staticmethod
    def _rejected(
        reason: OtpFailureReason,
        message: str,
        remaining_attempts: Optional[int] = None,
    ) -> OtpVerification:
        return OtpVerification(
            valid=False,
            reason=reason,
            message=message,
            remaining_attempts=remaining_attempts,
        )

    def _exhausted(self) -> OtpVerification:
        return self._rejected(
            OtpFailureReason.TOO_MANY_ATTEMPTS,
            "Too many failed attempts. Please request a new code.",
            remaining_attempts=0,
        )
