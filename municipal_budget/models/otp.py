"""
One-Time Code Models

A record never stores the code itself, only its SHA-256 digest.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class OtpRecord(BaseModel):
    """Live verification code for one email."""

    email: str
    code_hash: str
    expires_at: datetime
    attempts: int = Field(default=0, ge=0)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class OtpFailureReason(str, Enum):
    NO_CODE = "no_code"
    EXPIRED = "expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    MISMATCH = "mismatch"


class OtpVerification(BaseModel):
    """Outcome of checking a submitted code."""

    valid: bool
    reason: Optional[OtpFailureReason] = None
    message: str
    remaining_attempts: Optional[int] = None


class OtpChallenge(BaseModel):
    """
    Outcome of issuing a code.

    CRITICAL: Carries no code. The code only travels through the notifier.
    """

    email: str
    expires_at: datetime
    expiry_minutes: int
    delivered: bool
    delivery_id: Optional[str] = None
    message: str
