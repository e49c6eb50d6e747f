"""
Audit Models for the Municipal Budget Portal

Every significant action in the system is logged for audit purposes:
logins, account and municipality changes, ledger writes, imports.

DESIGN DECISION: Audit logs are append-only. We never modify them.
Verification codes and passwords never appear in an event.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Authentication
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    OTP_ISSUED = "otp_issued"
    OTP_DELIVERY_FAILED = "otp_delivery_failed"
    OTP_VERIFIED = "otp_verified"
    OTP_REJECTED = "otp_rejected"
    SESSION_ENDED = "session_ended"

    # Accounts
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"

    # Municipalities
    MUNICIPALITY_CREATED = "municipality_created"
    MUNICIPALITY_UPDATED = "municipality_updated"
    MUNICIPALITY_DELETED = "municipality_deleted"

    # Ledger
    LEDGER_ENTRY_SAVED = "ledger_entry_saved"
    LEDGER_YEAR_ADDED = "ledger_year_added"
    LEDGER_DELETED = "ledger_deleted"
    BALANCE_CHECKED = "balance_checked"
    FUTURE_EVENT_SAVED = "future_event_saved"
    FUTURE_EVENT_DELETED = "future_event_deleted"

    # Interchange
    IMPORT_COMPLETED = "import_completed"
    EXPORT_GENERATED = "export_generated"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'user', 'municipality', 'ledger')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one login)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.user_created(user_id, email)
        event = AuditEventBuilder.ledger_entry_saved(municipality_id, "R1", 2024)
    """

    @staticmethod
    def login_succeeded(
        user_id: UUID,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_SUCCEEDED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Login completed: {email}",
            details={"email": email},
            is_user_action=True,
        )

    @staticmethod
    def login_failed(
        email: str,
        stage: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            correlation_id=correlation_id,
            description=f"Login failed at {stage} stage",
            details={"email": email, "stage": stage},
            is_user_action=True,
        )

    @staticmethod
    def otp_issued(
        email: str,
        expires_at: datetime,
        delivered: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OTP_ISSUED,
            entity_type="otp",
            correlation_id=correlation_id,
            description=f"Verification code issued for {email}",
            details={
                "email": email,
                "expires_at": expires_at.isoformat(),
                "delivered": delivered,
            },
        )

    @staticmethod
    def otp_delivery_failed(
        email: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OTP_DELIVERY_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="otp",
            correlation_id=correlation_id,
            description=f"Verification code delivery failed for {email}",
            error_message=error_message,
            details={"email": email},
        )

    @staticmethod
    def otp_checked(
        email: str,
        valid: bool,
        reason: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.OTP_VERIFIED if valid else AuditEventType.OTP_REJECTED
            ),
            severity=AuditSeverity.INFO if valid else AuditSeverity.WARNING,
            entity_type="otp",
            correlation_id=correlation_id,
            description=(
                f"Verification code accepted for {email}"
                if valid
                else f"Verification code rejected for {email} ({reason})"
            ),
            details={"email": email, "reason": reason},
            is_user_action=True,
        )

    @staticmethod
    def session_ended(user_id: UUID, email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_ENDED,
            entity_type="user",
            entity_id=user_id,
            description=f"Logout: {email}",
            is_user_action=True,
        )

    @staticmethod
    def user_changed(
        event_type: AuditEventType,
        user_id: UUID,
        email: str,
        changed_fields: Optional[list[str]] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.USER_CREATED: "created",
            AuditEventType.USER_UPDATED: "updated",
            AuditEventType.USER_DELETED: "deleted",
        }[event_type]
        details: dict[str, Any] = {"email": email}
        if changed_fields:
            # Field names only, never values (password!)
            details["changed_fields"] = sorted(changed_fields)
        return AuditEvent(
            event_type=event_type,
            entity_type="user",
            entity_id=user_id,
            description=f"User {verb}: {email}",
            details=details,
            is_user_action=True,
        )

    @staticmethod
    def municipality_changed(
        event_type: AuditEventType,
        municipality_id: UUID,
        name: str,
        code: str,
    ) -> AuditEvent:
        verb = {
            AuditEventType.MUNICIPALITY_CREATED: "created",
            AuditEventType.MUNICIPALITY_UPDATED: "updated",
            AuditEventType.MUNICIPALITY_DELETED: "deleted",
        }[event_type]
        return AuditEvent(
            event_type=event_type,
            entity_type="municipality",
            entity_id=municipality_id,
            description=f"Municipality {verb}: {name} ({code})",
            details={"name": name, "code": code},
            is_user_action=True,
        )

    @staticmethod
    def ledger_entry_saved(
        municipality_id: UUID,
        rubric: str,
        year: int,
        voted: str,
        actual: str,
        year_added: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.LEDGER_YEAR_ADDED
                if year_added
                else AuditEventType.LEDGER_ENTRY_SAVED
            ),
            entity_type="ledger",
            entity_id=municipality_id,
            description=f"Ledger entry {rubric}/{year} saved",
            details={
                "rubric": rubric,
                "year": year,
                "voted": voted,
                "actual": actual,
            },
            is_user_action=True,
        )

    @staticmethod
    def ledger_deleted(municipality_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_DELETED,
            entity_type="ledger",
            entity_id=municipality_id,
            description="Ledger deleted with its municipality",
        )

    @staticmethod
    def balance_checked(
        municipality_id: UUID,
        year: int,
        balanced: bool,
        total_revenue: str,
        total_expense: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_CHECKED,
            severity=AuditSeverity.INFO if balanced else AuditSeverity.WARNING,
            entity_type="ledger",
            entity_id=municipality_id,
            description=(
                f"Balance check {year}: "
                f"{'balanced' if balanced else 'not balanced'}"
            ),
            details={
                "year": year,
                "total_revenue": total_revenue,
                "total_expense": total_expense,
            },
        )

    @staticmethod
    def future_event_changed(
        municipality_id: UUID,
        event_id: UUID,
        deleted: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.FUTURE_EVENT_DELETED
                if deleted
                else AuditEventType.FUTURE_EVENT_SAVED
            ),
            entity_type="ledger",
            entity_id=municipality_id,
            description=f"Future event {'deleted' if deleted else 'saved'}",
            details={"event_id": str(event_id)},
            is_user_action=True,
        )

    @staticmethod
    def import_completed(
        municipality_id: UUID,
        source: str,
        imported: int,
        skipped: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_COMPLETED,
            severity=AuditSeverity.WARNING if skipped else AuditSeverity.INFO,
            entity_type="ledger",
            entity_id=municipality_id,
            description=f"{source} import: {imported} rows in, {skipped} skipped",
            details={
                "source": source,
                "imported": imported,
                "skipped": skipped,
            },
            is_user_action=True,
        )

    @staticmethod
    def export_generated(
        municipality_id: UUID,
        export_format: str,
        row_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPORT_GENERATED,
            entity_type="ledger",
            entity_id=municipality_id,
            description=f"{export_format} export generated",
            details={"format": export_format, "row_count": row_count},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
