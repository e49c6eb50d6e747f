"""
Data Models Package

This package contains all Pydantic models used in the portal.
All data flowing through the system must conform to these schemas.
"""

from municipal_budget.models.budget import (
    MIN_BUDGET_YEAR,
    BalanceCheck,
    BudgetKind,
    ExpenseRubric,
    FutureEvent,
    FutureEventCreate,
    FutureEventUpdate,
    Municipality,
    MunicipalityCreate,
    MunicipalityLedger,
    MunicipalityUpdate,
    RevenueRubric,
    Rubric,
    RubricLedger,
    YearEntry,
    parse_kind,
    parse_rubric,
    rubrics_for,
)
from municipal_budget.models.user import (
    Session,
    User,
    UserCreate,
    UserRole,
    UserUpdate,
    normalize_email,
)
from municipal_budget.models.otp import (
    OtpChallenge,
    OtpFailureReason,
    OtpRecord,
    OtpVerification,
)
from municipal_budget.models.interchange import (
    WIRE_FIELDS,
    BudgetRow,
    ImportReport,
    RowValidationResult,
    SkippedRow,
    ValidationIssue,
)
from municipal_budget.models.results import OperationResult
from municipal_budget.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Budget models
    "MIN_BUDGET_YEAR",
    "BalanceCheck",
    "BudgetKind",
    "ExpenseRubric",
    "FutureEvent",
    "FutureEventCreate",
    "FutureEventUpdate",
    "Municipality",
    "MunicipalityCreate",
    "MunicipalityLedger",
    "MunicipalityUpdate",
    "RevenueRubric",
    "Rubric",
    "RubricLedger",
    "YearEntry",
    "parse_kind",
    "parse_rubric",
    "rubrics_for",
    # User models
    "Session",
    "User",
    "UserCreate",
    "UserRole",
    "UserUpdate",
    "normalize_email",
    # OTP models
    "OtpChallenge",
    "OtpFailureReason",
    "OtpRecord",
    "OtpVerification",
    # Interchange models
    "WIRE_FIELDS",
    "BudgetRow",
    "ImportReport",
    "RowValidationResult",
    "SkippedRow",
    "ValidationIssue",
    "OperationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
