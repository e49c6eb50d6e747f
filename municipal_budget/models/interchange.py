"""
Interchange Models

Rows exchanged with spreadsheets. The wire contract is exactly the five
fields annee, rubrique, type, budgetVote, reel; Python attribute names
are aliased onto them.
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from municipal_budget.models.budget import MIN_BUDGET_YEAR, BudgetKind


WIRE_FIELDS = ("annee", "rubrique", "type", "budgetVote", "reel")


class BudgetRow(BaseModel):
    """One rubric-year entry as a flat row."""
    model_config = ConfigDict(populate_by_name=True)

    year: int = Field(..., alias="annee", ge=MIN_BUDGET_YEAR)
    rubric: str = Field(..., alias="rubrique")
    kind: BudgetKind = Field(..., alias="type")
    voted: Decimal = Field(default=Decimal("0"), alias="budgetVote", ge=0)
    actual: Decimal = Field(default=Decimal("0"), alias="reel", ge=0)

    def to_wire(self) -> dict[str, str]:
        """Row keyed by wire names with string cells."""
        return {
            "annee": str(self.year),
            "rubrique": self.rubric,
            "type": self.kind.value,
            "budgetVote": str(self.voted),
            "reel": str(self.actual),
        }


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'out_of_range')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class RowValidationResult(BaseModel):
    """
    Result of the two-stage row validation.

    Stage 1: Schema validation (presence, parseable numbers)
    Stage 2: Semantic validation (taxonomy, ranges)
    """

    line: int = Field(..., ge=1)
    schema_valid: bool
    semantic_valid: bool
    row: Optional[BudgetRow] = None
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid and self.row is not None

    @property
    def summary(self) -> str:
        errors = [i.message for i in self.issues if i.severity == "error"]
        return "; ".join(errors) if errors else "ok"


class SkippedRow(BaseModel):
    line: int
    row: dict[str, Any]
    reason: str


class ImportReport(BaseModel):
    """Best-effort import outcome: what went in and what was skipped."""

    imported: int = Field(default=0, ge=0)
    skipped: list[SkippedRow] = Field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def message(self) -> str:
        if not self.skipped:
            return f"{self.imported} rows imported"
        return f"{self.imported} rows imported, {self.skipped_count} skipped"
