"""
Two-Stage Row Validation

DESIGN DECISION: Imported rows are validated in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required cell presence (annee, rubrique, type)
- Year is an integer, amounts are finite numbers
- Empty amount cells default to 0
- This catches malformed files and shifted columns

STAGE 2 - SEMANTIC VALIDATION:
- Type is recette or depense
- Rubric belongs to the set of that type
- Year is not before the first budget year
- Amounts are not negative
- Suspiciously distant years are flagged
- This catches rows that parse but make no sense

Stage 2 only runs if stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues. A row either yields a
clean BudgetRow or is reported with its issues.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from municipal_budget.errors import ValidationError
from municipal_budget.models.budget import MIN_BUDGET_YEAR, parse_kind, parse_rubric
from municipal_budget.models.interchange import (
    BudgetRow,
    RowValidationResult,
    ValidationIssue,
)


MAX_YEARS_AHEAD = 10


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_year(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    text = str(value).strip()
    # int() would read "2_024" as 2024
    if "_" in text:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _parse_amount(value: Any) -> Optional[Decimal]:
    if _is_blank(value):
        return Decimal("0")
    if isinstance(value, bool):
        return None
    text = str(value).strip().replace(" ", "").replace("\u00a0", "")
    if "_" in text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


class BudgetRowValidator:
    """
    Validates raw spreadsheet rows (wire-named cells) through the
    two-stage pipeline.
    """

    def __init__(self, today: Optional[date] = None):
        self._today = today

    def _validate_schema(
        self,
        raw: dict[str, Any],
    ) -> tuple[bool, list[ValidationIssue], dict[str, Any]]:
        """
        Stage 1: presence and parseability.

        Returns: (is_valid, issues, parsed_cells)
        """
        issues = []
        parsed: dict[str, Any] = {}

        for field in ("annee", "rubrique", "type"):
            if _is_blank(raw.get(field)):
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="missing",
                    message=f"Column '{field}' is empty",
                    severity="error",
                ))

        if not _is_blank(raw.get("annee")):
            year = _parse_year(raw["annee"])
            if year is None:
                issues.append(ValidationIssue(
                    field="annee",
                    issue_type="invalid_format",
                    message=f"Year '{raw['annee']}' is not a whole number",
                    severity="error",
                ))
            parsed["year"] = year

        for field, key in (("budgetVote", "voted"), ("reel", "actual")):
            amount = _parse_amount(raw.get(field))
            if amount is None:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="invalid_format",
                    message=f"Amount '{raw.get(field)}' in '{field}' is not a number",
                    severity="error",
                ))
            parsed[key] = amount

        parsed["kind"] = raw.get("type")
        parsed["rubric"] = raw.get("rubrique")

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues, parsed

    def _validate_semantic(
        self,
        parsed: dict[str, Any],
    ) -> tuple[bool, list[ValidationIssue], Optional[BudgetRow]]:
        """
        Stage 2: taxonomy and ranges.

        Returns: (is_valid, issues, row)
        """
        issues = []
        kind = rubric = None

        try:
            kind = parse_kind(parsed["kind"])
        except ValidationError as e:
            issues.append(ValidationIssue(
                field="type",
                issue_type="invalid_value",
                message=e.message,
                severity="error",
            ))

        if kind is not None:
            try:
                rubric = parse_rubric(kind, parsed["rubric"])
            except ValidationError as e:
                issues.append(ValidationIssue(
                    field="rubrique",
                    issue_type="invalid_value",
                    message=e.message,
                    severity="error",
                ))

        year = parsed["year"]
        if year < MIN_BUDGET_YEAR:
            issues.append(ValidationIssue(
                field="annee",
                issue_type="out_of_range",
                message=f"Year {year} is before {MIN_BUDGET_YEAR}",
                severity="error",
            ))
        else:
            current_year = (self._today or date.today()).year
            if year > current_year + MAX_YEARS_AHEAD:
                issues.append(ValidationIssue(
                    field="annee",
                    issue_type="suspicious_value",
                    message=f"Year {year} is more than {MAX_YEARS_AHEAD} years ahead",
                    severity="warning",
                ))

        for field, key in (("budgetVote", "voted"), ("reel", "actual")):
            if parsed[key] < 0:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="out_of_range",
                    message=f"Amount in '{field}' cannot be negative",
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        if not is_valid:
            return False, issues, None

        row = BudgetRow(
            year=year,
            rubric=rubric.value,
            kind=kind,
            voted=parsed["voted"],
            actual=parsed["actual"],
        )
        return True, issues, row

    def validate(self, raw: dict[str, Any], line: int) -> RowValidationResult:
        """
        Run the full pipeline on one row.

        Args:
            raw: Cells keyed by wire name (annee, rubrique, type, ...)
            line: 1-based data line number, for reporting
        """
        all_issues = []

        schema_valid, schema_issues, parsed = self._validate_schema(raw)
        all_issues.extend(schema_issues)

        semantic_valid = False
        row = None
        if schema_valid:
            semantic_valid, semantic_issues, row = self._validate_semantic(parsed)
            all_issues.extend(semantic_issues)

        return RowValidationResult(
            line=line,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            row=row,
            issues=all_issues,
        )
