"""
Ledger <-> Row Mapping

Flattens a ledger into rows (one per rubric-year) and applies rows back.

Row order on export: revenue rubrics in declaration order, then expense
rubrics, each rubric's years ascending.

Import is best-effort: rows that fail validation are skipped, logged and
listed in the report; the valid rows are applied in one save.
"""

from typing import Any, Iterable, Optional
from uuid import UUID

import structlog

from municipal_budget.budget import BudgetLedger
from municipal_budget.models.budget import (
    BudgetKind,
    MunicipalityLedger,
    Rubric,
    YearEntry,
    parse_rubric,
)
from municipal_budget.models.interchange import BudgetRow, ImportReport, SkippedRow
from municipal_budget.validation import BudgetRowValidator


logger = structlog.get_logger(__name__)


def ledger_to_rows(ledger: MunicipalityLedger) -> list[BudgetRow]:
    rows = []
    for kind, rubrics in (
        (BudgetKind.REVENUE, ledger.revenues),
        (BudgetKind.EXPENSE, ledger.expenses),
    ):
        for rubric in rubrics:
            for entry in rubric.entries:
                rows.append(BudgetRow(
                    year=entry.year,
                    rubric=rubric.code,
                    kind=kind,
                    voted=entry.voted,
                    actual=entry.actual,
                ))
    return rows


class LedgerRowMapper:
    """Moves budget data between a municipality ledger and flat rows."""

    def __init__(
        self,
        ledger: BudgetLedger,
        validator: Optional[BudgetRowValidator] = None,
    ):
        self._ledger = ledger
        self._validator = validator or BudgetRowValidator()

    async def to_rows(self, municipality_id: UUID) -> list[BudgetRow]:
        return ledger_to_rows(await self._ledger.get(municipality_id))

    async def from_rows(
        self,
        municipality_id: UUID,
        rows: Iterable[dict[str, Any]],
    ) -> ImportReport:
        """
        Validate and apply raw rows keyed by wire name.

        Returns:
            ImportReport with the number applied and every skipped row
        """
        accepted: list[tuple[Rubric, YearEntry]] = []
        skipped: list[SkippedRow] = []

        for line, raw in enumerate(rows, start=1):
            result = self._validator.validate(raw, line)
            if not result.is_valid:
                logger.warning(
                    "import_row_skipped",
                    municipality_id=str(municipality_id),
                    line=line,
                    reason=result.summary,
                )
                skipped.append(SkippedRow(
                    line=line,
                    row={k: "" if v is None else str(v) for k, v in raw.items()},
                    reason=result.summary,
                ))
                continue

            row = result.row
            accepted.append((
                parse_rubric(row.kind, row.rubric),
                YearEntry(year=row.year, voted=row.voted, actual=row.actual),
            ))

        imported = await self._ledger.upsert_entries(municipality_id, accepted)
        return ImportReport(imported=imported, skipped=skipped)
