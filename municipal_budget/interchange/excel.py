"""
Excel (.xlsx) workbooks of a municipality ledger.

Layout:
    Recettes            Rubrique | Code | Année | Budget voté (DT) | Réel (DT)
    Dépenses            (same columns)
    Événements futurs   Année | Description | Impact estimé (DT) | Rubrique | Type
                        (only when there are events)

Import reads the Recettes and Dépenses sheets; the sheet gives the type.
Columns are located by header, either the labels above or the wire names.
"""

import io
from typing import Any
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from municipal_budget.errors import ValidationError
from municipal_budget.models.budget import BudgetKind, MunicipalityLedger, RubricLedger


REVENUE_SHEET = "Recettes"
EXPENSE_SHEET = "Dépenses"
EVENTS_SHEET = "Événements futurs"

LEDGER_HEADERS = ["Rubrique", "Code", "Année", "Budget voté (DT)", "Réel (DT)"]
EVENT_HEADERS = ["Année", "Description", "Impact estimé (DT)", "Rubrique", "Type"]

# Header cell -> wire name. "Rubrique" (capitalised) is the label column.
_HEADER_TO_WIRE = {
    "Code": "rubrique",
    "code": "rubrique",
    "rubrique": "rubrique",
    "Année": "annee",
    "annee": "annee",
    "Budget voté (DT)": "budgetVote",
    "budgetVote": "budgetVote",
    "Réel (DT)": "reel",
    "reel": "reel",
}

_SHEET_KINDS = (
    (REVENUE_SHEET, BudgetKind.REVENUE),
    (EXPENSE_SHEET, BudgetKind.EXPENSE),
)


def _append_rubrics(sheet, rubrics: list[RubricLedger]) -> None:
    sheet.append(LEDGER_HEADERS)
    for rubric in rubrics:
        for entry in rubric.entries:
            sheet.append([rubric.name, rubric.code, entry.year, entry.voted, entry.actual])


def export_workbook(ledger: MunicipalityLedger) -> bytes:
    """Serialize a ledger to .xlsx bytes."""
    workbook = openpyxl.Workbook()

    revenues = workbook.active
    revenues.title = REVENUE_SHEET
    _append_rubrics(revenues, ledger.revenues)

    _append_rubrics(workbook.create_sheet(EXPENSE_SHEET), ledger.expenses)

    if ledger.future_events:
        events = workbook.create_sheet(EVENTS_SHEET)
        events.append(EVENT_HEADERS)
        for event in ledger.future_events:
            events.append([
                event.year,
                event.description,
                event.estimated_impact,
                event.rubric,
                event.kind.value,
            ])

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _normalize_cell(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def read_workbook(content: bytes) -> list[dict[str, Any]]:
    """
    Extract raw rows (wire-named cells, type from the sheet) from .xlsx bytes.

    Raises:
        ValidationError: Not a readable workbook
    """
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as e:
        raise ValidationError(f"File is not a readable .xlsx workbook: {e}")

    rows: list[dict[str, Any]] = []
    try:
        for sheet_name, kind in _SHEET_KINDS:
            if sheet_name not in workbook.sheetnames:
                continue
            values = workbook[sheet_name].iter_rows(values_only=True)
            header = next(values, None)
            if not header:
                continue
            columns = {
                index: _HEADER_TO_WIRE[str(cell).strip()]
                for index, cell in enumerate(header)
                if cell is not None and str(cell).strip() in _HEADER_TO_WIRE
            }
            for cells in values:
                if cells is None or all(c is None or c == "" for c in cells):
                    continue
                row: dict[str, Any] = {"type": kind.value}
                for index, wire in columns.items():
                    row[wire] = _normalize_cell(cells[index]) if index < len(cells) else None
                rows.append(row)
    finally:
        workbook.close()

    return rows
