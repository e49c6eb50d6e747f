"""CSV encoding of budget rows (header annee,rubrique,type,budgetVote,reel)."""

import csv
import io
from typing import Union

from municipal_budget.errors import ValidationError
from municipal_budget.models.budget import BudgetKind
from municipal_budget.models.interchange import WIRE_FIELDS, BudgetRow


TEMPLATE_FILENAME = "template_budget_import.csv"

TEMPLATE_ROWS = [
    BudgetRow(year=2024, rubric="R1", kind=BudgetKind.REVENUE, voted=100000, actual=95000),
    BudgetRow(year=2024, rubric="D1", kind=BudgetKind.EXPENSE, voted=80000, actual=78000),
]


def encode_rows(rows: list[BudgetRow]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=WIRE_FIELDS)
    writer.writeheader()
    for row in rows:
        writer.writerow(row.to_wire())
    return buffer.getvalue()


def decode_rows(content: Union[str, bytes]) -> list[dict[str, str]]:
    """
    Parse CSV text into dicts keyed by header name.

    A UTF-8 byte order mark is ignored and blank lines are skipped.

    Raises:
        ValidationError: Undecodable bytes or no header line
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("CSV file is not valid UTF-8")
    content = content.lstrip("\ufeff")

    reader = csv.DictReader(io.StringIO(content))
    if not reader.fieldnames:
        raise ValidationError("CSV file is empty")
    reader.fieldnames = [name.strip() for name in reader.fieldnames]

    rows = []
    for record in reader:
        # Cells beyond the header land under the None key
        record.pop(None, None)
        if all(not (value or "").strip() for value in record.values()):
            continue
        rows.append({k: (v or "").strip() for k, v in record.items()})
    return rows


def template_csv() -> str:
    """Example file with one row per budget type."""
    return encode_rows(TEMPLATE_ROWS)
