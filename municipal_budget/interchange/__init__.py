"""Budget data interchange: CSV, Excel and JSON."""

from municipal_budget.interchange.mapper import LedgerRowMapper, ledger_to_rows
from municipal_budget.interchange.service import ImportExportService

__all__ = ["ImportExportService", "LedgerRowMapper", "ledger_to_rows"]
