"""
Import / Export Service

File-level operations on a municipality's budget:
- CSV export/import and the import template
- Excel export/import
- JSON export for analysis tooling

Exports return (filename, content); the caller decides where the bytes go.
"""

import json
import re
from datetime import datetime
from typing import Callable, Optional, Union
from uuid import UUID

import structlog

from municipal_budget.audit import AuditLogger
from municipal_budget.budget import BudgetLedger, MunicipalityRegistry
from municipal_budget.config import AppSettings, get_settings
from municipal_budget.errors import NotFoundError, ValidationError
from municipal_budget.interchange import csv_codec, excel
from municipal_budget.interchange.mapper import LedgerRowMapper, ledger_to_rows
from municipal_budget.models.audit import AuditEventBuilder
from municipal_budget.models.budget import Municipality, RubricLedger
from municipal_budget.models.interchange import ImportReport


logger = structlog.get_logger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]+')


def _rubric_to_json(rubric: RubricLedger) -> dict:
    return {
        "code": rubric.code,
        "nom": rubric.name,
        "donnees": [
            {
                "annee": entry.year,
                "budgetVote": float(entry.voted),
                "reel": float(entry.actual),
            }
            for entry in rubric.entries
        ],
    }


class ImportExportService:
    """Spreadsheet and JSON interchange for municipality budgets."""

    def __init__(
        self,
        registry: MunicipalityRegistry,
        ledger: BudgetLedger,
        mapper: Optional[LedgerRowMapper] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._registry = registry
        self._ledger = ledger
        self._mapper = mapper or LedgerRowMapper(ledger)
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().app
        self._clock = clock or datetime.utcnow

    async def _municipality(self, municipality_id: UUID) -> Municipality:
        municipality = await self._registry.get(municipality_id)
        if municipality is None:
            raise NotFoundError(f"Municipality {municipality_id} not found")
        return municipality

    def _filename(self, municipality: Municipality, extension: str) -> str:
        name = _UNSAFE_FILENAME_CHARS.sub("_", municipality.name)
        return f"budget_{name}_{self._clock().date().isoformat()}.{extension}"

    async def _log_export(
        self,
        municipality_id: UUID,
        export_format: str,
        row_count: int,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.export_generated(
                municipality_id, export_format, row_count,
            ))

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export_csv(self, municipality_id: UUID) -> tuple[str, str]:
        municipality = await self._municipality(municipality_id)
        rows = await self._mapper.to_rows(municipality_id)
        await self._log_export(municipality_id, "csv", len(rows))
        return self._filename(municipality, "csv"), csv_codec.encode_rows(rows)

    async def export_excel(self, municipality_id: UUID) -> tuple[str, bytes]:
        municipality = await self._municipality(municipality_id)
        ledger = await self._ledger.get(municipality_id)
        content = excel.export_workbook(ledger)
        await self._log_export(municipality_id, "xlsx", len(ledger_to_rows(ledger)))
        return self._filename(municipality, "xlsx"), content

    async def export_json(self, municipality_id: UUID) -> tuple[str, str]:
        """Municipality plus full ledger, for offline analysis."""
        municipality = await self._municipality(municipality_id)
        ledger = await self._ledger.get(municipality_id)

        document = {
            "commune": municipality.model_dump(mode="json"),
            "recettes": [_rubric_to_json(r) for r in ledger.revenues],
            "depenses": [_rubric_to_json(r) for r in ledger.expenses],
            "evenementsFuturs": [
                {
                    "id": str(event.id),
                    "annee": event.year,
                    "description": event.description,
                    "impactEstime": float(event.estimated_impact),
                    "rubrique": event.rubric,
                    "type": event.kind.value,
                    "createdAt": event.created_at.isoformat(),
                    "updatedAt": event.updated_at.isoformat(),
                }
                for event in ledger.future_events
            ],
        }
        await self._log_export(municipality_id, "json", len(ledger_to_rows(ledger)))
        return (
            self._filename(municipality, "json"),
            json.dumps(document, indent=2, ensure_ascii=False),
        )

    def template_csv(self) -> tuple[str, str]:
        return csv_codec.TEMPLATE_FILENAME, csv_codec.template_csv()

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    async def import_csv(
        self,
        municipality_id: UUID,
        content: Union[str, bytes],
    ) -> ImportReport:
        await self._municipality(municipality_id)
        rows = csv_codec.decode_rows(content)
        return await self._import(municipality_id, rows, "csv")

    async def import_excel(self, municipality_id: UUID, content: bytes) -> ImportReport:
        await self._municipality(municipality_id)
        rows = excel.read_workbook(content)
        return await self._import(municipality_id, rows, "xlsx")

    async def _import(
        self,
        municipality_id: UUID,
        rows: list[dict],
        source: str,
    ) -> ImportReport:
        if len(rows) > self._settings.max_import_rows:
            raise ValidationError(
                f"File has {len(rows)} rows; the limit is {self._settings.max_import_rows}"
            )

        report = await self._mapper.from_rows(municipality_id, rows)

        logger.info(
            "import_completed",
            municipality_id=str(municipality_id),
            source=source,
            imported=report.imported,
            skipped=report.skipped_count,
        )
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.import_completed(
                municipality_id, source, report.imported, report.skipped_count,
            ))
        return report
