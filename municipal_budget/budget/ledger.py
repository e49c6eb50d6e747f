"""
Budget Ledger Service

Per-municipality budget figures: voted and actual amounts per rubric and
year, the yearly balance check and the list of expected future events.

DESIGN DECISION: Every mutation is read-modify-write of the whole ledger
document, so it runs under a per-municipality lock and the save carries
an optimistic version stamp. Two portal processes sharing one store can
still race; the loser gets a ConflictError instead of silently
overwriting the winner's figures.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from municipal_budget.audit import AuditLogger
from municipal_budget.config import AppSettings, get_settings
from municipal_budget.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    first_error_message,
)
from municipal_budget.models.audit import AuditEventBuilder
from municipal_budget.models.budget import (
    BalanceCheck,
    BudgetKind,
    FutureEvent,
    FutureEventCreate,
    FutureEventUpdate,
    MunicipalityLedger,
    Rubric,
    YearEntry,
    parse_rubric,
)
from municipal_budget.services.storage import KeyedLocks, LedgerRepository


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class BudgetLedger:
    """Reads and edits municipality ledgers."""

    def __init__(
        self,
        repository: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._repo = repository
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().app
        self._locks = locks or KeyedLocks()
        self._clock = clock or datetime.utcnow

    async def get(self, municipality_id: UUID) -> MunicipalityLedger:
        """
        Full ledger of a municipality.

        A municipality without stored data gets a blank ledger with all
        rubrics and no entries.
        """
        ledger = await self._repo.get(municipality_id)
        return ledger or MunicipalityLedger.blank(municipality_id)

    async def _mutate(
        self,
        municipality_id: UUID,
        change: Callable[[MunicipalityLedger], T],
    ) -> T:
        """Apply `change` to the current ledger and save it."""
        async with self._locks.lock(str(municipality_id)):
            ledger = await self.get(municipality_id)
            result = change(ledger)
            ledger.last_updated = self._clock()
            await self._repo.save(ledger)
        return result

    @staticmethod
    def _entry(year, voted, actual) -> YearEntry:
        try:
            return YearEntry(
                year=year,
                voted=voted if voted is not None else Decimal("0"),
                actual=actual if actual is not None else Decimal("0"),
            )
        except PydanticValidationError as e:
            raise ValidationError(first_error_message(e))

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def upsert_entry(
        self,
        municipality_id: UUID,
        kind,
        rubric_code,
        year: int,
        voted,
        actual,
    ) -> YearEntry:
        """
        Set voted and actual amounts of a rubric for a year.

        Overwrites an existing entry for the same year.

        Raises:
            ValidationError: Rubric not in the set for `kind`, negative
                amount, or year before the first budget year
        """
        rubric = parse_rubric(kind, rubric_code)
        entry = self._entry(year, voted, actual)

        await self._mutate(
            municipality_id,
            lambda ledger: ledger.rubric(rubric).upsert(entry),
        )

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.ledger_entry_saved(
                municipality_id=municipality_id,
                rubric=rubric.value,
                year=entry.year,
                voted=str(entry.voted),
                actual=str(entry.actual),
            ))
        return entry

    async def upsert_entries(
        self,
        municipality_id: UUID,
        entries: list[tuple[Rubric, YearEntry]],
    ) -> int:
        """
        Upsert many already-validated entries in a single save.

        Later entries for the same rubric and year win.
        """
        if not entries:
            return 0

        def change(ledger: MunicipalityLedger) -> None:
            for rubric, entry in entries:
                ledger.rubric(rubric).upsert(entry)

        await self._mutate(municipality_id, change)
        return len(entries)

    async def add_year(
        self,
        municipality_id: UUID,
        kind,
        rubric_code,
        year: int,
    ) -> YearEntry:
        """
        Add an empty (zero/zero) year to a rubric.

        Raises:
            ValidationError: Bad rubric or year
            ConflictError: The rubric already has that year
        """
        rubric = parse_rubric(kind, rubric_code)
        entry = self._entry(year, Decimal("0"), Decimal("0"))

        def change(ledger: MunicipalityLedger) -> None:
            item = ledger.rubric(rubric)
            if item.has_year(entry.year):
                raise ConflictError(
                    f"Year {entry.year} already exists for rubric {rubric.value}"
                )
            item.upsert(entry)

        await self._mutate(municipality_id, change)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.ledger_entry_saved(
                municipality_id=municipality_id,
                rubric=rubric.value,
                year=entry.year,
                voted="0",
                actual="0",
                year_added=True,
            ))
        return entry

    # ------------------------------------------------------------------
    # Balance
    # ------------------------------------------------------------------

    def _balance(self, ledger: MunicipalityLedger, year: int) -> BalanceCheck:
        revenue = ledger.total_voted(BudgetKind.REVENUE, year)
        expense = ledger.total_voted(BudgetKind.EXPENSE, year)
        balanced = abs(revenue - expense) <= self._settings.balance_tolerance

        totals = f"revenue = {revenue:.2f} DT, expense = {expense:.2f} DT"
        if balanced:
            message = f"Budget balanced for {year}: {totals}"
        else:
            message = f"Budget not balanced for {year}: {totals}"

        return BalanceCheck(
            municipality_id=ledger.municipality_id,
            year=year,
            balanced=balanced,
            total_revenue=revenue,
            total_expense=expense,
            message=message,
        )

    async def validate_balance(self, municipality_id: UUID, year: int) -> BalanceCheck:
        """
        Compare total voted revenue with total voted expense for a year.

        Actual amounts are ignored. Rubrics without an entry count as zero.
        """
        check = self._balance(await self.get(municipality_id), year)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.balance_checked(
                municipality_id=municipality_id,
                year=year,
                balanced=check.balanced,
                total_revenue=str(check.total_revenue),
                total_expense=str(check.total_expense),
            ))
        return check

    async def balance_report(self, municipality_id: UUID) -> list[BalanceCheck]:
        """One balance check per year present in the ledger."""
        ledger = await self.get(municipality_id)
        return [self._balance(ledger, year) for year in ledger.years()]

    # ------------------------------------------------------------------
    # Future events
    # ------------------------------------------------------------------

    async def add_future_event(
        self,
        municipality_id: UUID,
        data: FutureEventCreate,
    ) -> FutureEvent:
        now = self._clock()
        event = FutureEvent(**data.model_dump(), created_at=now, updated_at=now)

        def change(ledger: MunicipalityLedger) -> None:
            ledger.future_events.append(event)
            ledger.future_events.sort(key=lambda e: e.year)

        await self._mutate(municipality_id, change)
        await self._log_event_change(municipality_id, event.id)
        return event

    async def update_future_event(
        self,
        municipality_id: UUID,
        event_id: UUID,
        patch: FutureEventUpdate,
    ) -> FutureEvent:
        """
        Raises:
            NotFoundError: Unknown event
            ValidationError: Resulting rubric does not match its kind
        """
        changes = {
            k: v for k, v in patch.model_dump(exclude_unset=True).items()
            if v is not None
        }

        def change(ledger: MunicipalityLedger) -> FutureEvent:
            current = ledger.event(event_id)
            if current is None:
                raise NotFoundError(f"Future event {event_id} not found")
            merged = {
                **current.model_dump(),
                **changes,
                "id": current.id,
                "created_at": current.created_at,
                "updated_at": self._clock(),
            }
            try:
                updated = FutureEvent.model_validate(merged)
            except PydanticValidationError as e:
                raise ValidationError(first_error_message(e))
            ledger.future_events = [
                updated if e.id == event_id else e for e in ledger.future_events
            ]
            ledger.future_events.sort(key=lambda e: e.year)
            return updated

        updated = await self._mutate(municipality_id, change)
        await self._log_event_change(municipality_id, event_id)
        return updated

    async def delete_future_event(self, municipality_id: UUID, event_id: UUID) -> None:
        """
        Raises:
            NotFoundError: Unknown event
        """
        def change(ledger: MunicipalityLedger) -> None:
            if ledger.event(event_id) is None:
                raise NotFoundError(f"Future event {event_id} not found")
            ledger.future_events = [
                e for e in ledger.future_events if e.id != event_id
            ]

        await self._mutate(municipality_id, change)
        await self._log_event_change(municipality_id, event_id, deleted=True)

    async def _log_event_change(
        self,
        municipality_id: UUID,
        event_id: UUID,
        deleted: bool = False,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.future_event_changed(
                municipality_id=municipality_id,
                event_id=event_id,
                deleted=deleted,
            ))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def delete_ledger(self, municipality_id: UUID) -> bool:
        """Drop all budget data of a municipality (used on deletion)."""
        async with self._locks.lock(str(municipality_id)):
            removed = await self._repo.delete(municipality_id)

        if removed:
            logger.info("ledger_deleted", municipality_id=str(municipality_id))
            if self._audit_logger:
                await self._audit_logger.log(
                    AuditEventBuilder.ledger_deleted(municipality_id)
                )
        return removed
