"""
Budget Models for the Municipal Budget Portal

Rubrics follow the MALE nomenclature (organic law 2018-46): 12 revenue
categories and 11 expense parts. They are a closed taxonomy, known in
advance and never user-defined.

DESIGN DECISION: Rubric codes are enums, not free strings.
A code is parsed once at the service boundary; everything behind that
boundary works with RevenueRubric / ExpenseRubric members.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from municipal_budget.errors import ValidationError


MIN_BUDGET_YEAR = 2018


# =============================================================================
# ENUMS - Closed rubric taxonomy
# =============================================================================

class BudgetKind(str, Enum):
    """Side of the budget a rubric belongs to. Values are the wire names."""
    REVENUE = "recette"
    EXPENSE = "depense"


class RevenueRubric(str, Enum):
    """The 12 revenue categories."""
    R1 = "R1"
    R2 = "R2"
    R3 = "R3"
    R4 = "R4"
    R5 = "R5"
    R6 = "R6"
    R7 = "R7"
    R8 = "R8"
    R9 = "R9"
    R10 = "R10"
    R11 = "R11"
    R12 = "R12"

    @property
    def kind(self) -> BudgetKind:
        return BudgetKind.REVENUE

    @property
    def label(self) -> str:
        return REVENUE_LABELS[self]


class ExpenseRubric(str, Enum):
    """The 11 expense parts."""
    D1 = "D1"
    D2 = "D2"
    D3 = "D3"
    D4 = "D4"
    D5 = "D5"
    D6 = "D6"
    D7 = "D7"
    D8 = "D8"
    D9 = "D9"
    D10 = "D10"
    D11 = "D11"

    @property
    def kind(self) -> BudgetKind:
        return BudgetKind.EXPENSE

    @property
    def label(self) -> str:
        return EXPENSE_LABELS[self]


Rubric = Union[RevenueRubric, ExpenseRubric]


REVENUE_LABELS: dict[RevenueRubric, str] = {
    RevenueRubric.R1: "Recettes fiscales",
    RevenueRubric.R2: "Recettes non fiscales",
    RevenueRubric.R3: "Recettes de la dette",
    RevenueRubric.R4: "Recettes d'exploitation",
    RevenueRubric.R5: "Recettes exceptionnelles",
    RevenueRubric.R6: "Subventions et dotations",
    RevenueRubric.R7: "Emprunts",
    RevenueRubric.R8: "Fonds de concours",
    RevenueRubric.R9: "Produits des cessions",
    RevenueRubric.R10: "Produits financiers",
    RevenueRubric.R11: "Autres recettes",
    RevenueRubric.R12: "Recettes de régularisation",
}

EXPENSE_LABELS: dict[ExpenseRubric, str] = {
    ExpenseRubric.D1: "Charges de personnel",
    ExpenseRubric.D2: "Charges de fonctionnement",
    ExpenseRubric.D3: "Charges d'intérêts",
    ExpenseRubric.D4: "Subventions et dotations",
    ExpenseRubric.D5: "Investissements",
    ExpenseRubric.D6: "Remboursements d'emprunts",
    ExpenseRubric.D7: "Charges exceptionnelles",
    ExpenseRubric.D8: "Fonds de concours",
    ExpenseRubric.D9: "Acquisitions d'immobilisations",
    ExpenseRubric.D10: "Autres dépenses",
    ExpenseRubric.D11: "Dépenses de régularisation",
}


def rubrics_for(kind: BudgetKind) -> list[Rubric]:
    """Rubrics of one side, in declaration order."""
    if kind == BudgetKind.REVENUE:
        return list(RevenueRubric)
    return list(ExpenseRubric)


def parse_kind(value) -> BudgetKind:
    """Parse a kind given as enum or wire string."""
    if isinstance(value, BudgetKind):
        return value
    try:
        return BudgetKind(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown budget type '{value}'. Expected 'recette' or 'depense'"
        )


def parse_rubric(kind, code) -> Rubric:
    """
    Resolve a rubric code within the set matching `kind`.

    Raises:
        ValidationError: unknown kind, or code not in that kind's set
    """
    kind = parse_kind(kind)
    raw = code.value if isinstance(code, Enum) else str(code).strip().upper()
    enum_cls = RevenueRubric if kind == BudgetKind.REVENUE else ExpenseRubric
    try:
        return enum_cls(raw)
    except ValueError:
        raise ValidationError(
            f"Rubric '{raw}' is not a {kind.value} rubric"
        )


# =============================================================================
# LEDGER MODELS
# =============================================================================

class YearEntry(BaseModel):
    """Voted and actual amounts of one rubric for one year (DT)."""

    year: int = Field(
        ...,
        ge=MIN_BUDGET_YEAR,
        description="Budget year"
    )
    voted: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Approved (voted) amount"
    )
    actual: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Realized amount"
    )


class RubricLedger(BaseModel):
    """Yearly entries of one rubric, ascending by year, one per year."""

    code: str
    name: str
    entries: list[YearEntry] = Field(default_factory=list)

    def entry_for(self, year: int) -> Optional[YearEntry]:
        for entry in self.entries:
            if entry.year == year:
                return entry
        return None

    def has_year(self, year: int) -> bool:
        return self.entry_for(year) is not None

    def upsert(self, entry: YearEntry) -> None:
        """Overwrite the entry of that year or insert it in order."""
        self.entries = [e for e in self.entries if e.year != entry.year]
        self.entries.append(entry)
        self.entries.sort(key=lambda e: e.year)

    def voted_for(self, year: int) -> Decimal:
        entry = self.entry_for(year)
        return entry.voted if entry else Decimal("0")


class FutureEvent(BaseModel):
    """
    An expected event affecting a future budget (regressor).

    The rubric must belong to the set implied by `kind`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    year: int = Field(..., ge=MIN_BUDGET_YEAR)
    description: str = Field(
        ...,
        min_length=1,
        max_length=500,
    )
    estimated_impact: Decimal = Field(
        ...,
        description="Estimated monetary impact (DT)"
    )
    rubric: str
    kind: BudgetKind
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_rubric_kind(self) -> 'FutureEvent':
        _check_rubric_matches_kind(self.rubric, self.kind)
        return self


class FutureEventCreate(BaseModel):
    """Fields supplied when recording a future event."""
    model_config = ConfigDict(str_strip_whitespace=True)

    year: int = Field(..., ge=MIN_BUDGET_YEAR)
    description: str = Field(..., min_length=1, max_length=500)
    estimated_impact: Decimal
    rubric: str
    kind: BudgetKind

    @model_validator(mode='after')
    def validate_rubric_kind(self) -> 'FutureEventCreate':
        _check_rubric_matches_kind(self.rubric, self.kind)
        return self


class FutureEventUpdate(BaseModel):
    """Partial update; unset fields are left alone."""
    model_config = ConfigDict(extra="forbid")

    year: Optional[int] = Field(default=None, ge=MIN_BUDGET_YEAR)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    estimated_impact: Optional[Decimal] = None
    rubric: Optional[str] = None
    kind: Optional[BudgetKind] = None


def _check_rubric_matches_kind(rubric: str, kind: BudgetKind) -> None:
    codes = {r.value for r in rubrics_for(kind)}
    if rubric not in codes:
        raise ValueError(f"Rubric '{rubric}' does not belong to {kind.value}")


class MunicipalityLedger(BaseModel):
    """
    Complete budget data of one municipality.

    All 23 rubrics are always present, possibly with no entries.
    `version` is incremented by the repository on every save.
    """

    municipality_id: UUID
    revenues: list[RubricLedger]
    expenses: list[RubricLedger]
    future_events: list[FutureEvent] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=datetime.utcnow)
    version: int = Field(default=0, ge=0)

    @classmethod
    def blank(cls, municipality_id: UUID) -> 'MunicipalityLedger':
        return cls(
            municipality_id=municipality_id,
            revenues=[
                RubricLedger(code=r.value, name=r.label) for r in RevenueRubric
            ],
            expenses=[
                RubricLedger(code=r.value, name=r.label) for r in ExpenseRubric
            ],
        )

    def rubrics(self, kind: BudgetKind) -> list[RubricLedger]:
        return self.revenues if kind == BudgetKind.REVENUE else self.expenses

    def rubric(self, rubric: Rubric) -> RubricLedger:
        for item in self.rubrics(rubric.kind):
            if item.code == rubric.value:
                return item
        # Ledgers saved before a rubric existed get it on demand
        item = RubricLedger(code=rubric.value, name=rubric.label)
        self.rubrics(rubric.kind).append(item)
        return item

    def total_voted(self, kind: BudgetKind, year: int) -> Decimal:
        return sum(
            (item.voted_for(year) for item in self.rubrics(kind)),
            Decimal("0"),
        )

    def years(self) -> list[int]:
        """Every year that has at least one entry, ascending."""
        years = {
            entry.year
            for item in self.revenues + self.expenses
            for entry in item.entries
        }
        return sorted(years)

    def event(self, event_id: UUID) -> Optional[FutureEvent]:
        for event in self.future_events:
            if event.id == event_id:
                return event
        return None


class BalanceCheck(BaseModel):
    """Result of comparing voted revenue against voted expense for a year."""

    municipality_id: UUID
    year: int
    balanced: bool
    total_revenue: Decimal
    total_expense: Decimal
    message: str

    @property
    def difference(self) -> Decimal:
        return self.total_revenue - self.total_expense


# =============================================================================
# MUNICIPALITY
# =============================================================================

class Municipality(BaseModel):
    """A municipality ("commune") whose budget is tracked."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(
        ...,
        min_length=1,
        max_length=20,
        description="Postal or administrative code (unique)"
    )
    region: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Governorate"
    )
    sub_region: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Delegation"
    )
    owner_id: Optional[UUID] = Field(
        default=None,
        description="Assigned user"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MunicipalityCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(..., min_length=1, max_length=20)
    region: str = Field(..., min_length=1, max_length=100)
    sub_region: Optional[str] = Field(default=None, max_length=100)
    owner_id: Optional[UUID] = None


class MunicipalityUpdate(BaseModel):
    """Partial update; explicitly passing owner_id=None unassigns."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    region: Optional[str] = Field(default=None, min_length=1, max_length=100)
    sub_region: Optional[str] = Field(default=None, max_length=100)
    owner_id: Optional[UUID] = None
