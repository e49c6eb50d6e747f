"""Budget domain services: municipality registry and budget ledger."""

from municipal_budget.budget.ledger import BudgetLedger
from municipal_budget.budget.registry import MunicipalityRegistry

__all__ = ["BudgetLedger", "MunicipalityRegistry"]
