"""Validation package."""

from municipal_budget.validation.validator import BudgetRowValidator

__all__ = ["BudgetRowValidator"]
