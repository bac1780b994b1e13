"""ORM models for the budget ledger."""

from budget_kernel.models.budget import (
    ArchivedExpenseModel,
    BudgetItemModel,
    BudgetModel,
    ExpenseModel,
)

__all__ = [
    "ArchivedExpenseModel",
    "BudgetItemModel",
    "BudgetModel",
    "ExpenseModel",
]
