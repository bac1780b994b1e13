"""
Pure domain layer.

Value objects, state machines and derivations with NO dependencies on
SQLAlchemy, the database, the wall clock or any other I/O.  All domain
objects are immutable and deterministic.
"""

from budget_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from budget_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from budget_kernel.domain.ledger import (
    BudgetHealth,
    BudgetItemPosition,
    BudgetSummary,
    HealthThresholds,
    derive_budget_summary,
    derive_item_position,
    submission_headroom,
)
from budget_kernel.domain.models import (
    ApprovalDecision,
    ArchivedExpense,
    Budget,
    BudgetItem,
    BudgetStatus,
    BudgetType,
    Expense,
    ExpenseStatus,
    ExpenseType,
)
from budget_kernel.domain.values import Currency, Money, sum_money

__all__ = [
    "ApprovalDecision",
    "ArchivedExpense",
    "Budget",
    "BudgetHealth",
    "BudgetItem",
    "BudgetItemPosition",
    "BudgetStatus",
    "BudgetSummary",
    "BudgetType",
    "Clock",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "Expense",
    "ExpenseStatus",
    "ExpenseType",
    "HealthThresholds",
    "Money",
    "SystemClock",
    "derive_budget_summary",
    "derive_item_position",
    "submission_headroom",
    "sum_money",
]
