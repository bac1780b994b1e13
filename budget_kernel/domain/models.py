"""
Budget Ledger Domain Models (``budget_kernel.domain.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of the ledger: Budget,
BudgetItem and Expense, plus their status and classification enums.

Architecture position
---------------------
**Kernel domain layer** -- pure data definitions with ZERO I/O.  Services
never mutate these objects; every change produces a new value via
``dataclasses.replace`` that the store commits atomically.

Invariants enforced
-------------------
* All monetary fields are ``Money`` -- NEVER ``float`` or bare ``Decimal``.
* Budget: ``end_date >= start_date``; ``total_amount`` is non-negative.
* BudgetItem: ``budgeted_amount`` non-negative; threshold (when set) is
  non-negative and in the item's currency.
* Expense: ``amount`` strictly positive; ``rejection_reason`` present iff
  ``status`` is ``rejected``.

Derived figures (spent, committed, available, health ...) are deliberately
absent: see ``budget_kernel.domain.ledger``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from budget_kernel.domain.values import Currency, Money
from budget_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidDateRangeError,
)


class BudgetStatus(Enum):
    """Budget lifecycle states."""
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class BudgetType(Enum):
    PROJECT = "project"
    ORGANIZATIONAL = "organizational"
    DEPARTMENTAL = "departmental"
    PROGRAM = "program"
    EMERGENCY = "emergency"
    CAPACITY_BUILDING = "capacity_building"
    ADVOCACY = "advocacy"
    RESEARCH = "research"
    PARTNERSHIP = "partnership"
    EVENT = "event"
    MAINTENANCE = "maintenance"
    CONTINGENCY = "contingency"


class ExpenseStatus(Enum):
    """Expense lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


class ExpenseType(Enum):
    ADMINISTRATIVE = "administrative"
    OPERATIONAL = "operational"
    TRAVEL = "travel"
    EQUIPMENT = "equipment"
    SUPPLIES = "supplies"
    SERVICES = "services"
    UTILITIES = "utilities"
    RENT = "rent"
    INSURANCE = "insurance"
    OTHER = "other"


class ApprovalDecision(Enum):
    APPROVE = "approve"
    REJECT = "reject"


# Expense states whose amount/category may still be edited
EDITABLE_EXPENSE_STATES = frozenset({ExpenseStatus.DRAFT, ExpenseStatus.REJECTED})

# Expense states with no further workflow transitions
TERMINAL_EXPENSE_STATES = frozenset({ExpenseStatus.PAID, ExpenseStatus.REJECTED})


def _require_non_negative(field: str, amount: Money) -> None:
    if amount.is_negative:
        raise InvalidAmountError(field, amount, "must not be negative")


@dataclass(frozen=True)
class Budget:
    """A time-boxed monetary allocation in one currency."""
    id: UUID
    title: str
    total_amount: Money
    start_date: date
    end_date: date
    created_by: str
    status: BudgetStatus = BudgetStatus.DRAFT
    budget_type: BudgetType = BudgetType.ORGANIZATIONAL
    description: str = ""
    fiscal_year: str | None = None
    notes: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_at: datetime | None = None
    status_changed_at: datetime | None = None

    def __post_init__(self) -> None:
        _require_non_negative("total_amount", self.total_amount)
        if self.end_date < self.start_date:
            raise InvalidDateRangeError(
                self.start_date.isoformat(), self.end_date.isoformat()
            )

    @property
    def currency(self) -> Currency:
        return self.total_amount.currency

    @property
    def is_open(self) -> bool:
        """Whether items may still be added or re-allocated."""
        return self.status in (BudgetStatus.DRAFT, BudgetStatus.ACTIVE)


@dataclass(frozen=True)
class BudgetItem:
    """A named spending line within a Budget, with its own approval policy."""
    id: UUID
    budget_id: UUID
    category: str
    budgeted_amount: Money
    description: str = ""
    subcategory: str | None = None
    approval_required_threshold: Money | None = None
    is_locked: bool = False
    responsible_person: str | None = None
    notes: str | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        _require_non_negative("budgeted_amount", self.budgeted_amount)
        threshold = self.approval_required_threshold
        if threshold is not None:
            if threshold.currency != self.budgeted_amount.currency:
                raise CurrencyMismatchError(
                    self.budgeted_amount.currency.code, threshold.currency.code
                )
            _require_non_negative("approval_required_threshold", threshold)

    @property
    def currency(self) -> Currency:
        return self.budgeted_amount.currency


@dataclass(frozen=True)
class Expense:
    """A single spending request against exactly one BudgetItem."""
    id: UUID
    budget_item_id: UUID
    title: str
    amount: Money
    expense_date: date
    submitted_by: str
    expense_type: ExpenseType = ExpenseType.OTHER
    status: ExpenseStatus = ExpenseStatus.DRAFT
    description: str = ""
    vendor: str | None = None
    receipt_reference: str | None = None
    notes: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    rejected_by: str | None = None
    paid_at: datetime | None = None
    created_at: datetime | None = None
    status_changed_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.amount.is_positive:
            raise InvalidAmountError("amount", self.amount, "must be greater than zero")
        if (self.status == ExpenseStatus.REJECTED) != bool(self.rejection_reason):
            raise ValueError(
                "rejection_reason must be set exactly when an expense is rejected"
            )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXPENSE_STATES

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_EXPENSE_STATES


@dataclass(frozen=True)
class ArchivedExpense:
    """A terminal expense kept after its owning BudgetItem was deleted."""
    expense: Expense
    budget_id: UUID
    archived_at: datetime
    archived_by: str

    @property
    def budget_item_id(self) -> UUID:
        return self.expense.budget_item_id
