"""
Ledger derivations (``budget_kernel.domain.ledger``).

Responsibility
--------------
The single authoritative derivation of every figure the ledger exposes:
per-item spent/approved/pending/committed/available amounts, utilization
and health, and the budget-level rollup.  Cards, dashboards, edit forms and
the allocation guard all read these numbers from here, so every surface
sees identical values.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over immutable values, ZERO I/O.
Nothing in this module is ever persisted; positions are recomputed from the
current expense set on every read.

Invariants enforced
-------------------
* committed = spent + approved; encumbered = pending + approved;
  truly_available = budgeted - committed - pending.
* Percentages are rounded half-up to 2 places and are 0 against a zero base.
* ``submission_headroom`` never counts drafts: a draft reserves nothing, so
  only money that is paid, approved or awaiting approval limits a submission.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from budget_kernel.domain.models import Budget, BudgetItem, BudgetStatus, Expense, ExpenseStatus
from budget_kernel.domain.values import Currency, Money, sum_money


class BudgetHealth(Enum):
    HEALTHY = "healthy"
    CAUTION = "caution"
    AT_RISK = "at_risk"
    OVERCOMMITTED = "overcommitted"
    UNDERUTILIZED = "underutilized"


@dataclass(frozen=True)
class HealthThresholds:
    """Utilization bands used by ``assess_health``."""
    at_risk_percentage: Decimal = Decimal("95")
    caution_percentage: Decimal = Decimal("85")
    underutilized_spent_percentage: Decimal = Decimal("25")
    # Fraction of the budget's elapsed duration an item must have existed
    # for before low spending counts as underutilization.
    underutilized_age_fraction: Decimal = Decimal("0.5")

    def __post_init__(self) -> None:
        if not self.caution_percentage <= self.at_risk_percentage:
            raise ValueError("caution_percentage must not exceed at_risk_percentage")
        if not Decimal("0") <= self.underutilized_age_fraction <= Decimal("1"):
            raise ValueError("underutilized_age_fraction must be between 0 and 1")


DEFAULT_HEALTH_THRESHOLDS = HealthThresholds()


@dataclass(frozen=True)
class BudgetItemPosition:
    """Derived state of one BudgetItem at a point in time."""
    budget_item_id: UUID
    currency: Currency
    budgeted_amount: Money
    spent_amount: Money
    approved_amount: Money
    pending_amount: Money
    draft_amount: Money
    awaiting_approval_amount: Money
    rejected_amount: Money
    committed_amount: Money
    encumbered_amount: Money
    truly_available_amount: Money
    utilization_percentage: Decimal
    spent_percentage: Decimal
    variance: Money
    budget_health: BudgetHealth
    can_spend: bool
    expense_count: int

    @property
    def is_overcommitted(self) -> bool:
        return self.committed_amount > self.budgeted_amount


@dataclass(frozen=True)
class BudgetSummary:
    """Budget-level rollup of its items' positions."""
    budget_id: UUID
    status: BudgetStatus
    currency: Currency
    total_amount: Money
    total_allocated: Money
    total_spent: Money
    total_approved: Money
    total_pending: Money
    total_committed: Money
    total_encumbered: Money
    remaining_amount: Money
    allocated_percentage: Decimal
    spent_percentage: Decimal
    item_count: int
    items: tuple[BudgetItemPosition, ...] = field(default=())

    @property
    def has_outstanding_encumbrance(self) -> bool:
        return not self.total_encumbered.is_zero


def _sum_status(
    expenses: Iterable[Expense],
    statuses: frozenset[ExpenseStatus],
    currency: Currency,
) -> Money:
    return sum_money((e.amount for e in expenses if e.status in statuses), currency)


_PAID = frozenset({ExpenseStatus.PAID})
_APPROVED = frozenset({ExpenseStatus.APPROVED})
_PENDING_OR_DRAFT = frozenset({ExpenseStatus.PENDING, ExpenseStatus.DRAFT})
_DRAFT = frozenset({ExpenseStatus.DRAFT})
_PENDING = frozenset({ExpenseStatus.PENDING})
_REJECTED = frozenset({ExpenseStatus.REJECTED})


def assess_health(
    *,
    committed: Money,
    budgeted: Money,
    utilization_percentage: Decimal,
    spent_percentage: Decimal,
    item_age_days: int,
    budget_elapsed_days: int,
    thresholds: HealthThresholds = DEFAULT_HEALTH_THRESHOLDS,
) -> BudgetHealth:
    """Classify an item; the first matching band wins."""
    if committed > budgeted:
        return BudgetHealth.OVERCOMMITTED
    if utilization_percentage >= thresholds.at_risk_percentage:
        return BudgetHealth.AT_RISK
    if utilization_percentage >= thresholds.caution_percentage:
        return BudgetHealth.CAUTION
    if (
        spent_percentage < thresholds.underutilized_spent_percentage
        and Decimal(item_age_days)
        > Decimal(budget_elapsed_days) * thresholds.underutilized_age_fraction
    ):
        return BudgetHealth.UNDERUTILIZED
    return BudgetHealth.HEALTHY


def _item_age_days(item: BudgetItem, budget: Budget, as_of: date) -> int:
    opened = item.created_at.date() if item.created_at is not None else budget.start_date
    return max((as_of - opened).days, 0)


def _budget_elapsed_days(budget: Budget, as_of: date) -> int:
    """Days of the budget period already behind ``as_of``, clamped to the period."""
    total = (budget.end_date - budget.start_date).days
    return min(max((as_of - budget.start_date).days, 0), total)


def derive_item_position(
    item: BudgetItem,
    expenses: Sequence[Expense],
    budget: Budget,
    as_of: date,
    thresholds: HealthThresholds = DEFAULT_HEALTH_THRESHOLDS,
) -> BudgetItemPosition:
    """Compute every derived field of ``item`` from its current expenses.

    Raises:
        CurrencyMismatchError: an expense is not in the item's currency.
    """
    currency = item.currency
    budgeted = item.budgeted_amount

    spent = _sum_status(expenses, _PAID, currency)
    approved = _sum_status(expenses, _APPROVED, currency)
    pending = _sum_status(expenses, _PENDING_OR_DRAFT, currency)
    draft = _sum_status(expenses, _DRAFT, currency)
    awaiting = _sum_status(expenses, _PENDING, currency)
    rejected = _sum_status(expenses, _REJECTED, currency)

    committed = spent + approved
    encumbered = pending + approved
    truly_available = budgeted - committed - pending
    utilization = (committed + pending).percentage_of(budgeted)
    spent_pct = spent.percentage_of(budgeted)

    health = assess_health(
        committed=committed,
        budgeted=budgeted,
        utilization_percentage=utilization,
        spent_percentage=spent_pct,
        item_age_days=_item_age_days(item, budget, as_of),
        budget_elapsed_days=_budget_elapsed_days(budget, as_of),
        thresholds=thresholds,
    )

    return BudgetItemPosition(
        budget_item_id=item.id,
        currency=currency,
        budgeted_amount=budgeted,
        spent_amount=spent,
        approved_amount=approved,
        pending_amount=pending,
        draft_amount=draft,
        awaiting_approval_amount=awaiting,
        rejected_amount=rejected,
        committed_amount=committed,
        encumbered_amount=encumbered,
        truly_available_amount=truly_available,
        utilization_percentage=utilization,
        spent_percentage=spent_pct,
        variance=budgeted - spent,
        budget_health=health,
        can_spend=(
            not item.is_locked
            and truly_available.is_positive
            and budget.status == BudgetStatus.ACTIVE
        ),
        expense_count=len(expenses),
    )


def submission_headroom(
    item: BudgetItem,
    expenses: Sequence[Expense],
    excluding: UUID | None = None,
) -> Money:
    """Money a new submission may still reserve on ``item``.

    budgeted - (paid + approved + pending), ignoring drafts and the expense
    ``excluding`` (the one being submitted).
    """
    currency = item.currency
    others = [e for e in expenses if e.id != excluding]
    reserved = _sum_status(
        others,
        frozenset({ExpenseStatus.PAID, ExpenseStatus.APPROVED, ExpenseStatus.PENDING}),
        currency,
    )
    return item.budgeted_amount - reserved


def spent_amount(item: BudgetItem, expenses: Iterable[Expense]) -> Money:
    return _sum_status(expenses, _PAID, item.currency)


def derive_budget_summary(
    budget: Budget,
    items: Sequence[tuple[BudgetItem, Sequence[Expense]]],
    as_of: date,
    thresholds: HealthThresholds = DEFAULT_HEALTH_THRESHOLDS,
) -> BudgetSummary:
    """Roll all of ``budget``'s items up into budget-level totals."""
    currency = budget.currency
    positions = tuple(
        derive_item_position(item, expenses, budget, as_of, thresholds)
        for item, expenses in items
    )

    def total(attr: str) -> Money:
        return sum_money((getattr(p, attr) for p in positions), currency)

    allocated = total("budgeted_amount")
    spent = total("spent_amount")

    return BudgetSummary(
        budget_id=budget.id,
        status=budget.status,
        currency=currency,
        total_amount=budget.total_amount,
        total_allocated=allocated,
        total_spent=spent,
        total_approved=total("approved_amount"),
        total_pending=total("pending_amount"),
        total_committed=total("committed_amount"),
        total_encumbered=total("encumbered_amount"),
        remaining_amount=budget.total_amount - allocated,
        allocated_percentage=allocated.percentage_of(budget.total_amount),
        spent_percentage=spent.percentage_of(budget.total_amount),
        item_count=len(positions),
        items=positions,
    )


def allocated_total(budget: Budget, items: Iterable[BudgetItem]) -> Money:
    return sum_money((i.budgeted_amount for i in items), budget.currency)
