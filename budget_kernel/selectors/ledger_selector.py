"""
Module: budget_kernel.selectors.ledger_selector
Responsibility: Read-only queries over the ledger -- item positions, budget
    summaries, expense listings and analytics, portfolio statistics and the
    expense archive.  Every figure is derived on demand from the current
    expense set through ``domain.ledger``; nothing is cached.
Architecture position: Kernel > Selectors.  Reads through a LedgerStore's
    ``read()`` view.  MUST NOT write and MUST NOT take AllocationGuard locks.

Invariants enforced:
    - Each call reads from ONE store view, so an item's position and the
      budget it is checked against come from the same committed state.
    - Selectors return frozen dataclasses, never store internals.

Failure modes:
    - BudgetNotFoundError / BudgetItemNotFoundError / ExpenseNotFoundError
      for unknown ids.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID

from budget_kernel.domain.analytics import ExpenseBreakdown, ExpenseFilter, expense_breakdown
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.ledger import (
    DEFAULT_HEALTH_THRESHOLDS,
    BudgetItemPosition,
    BudgetSummary,
    HealthThresholds,
    derive_budget_summary,
    derive_item_position,
)
from budget_kernel.domain.models import (
    ArchivedExpense,
    Budget,
    BudgetItem,
    BudgetStatus,
    Expense,
)
from budget_kernel.domain.values import Money, sum_money
from budget_kernel.exceptions import (
    BudgetItemNotFoundError,
    BudgetNotFoundError,
    ExpenseNotFoundError,
)

if TYPE_CHECKING:
    from budget_kernel.services.ledger_store import LedgerReader, LedgerStore


@dataclass(frozen=True)
class CurrencyTotals:
    """Allocated and spent money across all budgets in one currency."""
    currency: str
    budget_count: int
    total_amount: Money
    total_allocated: Money
    total_spent: Money
    total_committed: Money


@dataclass(frozen=True)
class PortfolioStatistics:
    budget_count: int
    by_status: dict[str, int] = field(default_factory=dict)
    by_currency: tuple[CurrencyTotals, ...] = ()


class LedgerSelector:
    """
    Read side of the ledger.

    Contract:
        Never mutates; every result is derived from one consistent view.

    Guarantees:
        - ``item_position`` and ``budget_summary`` go through the same
          derivation functions the services validate against, so every
          surface reads identical numbers.
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock | None = None,
        thresholds: HealthThresholds = DEFAULT_HEALTH_THRESHOLDS,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._thresholds = thresholds

    # -- lookups -------------------------------------------------------------

    @staticmethod
    def _budget(reader: LedgerReader, budget_id: UUID) -> Budget:
        budget = reader.get_budget(budget_id)
        if budget is None:
            raise BudgetNotFoundError(str(budget_id))
        return budget

    @staticmethod
    def _item(reader: LedgerReader, item_id: UUID) -> BudgetItem:
        item = reader.get_item(item_id)
        if item is None:
            raise BudgetItemNotFoundError(str(item_id))
        return item

    def budget(self, budget_id: UUID) -> Budget:
        with self._store.read() as reader:
            return self._budget(reader, budget_id)

    def item(self, item_id: UUID) -> BudgetItem:
        with self._store.read() as reader:
            return self._item(reader, item_id)

    def expense(self, expense_id: UUID) -> Expense:
        with self._store.read() as reader:
            expense = reader.get_expense(expense_id)
        if expense is None:
            raise ExpenseNotFoundError(str(expense_id))
        return expense

    def budgets(self, status: BudgetStatus | None = None) -> tuple[Budget, ...]:
        with self._store.read() as reader:
            budgets = reader.list_budgets()
        if status is None:
            return budgets
        return tuple(b for b in budgets if b.status == status)

    def items(self, budget_id: UUID) -> tuple[BudgetItem, ...]:
        with self._store.read() as reader:
            self._budget(reader, budget_id)
            return reader.list_items(budget_id)

    # -- derived positions ---------------------------------------------------

    def item_position(self, item_id: UUID) -> BudgetItemPosition:
        """Current derived figures for one item."""
        with self._store.read() as reader:
            item = self._item(reader, item_id)
            budget = self._budget(reader, item.budget_id)
            expenses = reader.list_expenses(item.id)
        return derive_item_position(
            item, expenses, budget, self._clock.today(), self._thresholds
        )

    def budget_summary(self, budget_id: UUID) -> BudgetSummary:
        """Budget totals rolled up from every item's position."""
        with self._store.read() as reader:
            budget = self._budget(reader, budget_id)
            items = [(item, reader.list_expenses(item.id)) for item in reader.list_items(budget.id)]
        return derive_budget_summary(budget, items, self._clock.today(), self._thresholds)

    # -- expenses ------------------------------------------------------------

    def find_expenses(
        self,
        *,
        item_id: UUID | None = None,
        budget_id: UUID | None = None,
        criteria: ExpenseFilter | None = None,
    ) -> tuple[Expense, ...]:
        """Expenses of one item or of every item of a budget, filtered.

        Raises:
            ValueError: neither ``item_id`` nor ``budget_id`` was given.
        """
        if item_id is None and budget_id is None:
            raise ValueError("find_expenses needs an item_id or a budget_id")

        with self._store.read() as reader:
            if item_id is not None:
                self._item(reader, item_id)
                expenses: Iterable[Expense] = reader.list_expenses(item_id)
            else:
                self._budget(reader, budget_id)
                expenses = [
                    expense
                    for item in reader.list_items(budget_id)
                    for expense in reader.list_expenses(item.id)
                ]

        if criteria is None:
            return tuple(expenses)
        return criteria.apply(expenses)

    def expense_breakdown(
        self, item_id: UUID, include_rejected: bool = False
    ) -> ExpenseBreakdown:
        with self._store.read() as reader:
            item = self._item(reader, item_id)
            expenses = reader.list_expenses(item.id)
        return expense_breakdown(expenses, item.currency, include_rejected=include_rejected)

    def archived_expenses(
        self,
        *,
        budget_item_id: UUID | None = None,
        budget_id: UUID | None = None,
    ) -> tuple[ArchivedExpense, ...]:
        with self._store.read() as reader:
            return reader.list_archived(budget_item_id=budget_item_id, budget_id=budget_id)

    # -- portfolio -----------------------------------------------------------

    def portfolio_statistics(self) -> PortfolioStatistics:
        """Budget counts per status and money totals per currency."""
        with self._store.read() as reader:
            budgets = reader.list_budgets()
            summaries = [
                derive_budget_summary(
                    budget,
                    [(i, reader.list_expenses(i.id)) for i in reader.list_items(budget.id)],
                    self._clock.today(),
                    self._thresholds,
                )
                for budget in budgets
            ]

        by_status: dict[str, int] = {status.value: 0 for status in BudgetStatus}
        for budget in budgets:
            by_status[budget.status.value] += 1

        by_currency = []
        for code in sorted({s.currency.code for s in summaries}):
            group = [s for s in summaries if s.currency.code == code]
            by_currency.append(
                CurrencyTotals(
                    currency=code,
                    budget_count=len(group),
                    total_amount=sum_money((s.total_amount for s in group), code),
                    total_allocated=sum_money((s.total_allocated for s in group), code),
                    total_spent=sum_money((s.total_spent for s in group), code),
                    total_committed=sum_money((s.total_committed for s in group), code),
                )
            )

        return PortfolioStatistics(
            budget_count=len(budgets),
            by_status=by_status,
            by_currency=tuple(by_currency),
        )
