"""
Expense analytics and filtering.

Pure helpers behind the item analytics and expense list views: breakdowns
by expense type and calendar month, and the filter criteria the expense
list accepts.  Rejected expenses are excluded from breakdowns unless the
caller passes them in explicitly via ``include_rejected``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from budget_kernel.domain.models import Expense, ExpenseStatus, ExpenseType
from budget_kernel.domain.values import Currency, Money


@dataclass(frozen=True)
class BreakdownBucket:
    key: str
    total: Money
    count: int


@dataclass(frozen=True)
class ExpenseBreakdown:
    currency: Currency
    total: Money
    count: int
    average: Money
    by_type: tuple[BreakdownBucket, ...]
    by_month: tuple[BreakdownBucket, ...]


def _bucketize(
    pairs: Iterable[tuple[str, Money]], currency: Currency
) -> tuple[BreakdownBucket, ...]:
    totals: dict[str, Money] = {}
    counts: dict[str, int] = {}
    for key, amount in pairs:
        totals[key] = totals.get(key, Money.zero(currency)) + amount
        counts[key] = counts.get(key, 0) + 1
    return tuple(
        BreakdownBucket(key=key, total=totals[key], count=counts[key])
        for key in sorted(totals)
    )


def expense_breakdown(
    expenses: Iterable[Expense],
    currency: Currency | str,
    include_rejected: bool = False,
) -> ExpenseBreakdown:
    """Totals per expense type and per ``YYYY-MM`` month, plus the average."""
    if isinstance(currency, str):
        currency = Currency(currency)
    selected = [
        e for e in expenses
        if include_rejected or e.status != ExpenseStatus.REJECTED
    ]

    total = Money.zero(currency)
    for e in selected:
        total = total + e.amount

    count = len(selected)
    if count:
        average = Money(total.amount / count, currency).round()
    else:
        average = Money.zero(currency)

    return ExpenseBreakdown(
        currency=currency,
        total=total,
        count=count,
        average=average,
        by_type=_bucketize(((e.expense_type.value, e.amount) for e in selected), currency),
        by_month=_bucketize(
            ((e.expense_date.strftime("%Y-%m"), e.amount) for e in selected), currency
        ),
    )


@dataclass(frozen=True)
class ExpenseFilter:
    """Criteria for listing expenses; unset fields match everything."""
    statuses: frozenset[ExpenseStatus] | None = None
    expense_types: frozenset[ExpenseType] | None = None
    submitted_by: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    amount_min: Money | None = None
    amount_max: Money | None = None
    search: str | None = None

    def matches(self, expense: Expense) -> bool:
        if self.statuses is not None and expense.status not in self.statuses:
            return False
        if self.expense_types is not None and expense.expense_type not in self.expense_types:
            return False
        if self.submitted_by is not None and expense.submitted_by != self.submitted_by:
            return False
        if self.date_from is not None and expense.expense_date < self.date_from:
            return False
        if self.date_to is not None and expense.expense_date > self.date_to:
            return False
        if self.amount_min is not None and expense.amount < self.amount_min:
            return False
        if self.amount_max is not None and expense.amount > self.amount_max:
            return False
        if self.search:
            needle = self.search.casefold()
            haystack = " ".join(
                filter(None, (expense.title, expense.description, expense.vendor))
            ).casefold()
            if needle not in haystack:
                return False
        return True

    def apply(self, expenses: Iterable[Expense]) -> tuple[Expense, ...]:
        return tuple(e for e in expenses if self.matches(e))
