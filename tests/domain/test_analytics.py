"""Tests for expense breakdowns and list filtering (domain.analytics)."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from budget_kernel.domain.analytics import ExpenseFilter, expense_breakdown
from budget_kernel.domain.models import Expense, ExpenseStatus, ExpenseType
from budget_kernel.domain.values import Money

ITEM_ID = uuid4()


def expense(amount, expense_type=ExpenseType.TRAVEL, on=date(2024, 1, 10), status=ExpenseStatus.PAID, **kwargs):
    return Expense(
        id=uuid4(),
        budget_item_id=ITEM_ID,
        title=kwargs.pop("title", "Bus fare"),
        amount=Money.of(amount, "USD"),
        expense_date=on,
        submitted_by=kwargs.pop("submitted_by", "alice"),
        expense_type=expense_type,
        status=status,
        rejection_reason="no" if status == ExpenseStatus.REJECTED else None,
        **kwargs,
    )


@pytest.fixture
def expenses():
    return [
        expense("100", ExpenseType.TRAVEL, date(2024, 1, 5)),
        expense("50", ExpenseType.TRAVEL, date(2024, 2, 7)),
        expense("30", ExpenseType.SUPPLIES, date(2024, 2, 20), title="Paper", vendor="Stationers Ltd"),
        expense("500", ExpenseType.EQUIPMENT, date(2024, 3, 1), status=ExpenseStatus.REJECTED),
    ]


class TestExpenseBreakdown:
    def test_totals_exclude_rejected(self, expenses):
        breakdown = expense_breakdown(expenses, "USD")
        assert breakdown.total == Money.of("180", "USD")
        assert breakdown.count == 3
        assert breakdown.average == Money.of("60.00", "USD")

    def test_by_type(self, expenses):
        buckets = {b.key: b for b in expense_breakdown(expenses, "USD").by_type}
        assert set(buckets) == {"travel", "supplies"}
        assert buckets["travel"].total == Money.of("150", "USD")
        assert buckets["travel"].count == 2

    def test_by_month_sorted(self, expenses):
        by_month = expense_breakdown(expenses, "USD").by_month
        assert [b.key for b in by_month] == ["2024-01", "2024-02"]
        assert by_month[1].total == Money.of("80", "USD")

    def test_include_rejected(self, expenses):
        breakdown = expense_breakdown(expenses, "USD", include_rejected=True)
        assert breakdown.count == 4
        assert "equipment" in {b.key for b in breakdown.by_type}

    def test_average_rounded_to_currency(self):
        breakdown = expense_breakdown([expense("10"), expense("10"), expense("10.01")], "USD")
        assert breakdown.average.amount == Decimal("10.00")

    def test_empty(self):
        breakdown = expense_breakdown([], "USD")
        assert breakdown.total.is_zero
        assert breakdown.average.is_zero
        assert breakdown.by_type == ()


class TestExpenseFilter:
    def test_empty_filter_matches_all(self, expenses):
        assert len(ExpenseFilter().apply(expenses)) == 4

    def test_by_status(self, expenses):
        result = ExpenseFilter(statuses=frozenset({ExpenseStatus.REJECTED})).apply(expenses)
        assert [e.amount for e in result] == [Money.of("500", "USD")]

    def test_by_type(self, expenses):
        result = ExpenseFilter(expense_types=frozenset({ExpenseType.TRAVEL})).apply(expenses)
        assert len(result) == 2

    def test_date_range_inclusive(self, expenses):
        result = ExpenseFilter(date_from=date(2024, 2, 7), date_to=date(2024, 2, 20)).apply(expenses)
        assert len(result) == 2

    def test_amount_range(self, expenses):
        result = ExpenseFilter(
            amount_min=Money.of("30", "USD"), amount_max=Money.of("100", "USD")
        ).apply(expenses)
        assert len(result) == 3

    def test_submitted_by(self, expenses):
        expenses.append(expense("5", submitted_by="carol"))
        result = ExpenseFilter(submitted_by="carol").apply(expenses)
        assert len(result) == 1

    def test_search_title_and_vendor_case_insensitive(self, expenses):
        assert len(ExpenseFilter(search="paper").apply(expenses)) == 1
        assert len(ExpenseFilter(search="STATIONERS").apply(expenses)) == 1
        assert ExpenseFilter(search="hotel").apply(expenses) == ()
