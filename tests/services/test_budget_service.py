"""
Tests for BudgetService: budget lifecycle, total allocation and deletion.
"""

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from budget_kernel.domain.models import ApprovalDecision, BudgetStatus, BudgetType
from budget_kernel.domain.values import Money
from budget_kernel.exceptions import (
    BelowAllocatedAmountError,
    BudgetApprovalNotAuthorizedError,
    BudgetItemInUseError,
    BudgetNotFoundError,
    BudgetNotOpenError,
    ExceedsBudgetCapacityError,
    InvalidBudgetTransitionError,
    OutstandingEncumbranceError,
)
from budget_kernel.services.budget_service import BudgetService, StaticApprovalAuthority
from budget_kernel.services.ledger_store import LedgerStore

OWNER = "owner@ngo.test"
APPROVER = "bob@ngo.test"


def usd(amount) -> Money:
    return Money.of(amount, "USD")


class TestCreateBudget:
    def test_created_as_draft(self, budgets, selector):
        budget = budgets.create_budget(
            title="Malaria nets",
            total_amount="25000",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 6, 30),
            created_by=OWNER,
            budget_type=BudgetType.PROJECT,
            fiscal_year="FY2024",
        )
        assert budget.status == BudgetStatus.DRAFT
        assert budget.total_amount == usd("25000")
        assert selector.budget(budget.id).budget_type == BudgetType.PROJECT

    def test_explicit_currency(self, create_budget):
        budget = create_budget(total="500", currency="KES", activate=False)
        assert budget.currency.code == "KES"

    def test_money_total(self, budgets):
        budget = budgets.create_budget(
            title="Euro grant",
            total_amount=Money.of("100", "EUR"),
            start_date=date(2024, 1, 1),
            end_date=date(2024, 12, 31),
            created_by=OWNER,
        )
        assert budget.currency.code == "EUR"

    def test_created_logged(self, create_budget, captured_logs):
        budget = create_budget(activate=False)
        records = [r for r in captured_logs() if r["message"] == "budget_created"]
        assert records[0]["budget_id"] == str(budget.id)
        assert records[0]["currency"] == "USD"


class TestApproveBudget:
    def test_draft_activated(self, budgets, create_budget):
        budget = create_budget(activate=False)
        active = budgets.approve_budget(budget.id, APPROVER)
        assert active.status == BudgetStatus.ACTIVE
        assert active.approved_by == APPROVER

    def test_authority_refusal(self, store, guard, deterministic_clock, create_budget):
        strict = BudgetService(
            store, guard, StaticApprovalAuthority({APPROVER}), deterministic_clock
        )
        budget = create_budget(activate=False)

        with pytest.raises(BudgetApprovalNotAuthorizedError):
            strict.approve_budget(budget.id, OWNER)
        assert strict.approve_budget(budget.id, APPROVER).status == BudgetStatus.ACTIVE

    def test_active_cannot_be_reapproved(self, budgets, create_budget):
        budget = create_budget()
        with pytest.raises(InvalidBudgetTransitionError):
            budgets.approve_budget(budget.id, APPROVER)

    def test_unknown_budget(self, budgets):
        with pytest.raises(BudgetNotFoundError):
            budgets.approve_budget(uuid4(), APPROVER)


class TestAddItem:
    def test_item_within_capacity(self, budgets, create_budget):
        budget = create_budget(total="1000")
        item = budgets.add_item(
            budget.id, category="Rent", budgeted_amount="1000", actor=OWNER
        )
        assert item.budgeted_amount == usd("1000")
        assert budgets.summary(budget.id).remaining_amount == usd("0")

    def test_draft_budget_accepts_items(self, create_budget, create_item):
        item = create_item(budget=create_budget(activate=False))
        assert item.is_locked is False

    def test_over_capacity_refused(self, budgets, create_budget, create_item):
        budget = create_budget(total="1000")
        create_item(budgeted="700", budget=budget)
        with pytest.raises(ExceedsBudgetCapacityError) as exc_info:
            create_item(budgeted="300.01", budget=budget)
        assert exc_info.value.maximum == usd("300")
        assert budgets.summary(budget.id).item_count == 1

    def test_closed_budget_refuses_items(self, budgets, create_budget, create_item):
        budget = create_budget()
        budgets.close_budget(budget.id, OWNER)
        with pytest.raises(BudgetNotOpenError):
            create_item(budget=budget)


class TestAmendTotalAmount:
    def test_raise_total(self, budgets, create_budget):
        budget = create_budget(total="1000")
        assert budgets.amend_total_amount(budget.id, "1500", OWNER).total_amount == usd("1500")

    def test_down_to_allocated(self, budgets, create_budget, create_item):
        budget = create_budget(total="1000")
        create_item(budgeted="600", budget=budget)
        assert budgets.amend_total_amount(budget.id, "600", OWNER).total_amount == usd("600")

    def test_below_allocated_refused(self, budgets, create_budget, create_item):
        budget = create_budget(total="1000")
        create_item(budgeted="600", budget=budget)
        with pytest.raises(BelowAllocatedAmountError) as exc_info:
            budgets.amend_total_amount(budget.id, "599.99", OWNER)
        assert exc_info.value.minimum == usd("600")

    def test_cancelled_budget(self, budgets, create_budget):
        budget = create_budget()
        budgets.cancel_budget(budget.id, OWNER)
        with pytest.raises(BudgetNotOpenError):
            budgets.amend_total_amount(budget.id, "1", OWNER)


class TestCloseBudget:
    def test_close_with_only_paid_and_rejected(
        self, ledger, budgets, create_budget, create_item, create_expense
    ):
        budget = create_budget()
        item = create_item(budget=budget, threshold="50")
        paid = create_expense(item, amount="40")
        ledger.submit_expense(paid.id)
        ledger.pay_expense(paid.id, OWNER)
        rejected = create_expense(item, amount="80")
        ledger.submit_expense(rejected.id)
        ledger.decide_expense(rejected.id, APPROVER, ApprovalDecision.REJECT, reason="no")

        closed = budgets.close_budget(budget.id, OWNER)
        assert closed.status == BudgetStatus.CLOSED
        assert budgets.summary(budget.id).total_spent == usd("40")

    def test_drafts_block_close(self, ledger, budgets, create_budget, create_item, create_expense):
        """Drafts count as pending, so they must be deleted or decided first."""
        budget = create_budget()
        draft = create_expense(create_item(budget=budget))
        with pytest.raises(OutstandingEncumbranceError):
            budgets.close_budget(budget.id, OWNER)

        ledger.delete_expense(draft.id, OWNER)
        assert budgets.close_budget(budget.id, OWNER).status == BudgetStatus.CLOSED

    def test_encumbrance_blocks_close(
        self, ledger, budgets, selector, create_budget, create_item, create_expense
    ):
        budget = create_budget()
        busy = create_item(budget=budget)
        create_item(budget=budget)
        ledger.submit_expense(create_expense(busy, amount="250").id)

        with pytest.raises(OutstandingEncumbranceError) as exc_info:
            budgets.close_budget(budget.id, OWNER)
        assert exc_info.value.item_ids == (str(busy.id),)
        assert exc_info.value.encumbered == usd("250")
        assert selector.budget(budget.id).status == BudgetStatus.ACTIVE

    def test_draft_budget_cannot_close(self, budgets, create_budget):
        budget = create_budget(activate=False)
        with pytest.raises(InvalidBudgetTransitionError):
            budgets.close_budget(budget.id, OWNER)

    def test_closed_budget_rejects_changes(self, budgets, ledger, create_budget, create_item):
        budget = create_budget()
        item = create_item(budget=budget)
        budgets.close_budget(budget.id, OWNER)
        with pytest.raises(BudgetNotOpenError):
            ledger.update_item_details(item.id, OWNER, category="Other")


class TestCancelBudget:
    @pytest.mark.parametrize("activate", [False, True])
    def test_cancel(self, budgets, create_budget, activate):
        budget = create_budget(activate=activate)
        assert budgets.cancel_budget(budget.id, OWNER).status == BudgetStatus.CANCELLED

    def test_cancel_with_pending_expenses(
        self, ledger, budgets, selector, create_budget, create_item, create_expense
    ):
        """Cancellation does not touch expenses; they simply cannot move on to submission."""
        budget = create_budget()
        item = create_item(budget=budget, threshold="10")
        expense = ledger.submit_expense(create_expense(item, amount="50").id)
        budgets.cancel_budget(budget.id, OWNER)
        assert selector.expense(expense.id).status == expense.status

    def test_cancelled_is_terminal(self, budgets, create_budget):
        budget = create_budget()
        budgets.cancel_budget(budget.id, OWNER)
        with pytest.raises(InvalidBudgetTransitionError):
            budgets.cancel_budget(budget.id, OWNER)


class TestDeleteBudget:
    def test_archives_terminal_expenses(
        self, ledger, budgets, selector, create_budget, create_item, create_expense
    ):
        budget = create_budget()
        first = create_item(budget=budget)
        second = create_item(budget=budget)
        for item in (first, second):
            expense = create_expense(item, amount="10")
            ledger.submit_expense(expense.id)
            ledger.pay_expense(expense.id, OWNER)

        budgets.close_budget(budget.id, OWNER)
        assert budgets.delete_budget(budget.id, OWNER) == 2

        with pytest.raises(BudgetNotFoundError):
            selector.budget(budget.id)
        archived = selector.archived_expenses(budget_id=budget.id)
        assert {a.expense.budget_item_id for a in archived} == {first.id, second.id}

    def test_open_expense_blocks_delete(
        self, budgets, selector, create_budget, create_item, create_expense
    ):
        budget = create_budget()
        item = create_item(budget=budget)
        create_expense(item)
        with pytest.raises(BudgetItemInUseError):
            budgets.delete_budget(budget.id, OWNER)
        assert selector.item(item.id).id == item.id

    def test_empty_budget(self, budgets, selector, create_budget):
        budget = create_budget(activate=False)
        assert budgets.delete_budget(budget.id, OWNER) == 0
        assert selector.budgets() == ()


class TestSummary:
    def test_rollup_through_service(
        self, ledger, budgets, create_budget, create_item, create_expense
    ):
        budget = create_budget(total="5000")
        item = create_item(budget=budget, budgeted="2000")
        create_item(budget=budget, budgeted="1000")
        expense = create_expense(item, amount="500")
        ledger.submit_expense(expense.id)
        ledger.pay_expense(expense.id, OWNER)

        summary = budgets.summary(budget.id)
        assert summary.total_allocated == usd("3000")
        assert summary.remaining_amount == usd("2000")
        assert summary.total_spent == usd("500")
        assert summary.allocated_percentage == Decimal("60.00")
        assert summary.item_count == 2


class RecordingStore(LedgerStore):
    """Delegates to another store and records row-lock calls in order."""

    def __init__(self, inner):
        self.inner = inner
        self.locks = []

    @contextmanager
    def read(self):
        with self.inner.read() as reader:
            yield reader

    @contextmanager
    def transaction(self, actor):
        with self.inner.transaction(actor) as tx:
            yield _RecordingTransaction(tx, self.locks)


class _RecordingTransaction:
    def __init__(self, tx, locks):
        self._tx = tx
        self._locks = locks

    def lock_budget(self, budget_id):
        self._locks.append(("budget", budget_id))
        return self._tx.lock_budget(budget_id)

    def lock_item(self, item_id):
        self._locks.append(("item", item_id))
        return self._tx.lock_item(item_id)

    def __getattr__(self, name):
        return getattr(self._tx, name)


class TestStatusChangeRowLocks:
    """Status changes lock the budget row, then every item row in id order."""

    @pytest.fixture
    def recorded(self, memory_store, guard, deterministic_clock):
        store = RecordingStore(memory_store)
        service = BudgetService(store, guard, clock=deterministic_clock)
        budget = service.create_budget(
            title="Row locks",
            total_amount="3000",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 12, 31),
            created_by=OWNER,
        )
        service.approve_budget(budget.id, OWNER)
        items = [
            service.add_item(budget.id, category=f"Line {n}", budgeted_amount="100", actor=OWNER)
            for n in range(3)
        ]
        store.locks.clear()
        expected = [("budget", budget.id)] + [
            ("item", item_id) for item_id in sorted((i.id for i in items), key=str)
        ]
        return service, store, budget, expected

    def test_close(self, recorded):
        service, store, budget, expected = recorded
        service.close_budget(budget.id, OWNER)
        assert store.locks == expected

    def test_cancel(self, recorded):
        service, store, budget, expected = recorded
        service.cancel_budget(budget.id, OWNER)
        assert store.locks == expected

    def test_delete(self, recorded):
        service, store, budget, expected = recorded
        service.delete_budget(budget.id, OWNER)
        assert store.locks == expected
