"""
BudgetItemLedger -- expense operations against a single BudgetItem.

Responsibility:
    Creates, edits, submits, decides and pays Expenses, amends an item's
    budgeted amount and toggles its lock.  Every operation re-reads the
    item's current state inside the item's AllocationGuard section and one
    store transaction, validates against the freshly derived position,
    and commits the new Expense/BudgetItem value atomically.

Architecture position:
    Kernel > Services -- imperative shell.
    Calls the pure expense state machine (domain.expense_workflow) and the
    ledger derivations (domain.ledger); writes through a LedgerStore.

Invariants enforced:
    - No double commitment: after every successful submit or decide,
      paid + approved + awaiting-approval <= budgeted on the item.  The
      headroom check runs inside the item's critical section, so two
      concurrent submissions can never both pass against stale numbers.
    - Drafts reserve nothing; the submitted expense is excluded from its
      own headroom.
    - Amounts are frozen once submitted: only draft and rejected
      expenses accept edits.
    - Budgeted amount never drops below the item's spent amount and never
      pushes the parent budget past its total.
    - Lock order: Budget section before item section.

Failure modes:
    - SpendingNotPermittedError: item locked, budget not active, or nothing
      left to spend, or approving or paying on a cancelled budget.
    - InsufficientBudgetError: submission exceeds headroom (carries the
      shortfall); nothing is written.
    - InvalidTransitionError / SelfApprovalNotPermittedError /
      RejectionReasonRequiredError from the state machine.
    - BelowSpentAmountError / ExceedsBudgetCapacityError on amendment.
    - AllocationLockTimeoutError (retryable) on contention.

Usage:
    ledger = BudgetItemLedger(store, guard, clock)
    expense = ledger.add_expense(item.id, title="Flights", amount="420.00",
                                 expense_date=date(2024, 3, 1),
                                 submitted_by="alice")
    expense = ledger.submit_expense(expense.id)
    if expense.status is ExpenseStatus.PENDING:
        ledger.decide_expense(expense.id, "bob", ApprovalDecision.APPROVE)
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from budget_kernel.domain import expense_workflow
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.ledger import (
    DEFAULT_HEALTH_THRESHOLDS,
    HealthThresholds,
    allocated_total,
    derive_item_position,
    spent_amount,
    submission_headroom,
)
from budget_kernel.domain.models import (
    ApprovalDecision,
    ArchivedExpense,
    Budget,
    BudgetItem,
    BudgetStatus,
    Expense,
    ExpenseStatus,
    ExpenseType,
)
from budget_kernel.domain.values import Currency, Money
from budget_kernel.exceptions import (
    BelowSpentAmountError,
    BudgetItemInUseError,
    BudgetItemNotFoundError,
    BudgetNotFoundError,
    BudgetNotOpenError,
    CurrencyMismatchError,
    ExceedsBudgetCapacityError,
    ExpenseNotEditableError,
    ExpenseNotFoundError,
    InsufficientBudgetError,
    InvalidTransitionError,
    SpendingNotPermittedError,
)
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.services.allocation_guard import AllocationGuard
from budget_kernel.services.ledger_store import LedgerReader, LedgerStore, LedgerTransaction

logger = get_logger("services.ledger")

AmountLike = Money | Decimal | int | str

EXPENSE_EDITABLE_FIELDS = frozenset({
    "title",
    "description",
    "amount",
    "expense_date",
    "expense_type",
    "vendor",
    "receipt_reference",
    "notes",
})

ITEM_DETAIL_FIELDS = frozenset({
    "category",
    "subcategory",
    "description",
    "notes",
    "responsible_person",
    "approval_required_threshold",
})


def coerce_money(value: AmountLike | None, currency: Currency, field: str) -> Money | None:
    """Interpret ``value`` in ``currency``; Money in another currency is refused."""
    if value is None:
        return None
    if isinstance(value, Money):
        if value.currency != currency:
            raise CurrencyMismatchError(currency.code, value.currency.code, operation=f"set {field}")
        return value
    return Money.of(value, currency)


def require_budget(reader: LedgerReader, budget_id: UUID) -> Budget:
    budget = reader.get_budget(budget_id)
    if budget is None:
        raise BudgetNotFoundError(str(budget_id))
    return budget


def require_item(reader: LedgerReader, item_id: UUID) -> BudgetItem:
    item = reader.get_item(item_id)
    if item is None:
        raise BudgetItemNotFoundError(str(item_id))
    return item


def require_expense(reader: LedgerReader, expense_id: UUID) -> Expense:
    expense = reader.get_expense(expense_id)
    if expense is None:
        raise ExpenseNotFoundError(str(expense_id))
    return expense


def archive_and_remove_item(
    tx: LedgerTransaction, item: BudgetItem, budget_id: UUID, actor: str, at: datetime
) -> int:
    """Archive ``item``'s terminal expenses and delete the item.

    Raises:
        BudgetItemInUseError: the item still owns non-terminal expenses.

    Returns:
        Number of archived expenses.
    """
    expenses = tx.list_expenses(item.id)
    open_expenses = [e for e in expenses if not e.is_terminal]
    if open_expenses:
        raise BudgetItemInUseError(str(item.id), len(open_expenses))

    for expense in expenses:
        tx.archive_expense(
            ArchivedExpense(expense=expense, budget_id=budget_id, archived_at=at, archived_by=actor)
        )
        tx.delete_expense(expense.id)
    tx.delete_item(item.id)
    return len(expenses)


class BudgetItemLedger:
    """
    Expense workflow and allocation operations for BudgetItems.

    Contract:
        Every public mutator takes its AllocationGuard section(s), opens one
        store transaction, re-reads what it validates, and returns the
        committed domain value.

    Guarantees:
        - A rejected operation writes nothing.
        - Decisions and payments are allowed on locked items; only new
          creations and submissions are blocked by the lock.
        - A cancelled budget accepts rejections only: approvals and
          payments are refused.

    Non-goals:
        - Does NOT decide who may approve; it only enforces that an
          above-threshold expense is approved by someone other than its
          submitter.
    """

    def __init__(
        self,
        store: LedgerStore,
        guard: AllocationGuard | None = None,
        clock: Clock | None = None,
        thresholds: HealthThresholds = DEFAULT_HEALTH_THRESHOLDS,
        lock_timeout: float | None = None,
    ):
        self._store = store
        self._guard = guard or AllocationGuard()
        self._clock = clock or SystemClock()
        self._thresholds = thresholds
        self._lock_timeout = lock_timeout

    # -- helpers -----------------------------------------------------------

    def _read_expense(self, expense_id: UUID) -> Expense:
        with self._store.read() as reader:
            return require_expense(reader, expense_id)

    def _owning_item_id(self, expense_id: UUID) -> UUID:
        # budget_item_id never changes, so a snapshot read is enough to
        # pick the section to lock.
        return self._read_expense(expense_id).budget_item_id

    def _owning_budget_id(self, item_id: UUID) -> UUID:
        with self._store.read() as reader:
            return require_item(reader, item_id).budget_id

    def _item_section(self, item_id: UUID):
        return self._guard.hold(item_ids=(item_id,), timeout=self._lock_timeout)

    def _spend_block_reason(self, item: BudgetItem, budget: Budget, expenses) -> str | None:
        if item.is_locked:
            return "budget item is locked"
        if budget.status != BudgetStatus.ACTIVE:
            return f"budget is {budget.status.value}"
        position = derive_item_position(
            item, expenses, budget, self._clock.today(), self._thresholds
        )
        if not position.can_spend:
            return "no budget left to spend"
        return None

    @staticmethod
    def _refuse_if_cancelled(tx: LedgerTransaction, item: BudgetItem) -> None:
        # Rejections stay open on a cancelled budget so its encumbrance
        # can still be released.
        budget = require_budget(tx, item.budget_id)
        if budget.status == BudgetStatus.CANCELLED:
            raise SpendingNotPermittedError(str(item.id), "budget is cancelled")

    # -- expense creation and editing ----------------------------------------

    def add_expense(
        self,
        item_id: UUID,
        *,
        title: str,
        amount: AmountLike,
        expense_date: date,
        submitted_by: str,
        expense_type: ExpenseType = ExpenseType.OTHER,
        description: str = "",
        vendor: str | None = None,
        receipt_reference: str | None = None,
        notes: str | None = None,
    ) -> Expense:
        """Create a draft expense on a spendable item.

        Drafts commit nothing, so the amount is not checked against the
        item's headroom until submission.

        Raises:
            SpendingNotPermittedError: the item cannot accept spending.
        """
        with LogContext.bind(actor_id=submitted_by, budget_item_id=item_id):
            with self._item_section(item_id), self._store.transaction(submitted_by) as tx:
                item = tx.lock_item(item_id)
                if item is None:
                    raise BudgetItemNotFoundError(str(item_id))
                budget = require_budget(tx, item.budget_id)

                reason = self._spend_block_reason(item, budget, tx.list_expenses(item.id))
                if reason is not None:
                    raise SpendingNotPermittedError(str(item.id), reason)

                now = self._clock.now()
                expense = Expense(
                    id=uuid4(),
                    budget_item_id=item.id,
                    title=title,
                    amount=coerce_money(amount, item.currency, "amount"),
                    expense_date=expense_date,
                    submitted_by=submitted_by,
                    expense_type=ExpenseType(expense_type),
                    description=description,
                    vendor=vendor,
                    receipt_reference=receipt_reference,
                    notes=notes,
                    created_at=now,
                    status_changed_at=now,
                )
                tx.save_expense(expense)

            logger.info(
                "expense_created",
                extra={
                    "expense_id": str(expense.id),
                    "amount": str(expense.amount.amount),
                    "currency": expense.amount.currency.code,
                },
            )
            return expense

    def amend_expense(self, expense_id: UUID, actor: str, **changes: Any) -> Expense:
        """Edit a draft or rejected expense.

        Raises:
            ExpenseNotEditableError: the expense is pending, approved or paid.
            ValueError: a field outside the editable set was given.
        """
        unknown = set(changes) - EXPENSE_EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited on an expense: {sorted(unknown)}")

        item_id = self._owning_item_id(expense_id)
        with LogContext.bind(actor_id=actor, budget_item_id=item_id, expense_id=expense_id):
            with self._item_section(item_id), self._store.transaction(actor) as tx:
                expense = require_expense(tx, expense_id)
                if not expense.is_editable:
                    raise ExpenseNotEditableError(str(expense.id), expense.status.value)

                if "amount" in changes:
                    item = require_item(tx, item_id)
                    changes["amount"] = coerce_money(changes["amount"], item.currency, "amount")
                if "expense_type" in changes:
                    changes["expense_type"] = ExpenseType(changes["expense_type"])

                amended = replace(expense, **changes)
                tx.save_expense(amended)

            logger.info("expense_amended", extra={"fields": sorted(changes)})
            return amended

    def delete_expense(self, expense_id: UUID, actor: str) -> None:
        """Delete a draft expense.

        Raises:
            InvalidTransitionError: the expense is no longer a draft.
        """
        item_id = self._owning_item_id(expense_id)
        with LogContext.bind(actor_id=actor, budget_item_id=item_id, expense_id=expense_id):
            with self._item_section(item_id), self._store.transaction(actor) as tx:
                expense = require_expense(tx, expense_id)
                if expense.status != ExpenseStatus.DRAFT:
                    raise InvalidTransitionError(
                        str(expense.id),
                        expense.status.value,
                        "delete",
                        reason="only draft expenses can be deleted",
                    )
                tx.delete_expense(expense.id)

            logger.info("expense_deleted")

    # -- workflow ------------------------------------------------------------

    def submit_expense(self, expense_id: UUID, actor: str | None = None) -> Expense:
        """Move a draft to pending, auto-approving it at or below threshold.

        The amount must fit the item's submission headroom: budgeted minus
        paid, approved and pending amounts of every OTHER expense.

        Raises:
            InvalidTransitionError: the expense is not a draft.
            SpendingNotPermittedError: item locked or budget not active.
            InsufficientBudgetError: amount exceeds headroom.
        """
        expense = self._read_expense(expense_id)
        item_id = expense.budget_item_id
        acting = actor or expense.submitted_by
        with LogContext.bind(actor_id=acting, budget_item_id=item_id, expense_id=expense_id):
            with self._item_section(item_id), self._store.transaction(acting) as tx:
                result = self._submit_locked(tx, expense_id)

            logger.info(
                "expense_submitted",
                extra={
                    "status": result.status.value,
                    "amount": str(result.amount.amount),
                    "auto_approved": result.status == ExpenseStatus.APPROVED,
                },
            )
            return result

    def _submit_locked(self, tx: LedgerTransaction, expense_id: UUID) -> Expense:
        expense = require_expense(tx, expense_id)
        item = tx.lock_item(expense.budget_item_id)
        if item is None:
            raise BudgetItemNotFoundError(str(expense.budget_item_id))
        budget = require_budget(tx, item.budget_id)

        now = self._clock.now()
        pending = expense_workflow.submit(expense, now)

        if item.is_locked:
            raise SpendingNotPermittedError(str(item.id), "budget item is locked")
        if budget.status != BudgetStatus.ACTIVE:
            raise SpendingNotPermittedError(str(item.id), f"budget is {budget.status.value}")

        headroom = submission_headroom(item, tx.list_expenses(item.id), excluding=expense.id)
        if expense.amount > headroom:
            logger.info(
                "expense_submission_refused",
                extra={
                    "requested": str(expense.amount.amount),
                    "available": str(headroom.amount),
                },
            )
            raise InsufficientBudgetError(str(expense.id), str(item.id), expense.amount, headroom)

        threshold = item.approval_required_threshold
        if expense_workflow.requires_explicit_approval(expense.amount, threshold):
            result = pending
        else:
            result = expense_workflow.auto_approve(pending, threshold, now)
        tx.save_expense(result)
        return result

    def decide_expense(
        self,
        expense_id: UUID,
        approver: str,
        decision: ApprovalDecision | str,
        reason: str | None = None,
    ) -> Expense:
        """Approve or reject a pending expense, or reverse an approval.

        Raises:
            InvalidTransitionError: decision not available from the state.
            SpendingNotPermittedError: approving on a cancelled budget.
            SelfApprovalNotPermittedError: submitter approving above threshold.
            RejectionReasonRequiredError: reject without a reason.
        """
        decision = ApprovalDecision(decision)
        item_id = self._owning_item_id(expense_id)
        with LogContext.bind(actor_id=approver, budget_item_id=item_id, expense_id=expense_id):
            with self._item_section(item_id), self._store.transaction(approver) as tx:
                expense = require_expense(tx, expense_id)
                item = tx.lock_item(item_id)
                if item is None:
                    raise BudgetItemNotFoundError(str(item_id))

                now = self._clock.now()
                if decision == ApprovalDecision.APPROVE:
                    decided = expense_workflow.approve(
                        expense, approver, item.approval_required_threshold, now
                    )
                    self._refuse_if_cancelled(tx, item)
                else:
                    decided = expense_workflow.reject(expense, reason, approver, now)
                tx.save_expense(decided)

            logger.info(
                "expense_decided",
                extra={
                    "decision": decision.value,
                    "from_state": expense.status.value,
                    "status": decided.status.value,
                },
            )
            return decided

    def pay_expense(self, expense_id: UUID, actor: str) -> Expense:
        """Mark an approved expense paid.

        Raises:
            InvalidTransitionError: the expense is not approved.
            SpendingNotPermittedError: the budget has been cancelled.
        """
        item_id = self._owning_item_id(expense_id)
        with LogContext.bind(actor_id=actor, budget_item_id=item_id, expense_id=expense_id):
            with self._item_section(item_id), self._store.transaction(actor) as tx:
                item = tx.lock_item(item_id)
                if item is None:
                    raise BudgetItemNotFoundError(str(item_id))
                expense = require_expense(tx, expense_id)
                paid = expense_workflow.pay(expense, self._clock.now())
                self._refuse_if_cancelled(tx, item)
                tx.save_expense(paid)

            logger.info("expense_paid", extra={"amount": str(paid.amount.amount)})
            return paid

    # -- item allocation -----------------------------------------------------

    def amend_budgeted_amount(
        self, item_id: UUID, new_amount: AmountLike, actor: str
    ) -> BudgetItem:
        """Change an item's allocation within [spent, budget headroom].

        Raises:
            BudgetNotOpenError: the budget is closed or cancelled.
            BelowSpentAmountError: below what is already spent.
            ExceedsBudgetCapacityError: beyond the budget's unallocated total.
        """
        budget_id = self._owning_budget_id(item_id)
        with LogContext.bind(actor_id=actor, budget_id=budget_id, budget_item_id=item_id):
            with self._guard.hold(
                budget_id=budget_id, item_ids=(item_id,), timeout=self._lock_timeout
            ), self._store.transaction(actor) as tx:
                budget = tx.lock_budget(budget_id)
                if budget is None:
                    raise BudgetNotFoundError(str(budget_id))
                if not budget.is_open:
                    raise BudgetNotOpenError(str(budget.id), budget.status.value)
                item = tx.lock_item(item_id)
                if item is None:
                    raise BudgetItemNotFoundError(str(item_id))

                requested = coerce_money(new_amount, item.currency, "budgeted_amount")
                minimum = spent_amount(item, tx.list_expenses(item.id))
                others = [i for i in tx.list_items(budget.id) if i.id != item.id]
                maximum = budget.total_amount - allocated_total(budget, others)

                if requested < minimum:
                    raise BelowSpentAmountError(str(item.id), requested, minimum, maximum)
                if requested > maximum:
                    raise ExceedsBudgetCapacityError(str(budget.id), requested, minimum, maximum)

                amended = replace(item, budgeted_amount=requested)
                tx.save_item(amended)

            logger.info(
                "budgeted_amount_amended",
                extra={
                    "previous_amount": str(item.budgeted_amount.amount),
                    "new_amount": str(requested.amount),
                },
            )
            return amended

    def lock(self, item_id: UUID, actor: str) -> BudgetItem:
        """Block new expenses and submissions on the item."""
        return self._set_locked(item_id, actor, True)

    def unlock(self, item_id: UUID, actor: str) -> BudgetItem:
        return self._set_locked(item_id, actor, False)

    def _set_locked(self, item_id: UUID, actor: str, locked: bool) -> BudgetItem:
        with LogContext.bind(actor_id=actor, budget_item_id=item_id):
            with self._item_section(item_id), self._store.transaction(actor) as tx:
                item = tx.lock_item(item_id)
                if item is None:
                    raise BudgetItemNotFoundError(str(item_id))
                if item.is_locked == locked:
                    return item
                updated = replace(item, is_locked=locked)
                tx.save_item(updated)

            logger.info("budget_item_locked" if locked else "budget_item_unlocked")
            return updated

    def update_item_details(self, item_id: UUID, actor: str, **changes: Any) -> BudgetItem:
        """Edit an item's descriptive fields and approval threshold.

        Raises:
            BudgetNotOpenError: the budget is closed or cancelled.
            ValueError: a field outside the editable set was given.
        """
        unknown = set(changes) - ITEM_DETAIL_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited on a budget item: {sorted(unknown)}")

        with LogContext.bind(actor_id=actor, budget_item_id=item_id):
            with self._item_section(item_id), self._store.transaction(actor) as tx:
                item = tx.lock_item(item_id)
                if item is None:
                    raise BudgetItemNotFoundError(str(item_id))
                budget = require_budget(tx, item.budget_id)
                if not budget.is_open:
                    raise BudgetNotOpenError(str(budget.id), budget.status.value)

                if "approval_required_threshold" in changes:
                    changes["approval_required_threshold"] = coerce_money(
                        changes["approval_required_threshold"],
                        item.currency,
                        "approval_required_threshold",
                    )
                updated = replace(item, **changes)
                tx.save_item(updated)

            logger.info("budget_item_updated", extra={"fields": sorted(changes)})
            return updated

    def delete_item(self, item_id: UUID, actor: str) -> int:
        """Delete an item, archiving its terminal expenses.

        Raises:
            BudgetNotOpenError: the budget is closed or cancelled.
            BudgetItemInUseError: the item still has non-terminal expenses.

        Returns:
            Number of expenses archived.
        """
        budget_id = self._owning_budget_id(item_id)
        with LogContext.bind(actor_id=actor, budget_id=budget_id, budget_item_id=item_id):
            with self._guard.hold(
                budget_id=budget_id, item_ids=(item_id,), timeout=self._lock_timeout
            ), self._store.transaction(actor) as tx:
                budget = tx.lock_budget(budget_id)
                if budget is None:
                    raise BudgetNotFoundError(str(budget_id))
                if not budget.is_open:
                    raise BudgetNotOpenError(str(budget.id), budget.status.value)
                item = tx.lock_item(item_id)
                if item is None:
                    raise BudgetItemNotFoundError(str(item_id))
                archived = archive_and_remove_item(tx, item, budget.id, actor, self._clock.now())

            logger.info("budget_item_deleted", extra={"archived_expenses": archived})
            return archived
