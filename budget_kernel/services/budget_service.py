"""
BudgetService -- Budget aggregate lifecycle and allocation.

Responsibility:
    Creates budgets, adds items within the budget's capacity, drives the
    budget lifecycle (draft -> active -> closed, draft/active -> cancelled),
    amends the budget total and deletes budgets with archival of their
    terminal expenses.  Budget rollups are delegated to LedgerSelector.

Architecture position:
    Kernel > Services -- imperative shell.
    Calls domain.budget_workflow and domain.ledger; writes through a
    LedgerStore inside AllocationGuard sections.

Invariants enforced:
    - Sum of item budgeted amounts never exceeds the budget total.
    - Only an identity the approval authority accepts can activate a budget.
    - A budget closes only when no item has pending or approved money.
    - close / cancel / delete hold the Budget section AND every item
      section, so no submission can interleave with the status change.

Failure modes:
    - ExceedsBudgetCapacityError: new item beyond unallocated total.
    - BelowAllocatedAmountError: total amended below allocations.
    - BudgetApprovalNotAuthorizedError: approver lacks the capability.
    - OutstandingEncumbranceError: close with money still encumbered.
    - InvalidBudgetTransitionError: status change not permitted.
    - BudgetNotOpenError: allocation change on a closed/cancelled budget.
    - BudgetItemInUseError: delete while expenses are still in progress.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Protocol, runtime_checkable
from uuid import UUID, uuid4

from budget_kernel.domain.budget_workflow import BudgetAction, apply_budget_action
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.ledger import (
    DEFAULT_HEALTH_THRESHOLDS,
    BudgetSummary,
    HealthThresholds,
    allocated_total,
    derive_budget_summary,
)
from budget_kernel.domain.models import Budget, BudgetItem, BudgetType
from budget_kernel.domain.values import Currency, Money
from budget_kernel.exceptions import (
    BelowAllocatedAmountError,
    BudgetApprovalNotAuthorizedError,
    BudgetNotFoundError,
    BudgetNotOpenError,
    ExceedsBudgetCapacityError,
    OutstandingEncumbranceError,
)
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.selectors.ledger_selector import LedgerSelector
from budget_kernel.services.allocation_guard import AllocationGuard
from budget_kernel.services.ledger_service import (
    AmountLike,
    archive_and_remove_item,
    coerce_money,
)
from budget_kernel.services.ledger_store import LedgerStore, LedgerTransaction

logger = get_logger("services.budget")


@runtime_checkable
class BudgetApprovalAuthority(Protocol):
    """Answers "can this identity approve this budget"."""

    def can_approve(self, actor: str, budget: Budget) -> bool: ...


class StaticApprovalAuthority:
    """Fixed set of identities allowed to approve any budget."""

    def __init__(self, approvers: Iterable[str]):
        self._approvers = frozenset(approvers)

    def can_approve(self, actor: str, budget: Budget) -> bool:
        return actor in self._approvers


class PermissiveApprovalAuthority:
    """Every identity may approve. For embedded use and tests."""

    def can_approve(self, actor: str, budget: Budget) -> bool:
        return True


class BudgetService:
    """
    Budget aggregate operations.

    Contract:
        Each mutator runs in one store transaction inside the Budget's
        AllocationGuard section (plus all item sections where the whole
        budget changes status).

    Guarantees:
        - A rejected operation writes nothing.
    """

    def __init__(
        self,
        store: LedgerStore,
        guard: AllocationGuard | None = None,
        authority: BudgetApprovalAuthority | None = None,
        clock: Clock | None = None,
        thresholds: HealthThresholds = DEFAULT_HEALTH_THRESHOLDS,
        lock_timeout: float | None = None,
        default_currency: str = "USD",
    ):
        self._store = store
        self._guard = guard or AllocationGuard()
        self._authority = authority or PermissiveApprovalAuthority()
        self._clock = clock or SystemClock()
        self._thresholds = thresholds
        self._lock_timeout = lock_timeout
        self._default_currency = Currency(default_currency)
        self._selector = LedgerSelector(store, self._clock, thresholds)

    # -- helpers -------------------------------------------------------------

    def _budget_section(self, budget_id: UUID):
        return self._guard.hold(budget_id=budget_id, timeout=self._lock_timeout)

    @staticmethod
    def _lock_open_budget(tx: LedgerTransaction, budget_id: UUID) -> Budget:
        budget = tx.lock_budget(budget_id)
        if budget is None:
            raise BudgetNotFoundError(str(budget_id))
        if not budget.is_open:
            raise BudgetNotOpenError(str(budget.id), budget.status.value)
        return budget

    @staticmethod
    def _lock_items(tx: LedgerTransaction, budget_id: UUID) -> tuple[BudgetItem, ...]:
        # Row locks follow the guard's key order: budget row first, then
        # item rows sorted by id.  A submission in another process holding
        # an item row either commits first or re-reads the new status.
        items = sorted(tx.list_items(budget_id), key=lambda item: str(item.id))
        return tuple(tx.lock_item(item.id) for item in items)

    def _item_ids(self, budget_id: UUID) -> tuple[UUID, ...]:
        with self._store.read() as reader:
            return tuple(item.id for item in reader.list_items(budget_id))

    @contextmanager
    def _whole_budget_section(self, budget_id: UUID) -> Iterator[None]:
        with self._guard.hold(budget_id=budget_id, timeout=self._lock_timeout):
            # Items cannot be added without the Budget section, so the item
            # set read here is complete while it is held.
            item_ids = self._item_ids(budget_id)
            with self._guard.hold(item_ids=item_ids, timeout=self._lock_timeout):
                yield

    # -- creation ------------------------------------------------------------

    def create_budget(
        self,
        *,
        title: str,
        total_amount: AmountLike,
        start_date: date,
        end_date: date,
        created_by: str,
        currency: str | None = None,
        budget_type: BudgetType = BudgetType.ORGANIZATIONAL,
        description: str = "",
        fiscal_year: str | None = None,
        notes: str | None = None,
    ) -> Budget:
        """Create a draft budget."""
        if isinstance(total_amount, Money):
            amount = total_amount
        else:
            amount = Money.of(total_amount, Currency(currency) if currency else self._default_currency)

        now = self._clock.now()
        budget = Budget(
            id=uuid4(),
            title=title,
            total_amount=amount,
            start_date=start_date,
            end_date=end_date,
            created_by=created_by,
            budget_type=BudgetType(budget_type),
            description=description,
            fiscal_year=fiscal_year,
            notes=notes,
            created_at=now,
            status_changed_at=now,
        )
        with LogContext.bind(actor_id=created_by, budget_id=budget.id):
            with self._store.transaction(created_by) as tx:
                tx.save_budget(budget)
            logger.info(
                "budget_created",
                extra={
                    "total_amount": str(amount.amount),
                    "currency": amount.currency.code,
                    "budget_type": budget.budget_type.value,
                },
            )
        return budget

    def add_item(
        self,
        budget_id: UUID,
        *,
        category: str,
        budgeted_amount: AmountLike,
        actor: str,
        description: str = "",
        subcategory: str | None = None,
        approval_required_threshold: AmountLike | None = None,
        responsible_person: str | None = None,
        notes: str | None = None,
    ) -> BudgetItem:
        """Add an item within the budget's unallocated total.

        Raises:
            BudgetNotOpenError: the budget is closed or cancelled.
            ExceedsBudgetCapacityError: the allocation does not fit.
        """
        with LogContext.bind(actor_id=actor, budget_id=budget_id):
            with self._budget_section(budget_id), self._store.transaction(actor) as tx:
                budget = self._lock_open_budget(tx, budget_id)
                currency = budget.currency
                requested = coerce_money(budgeted_amount, currency, "budgeted_amount")
                remaining = budget.total_amount - allocated_total(budget, tx.list_items(budget.id))
                if requested > remaining:
                    raise ExceedsBudgetCapacityError(
                        str(budget.id), requested, Money.zero(currency), remaining
                    )

                item = BudgetItem(
                    id=uuid4(),
                    budget_id=budget.id,
                    category=category,
                    budgeted_amount=requested,
                    description=description,
                    subcategory=subcategory,
                    approval_required_threshold=coerce_money(
                        approval_required_threshold, currency, "approval_required_threshold"
                    ),
                    responsible_person=responsible_person,
                    notes=notes,
                    created_at=self._clock.now(),
                )
                tx.save_item(item)

            logger.info(
                "budget_item_added",
                extra={
                    "budget_item_id": str(item.id),
                    "category": category,
                    "budgeted_amount": str(requested.amount),
                },
            )
            return item

    # -- lifecycle -----------------------------------------------------------

    def approve_budget(self, budget_id: UUID, actor: str) -> Budget:
        """draft -> active.

        Raises:
            BudgetApprovalNotAuthorizedError: the authority refuses ``actor``.
            InvalidBudgetTransitionError: the budget is not a draft.
        """
        with LogContext.bind(actor_id=actor, budget_id=budget_id):
            with self._budget_section(budget_id), self._store.transaction(actor) as tx:
                budget = tx.lock_budget(budget_id)
                if budget is None:
                    raise BudgetNotFoundError(str(budget_id))
                if not self._authority.can_approve(actor, budget):
                    raise BudgetApprovalNotAuthorizedError(str(budget.id), actor)
                approved = apply_budget_action(budget, BudgetAction.APPROVE, self._clock.now(), actor)
                tx.save_budget(approved)

            logger.info("budget_approved")
            return approved

    def close_budget(self, budget_id: UUID, actor: str) -> Budget:
        """active -> closed once nothing is pending or approved.

        Raises:
            InvalidBudgetTransitionError: the budget is not active.
            OutstandingEncumbranceError: an item still has encumbered money.
        """
        with LogContext.bind(actor_id=actor, budget_id=budget_id):
            with self._whole_budget_section(budget_id), self._store.transaction(actor) as tx:
                budget = tx.lock_budget(budget_id)
                if budget is None:
                    raise BudgetNotFoundError(str(budget_id))
                now = self._clock.now()
                closed = apply_budget_action(budget, BudgetAction.CLOSE, now, actor)

                items = self._lock_items(tx, budget.id)
                summary = derive_budget_summary(
                    budget,
                    [(item, tx.list_expenses(item.id)) for item in items],
                    now.date(),
                    self._thresholds,
                )
                if summary.has_outstanding_encumbrance:
                    raise OutstandingEncumbranceError(
                        str(budget.id),
                        summary.total_encumbered,
                        tuple(
                            str(p.budget_item_id)
                            for p in summary.items
                            if not p.encumbered_amount.is_zero
                        ),
                    )
                tx.save_budget(closed)

            logger.info("budget_closed", extra={"total_spent": str(summary.total_spent.amount)})
            return closed

    def cancel_budget(self, budget_id: UUID, actor: str) -> Budget:
        """draft/active -> cancelled."""
        with LogContext.bind(actor_id=actor, budget_id=budget_id):
            with self._whole_budget_section(budget_id), self._store.transaction(actor) as tx:
                budget = tx.lock_budget(budget_id)
                if budget is None:
                    raise BudgetNotFoundError(str(budget_id))
                cancelled = apply_budget_action(budget, BudgetAction.CANCEL, self._clock.now(), actor)
                self._lock_items(tx, budget.id)
                tx.save_budget(cancelled)

            logger.info("budget_cancelled", extra={"from_state": budget.status.value})
            return cancelled

    # -- allocation ----------------------------------------------------------

    def amend_total_amount(self, budget_id: UUID, new_total: AmountLike, actor: str) -> Budget:
        """Change the budget total, never below what items already hold.

        Raises:
            BudgetNotOpenError: the budget is closed or cancelled.
            BelowAllocatedAmountError: new total below total allocated.
        """
        with LogContext.bind(actor_id=actor, budget_id=budget_id):
            with self._budget_section(budget_id), self._store.transaction(actor) as tx:
                budget = self._lock_open_budget(tx, budget_id)
                requested = coerce_money(new_total, budget.currency, "total_amount")
                allocated = allocated_total(budget, tx.list_items(budget.id))
                if requested < allocated:
                    raise BelowAllocatedAmountError(str(budget.id), requested, allocated)
                amended = replace(budget, total_amount=requested)
                tx.save_budget(amended)

            logger.info(
                "budget_total_amended",
                extra={
                    "previous_amount": str(budget.total_amount.amount),
                    "new_amount": str(requested.amount),
                },
            )
            return amended

    def delete_budget(self, budget_id: UUID, actor: str) -> int:
        """Delete a budget and its items, archiving terminal expenses.

        Raises:
            BudgetItemInUseError: some item still has expenses in progress.

        Returns:
            Number of expenses archived.
        """
        with LogContext.bind(actor_id=actor, budget_id=budget_id):
            with self._whole_budget_section(budget_id), self._store.transaction(actor) as tx:
                budget = tx.lock_budget(budget_id)
                if budget is None:
                    raise BudgetNotFoundError(str(budget_id))
                now = self._clock.now()
                archived = 0
                for item in self._lock_items(tx, budget.id):
                    archived += archive_and_remove_item(tx, item, budget.id, actor, now)
                tx.delete_budget(budget.id)

            logger.info("budget_deleted", extra={"archived_expenses": archived})
            return archived

    # -- reads ---------------------------------------------------------------

    def summary(self, budget_id: UUID) -> BudgetSummary:
        return self._selector.budget_summary(budget_id)

