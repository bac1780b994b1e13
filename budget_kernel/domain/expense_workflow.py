"""
Expense state machine (``budget_kernel.domain.expense_workflow``).

Responsibility
--------------
Declares the expense lifecycle and applies single transitions to Expense
values.  Budget-dependent guards (spendability, headroom) are evaluated by
``BudgetItemLedger`` inside the allocation critical section; the guards that
depend only on the expense and its approval policy live here.

::

    draft --submit--> pending --approve/auto_approve--> approved --pay--> paid
                         |                                 |
                         +------------reject---------------+--> rejected

Architecture position
---------------------
**Kernel domain layer** -- pure functions, ZERO I/O.  The caller supplies
the clock reading.

Invariants enforced
-------------------
* Only transitions in ``EXPENSE_WORKFLOW`` can fire (InvalidTransitionError).
* Rejection always records a non-empty reason.
* An amount above the item's threshold is approved only by an identity
  other than the submitter.
* Amounts at or below the threshold (or with no threshold) auto-approve.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from budget_kernel.domain.models import Expense, ExpenseStatus
from budget_kernel.domain.values import Money
from budget_kernel.domain.workflow import Guard, Transition, Workflow
from budget_kernel.exceptions import (
    InvalidTransitionError,
    RejectionReasonRequiredError,
    SelfApprovalNotPermittedError,
)
from budget_kernel.logging_config import get_logger

logger = get_logger("domain.expense_workflow")


ITEM_ACCEPTS_SUBMISSIONS = Guard(
    "item_accepts_submissions",
    "Budget item is unlocked, its budget is active and the amount fits the available headroom",
)
WITHIN_APPROVAL_THRESHOLD = Guard(
    "within_approval_threshold",
    "Amount is at or below the item's approval threshold",
)
DISTINCT_APPROVER = Guard(
    "distinct_approver",
    "Above-threshold amounts are approved by someone other than the submitter",
)
REJECTION_REASON_GIVEN = Guard("rejection_reason_given", "A rejection reason is recorded")


class ExpenseAction:
    SUBMIT = "submit"
    AUTO_APPROVE = "auto_approve"
    APPROVE = "approve"
    REJECT = "reject"
    PAY = "pay"


EXPENSE_WORKFLOW = Workflow(
    name="expense",
    description="Expense approval lifecycle",
    initial_state=ExpenseStatus.DRAFT.value,
    states=tuple(s.value for s in ExpenseStatus),
    transitions=(
        Transition("draft", "pending", action=ExpenseAction.SUBMIT, guard=ITEM_ACCEPTS_SUBMISSIONS),
        Transition("pending", "approved", action=ExpenseAction.AUTO_APPROVE, guard=WITHIN_APPROVAL_THRESHOLD),
        Transition("pending", "approved", action=ExpenseAction.APPROVE, guard=DISTINCT_APPROVER),
        Transition("pending", "rejected", action=ExpenseAction.REJECT, guard=REJECTION_REASON_GIVEN),
        Transition("approved", "paid", action=ExpenseAction.PAY),
        Transition("approved", "rejected", action=ExpenseAction.REJECT, guard=REJECTION_REASON_GIVEN),
    ),
    terminal_states=("paid", "rejected"),
)


def requires_explicit_approval(amount: Money, threshold: Money | None) -> bool:
    """True when ``amount`` is above a non-null ``threshold``."""
    return threshold is not None and amount > threshold


def _transition(expense: Expense, action: str) -> Transition:
    transition = EXPENSE_WORKFLOW.find(expense.status.value, action)
    if transition is None:
        raise InvalidTransitionError(str(expense.id), expense.status.value, action)
    return transition


def _moved(expense: Expense, transition: Transition, at: datetime, **changes) -> Expense:
    moved = replace(
        expense,
        status=ExpenseStatus(transition.to_state),
        status_changed_at=at,
        **changes,
    )
    logger.debug(
        "expense_transition_applied",
        extra={
            "expense_id": str(expense.id),
            "from_state": transition.from_state,
            "to_state": transition.to_state,
            "action": transition.action,
        },
    )
    return moved


def submit(expense: Expense, at: datetime) -> Expense:
    """draft -> pending."""
    return _moved(expense, _transition(expense, ExpenseAction.SUBMIT), at)


def auto_approve(expense: Expense, threshold: Money | None, at: datetime) -> Expense:
    """pending -> approved without a human approver.

    Raises:
        InvalidTransitionError: if the amount is above ``threshold``.
    """
    transition = _transition(expense, ExpenseAction.AUTO_APPROVE)
    if requires_explicit_approval(expense.amount, threshold):
        raise InvalidTransitionError(
            str(expense.id),
            expense.status.value,
            ExpenseAction.AUTO_APPROVE,
            reason=f"amount {expense.amount} is above the approval threshold {threshold}",
        )
    return _moved(expense, transition, at, approved_at=at)


def approve(
    expense: Expense,
    approver: str | None,
    threshold: Money | None,
    at: datetime,
) -> Expense:
    """pending -> approved by ``approver``.

    Raises:
        SelfApprovalNotPermittedError: above-threshold amount and the
            approver is missing or is the submitter.
    """
    transition = _transition(expense, ExpenseAction.APPROVE)
    if requires_explicit_approval(expense.amount, threshold):
        if not approver or approver == expense.submitted_by:
            raise SelfApprovalNotPermittedError(str(expense.id), approver, str(threshold))
    return _moved(expense, transition, at, approved_by=approver, approved_at=at)


def reject(expense: Expense, reason: str | None, actor: str | None, at: datetime) -> Expense:
    """pending/approved -> rejected, recording ``reason``."""
    transition = _transition(expense, ExpenseAction.REJECT)
    if not reason or not reason.strip():
        raise RejectionReasonRequiredError(str(expense.id), expense.status.value)
    return _moved(
        expense,
        transition,
        at,
        rejection_reason=reason.strip(),
        rejected_by=actor,
    )


def pay(expense: Expense, at: datetime) -> Expense:
    """approved -> paid."""
    return _moved(expense, _transition(expense, ExpenseAction.PAY), at, paid_at=at)


def available_actions(expense: Expense) -> tuple[str, ...]:
    return EXPENSE_WORKFLOW.actions_from(expense.status.value)


def apply_transition(
    expense: Expense,
    action: str,
    at: datetime,
    *,
    actor: str | None = None,
    threshold: Money | None = None,
    reason: str | None = None,
) -> Expense:
    """Apply ``action`` to ``expense`` by name.

    Raises:
        InvalidTransitionError: unknown action, or not available from the
            expense's current state.
    """
    if action == ExpenseAction.SUBMIT:
        return submit(expense, at)
    if action == ExpenseAction.AUTO_APPROVE:
        return auto_approve(expense, threshold, at)
    if action == ExpenseAction.APPROVE:
        return approve(expense, actor, threshold, at)
    if action == ExpenseAction.REJECT:
        return reject(expense, reason, actor, at)
    if action == ExpenseAction.PAY:
        return pay(expense, at)
    raise InvalidTransitionError(str(expense.id), expense.status.value, action)
