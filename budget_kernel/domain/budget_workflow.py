"""Budget lifecycle state machine.

draft -> active (approval), active -> closed (nothing outstanding),
draft/active -> cancelled.  ``closed`` and ``cancelled`` are terminal.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from budget_kernel.domain.models import Budget, BudgetStatus
from budget_kernel.domain.workflow import Guard, Transition, Workflow
from budget_kernel.exceptions import InvalidBudgetTransitionError
from budget_kernel.logging_config import get_logger

logger = get_logger("domain.budget_workflow")


APPROVED_BY_AUTHORITY = Guard("approved_by_authority", "Budget approved by an authorized approver")
NOTHING_OUTSTANDING = Guard(
    "nothing_outstanding", "Every budget item has zero pending and approved expenses"
)


class BudgetAction:
    APPROVE = "approve"
    CLOSE = "close"
    CANCEL = "cancel"


BUDGET_WORKFLOW = Workflow(
    name="budget",
    description="Budget lifecycle",
    initial_state=BudgetStatus.DRAFT.value,
    states=tuple(s.value for s in BudgetStatus),
    transitions=(
        Transition("draft", "active", action=BudgetAction.APPROVE, guard=APPROVED_BY_AUTHORITY),
        Transition("active", "closed", action=BudgetAction.CLOSE, guard=NOTHING_OUTSTANDING),
        Transition("draft", "cancelled", action=BudgetAction.CANCEL),
        Transition("active", "cancelled", action=BudgetAction.CANCEL),
    ),
    terminal_states=("closed", "cancelled"),
)


def apply_budget_action(
    budget: Budget,
    action: str,
    at: datetime,
    actor: str | None = None,
) -> Budget:
    """Move ``budget`` through ``action``; guards are checked by the caller.

    Raises:
        InvalidBudgetTransitionError: action not available from the current state.
    """
    transition = BUDGET_WORKFLOW.find(budget.status.value, action)
    if transition is None:
        raise InvalidBudgetTransitionError(str(budget.id), budget.status.value, action)

    changes: dict = {"status": BudgetStatus(transition.to_state), "status_changed_at": at}
    if action == BudgetAction.APPROVE:
        changes.update(approved_by=actor, approved_at=at)

    logger.debug(
        "budget_transition_applied",
        extra={
            "budget_id": str(budget.id),
            "from_state": transition.from_state,
            "to_state": transition.to_state,
        },
    )
    return replace(budget, **changes)
