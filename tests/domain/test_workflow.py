"""
Tests for the Workflow state machine definition and the two declared
lifecycles (expense and budget).
"""

import pytest

from budget_kernel.domain.budget_workflow import BUDGET_WORKFLOW, BudgetAction
from budget_kernel.domain.expense_workflow import EXPENSE_WORKFLOW, ExpenseAction
from budget_kernel.domain.models import BudgetStatus, ExpenseStatus
from budget_kernel.domain.workflow import Transition, Workflow


def _workflow(**overrides) -> Workflow:
    kwargs = dict(
        name="doc",
        description="test",
        initial_state="a",
        states=("a", "b", "c"),
        transitions=(Transition("a", "b", action="go"), Transition("b", "c", action="go")),
        terminal_states=("c",),
    )
    kwargs.update(overrides)
    return Workflow(**kwargs)


class TestWorkflowValidation:
    """Malformed state machines are refused at definition time."""

    def test_valid_definition(self):
        wf = _workflow()
        assert wf.find("a", "go").to_state == "b"

    def test_initial_state_must_be_known(self):
        with pytest.raises(ValueError, match="initial state"):
            _workflow(initial_state="z")

    def test_transition_to_unknown_state(self):
        with pytest.raises(ValueError, match="unknown state"):
            _workflow(transitions=(Transition("a", "z", action="go"),))

    def test_duplicate_action_from_same_state(self):
        with pytest.raises(ValueError, match="duplicate action"):
            _workflow(
                transitions=(
                    Transition("a", "b", action="go"),
                    Transition("a", "c", action="go"),
                )
            )

    def test_terminal_state_with_outgoing_transition(self):
        with pytest.raises(ValueError, match="terminal state"):
            _workflow(terminal_states=("b",))

    def test_find_missing_returns_none(self):
        assert _workflow().find("c", "go") is None

    def test_actions_from(self):
        assert _workflow().actions_from("a") == ("go",)
        assert _workflow().actions_from("c") == ()


class TestExpenseWorkflowTable:
    """The declared expense lifecycle."""

    def test_initial_state_is_draft(self):
        assert EXPENSE_WORKFLOW.initial_state == ExpenseStatus.DRAFT.value

    def test_every_status_is_a_state(self):
        assert set(EXPENSE_WORKFLOW.states) == {s.value for s in ExpenseStatus}

    @pytest.mark.parametrize(
        "from_state,action,to_state",
        [
            ("draft", ExpenseAction.SUBMIT, "pending"),
            ("pending", ExpenseAction.AUTO_APPROVE, "approved"),
            ("pending", ExpenseAction.APPROVE, "approved"),
            ("pending", ExpenseAction.REJECT, "rejected"),
            ("approved", ExpenseAction.PAY, "paid"),
            ("approved", ExpenseAction.REJECT, "rejected"),
        ],
    )
    def test_allowed_transitions(self, from_state, action, to_state):
        assert EXPENSE_WORKFLOW.find(from_state, action).to_state == to_state

    @pytest.mark.parametrize(
        "from_state,action",
        [
            ("draft", ExpenseAction.APPROVE),
            ("draft", ExpenseAction.PAY),
            ("pending", ExpenseAction.PAY),
            ("approved", ExpenseAction.SUBMIT),
            ("paid", ExpenseAction.REJECT),
            ("rejected", ExpenseAction.SUBMIT),
        ],
    )
    def test_forbidden_transitions(self, from_state, action):
        assert EXPENSE_WORKFLOW.find(from_state, action) is None

    def test_paid_and_rejected_are_terminal(self):
        assert set(EXPENSE_WORKFLOW.terminal_states) == {"paid", "rejected"}
        assert EXPENSE_WORKFLOW.actions_from("paid") == ()
        assert EXPENSE_WORKFLOW.actions_from("rejected") == ()

    def test_submission_is_guarded(self):
        guard = EXPENSE_WORKFLOW.find("draft", ExpenseAction.SUBMIT).guard
        assert guard is not None
        assert guard.name == "item_accepts_submissions"


class TestBudgetWorkflowTable:
    """The declared budget lifecycle."""

    def test_initial_state_is_draft(self):
        assert BUDGET_WORKFLOW.initial_state == BudgetStatus.DRAFT.value

    @pytest.mark.parametrize(
        "from_state,action,to_state",
        [
            ("draft", BudgetAction.APPROVE, "active"),
            ("active", BudgetAction.CLOSE, "closed"),
            ("draft", BudgetAction.CANCEL, "cancelled"),
            ("active", BudgetAction.CANCEL, "cancelled"),
        ],
    )
    def test_allowed_transitions(self, from_state, action, to_state):
        assert BUDGET_WORKFLOW.find(from_state, action).to_state == to_state

    def test_draft_cannot_close(self):
        assert BUDGET_WORKFLOW.find("draft", BudgetAction.CLOSE) is None

    def test_closed_and_cancelled_are_terminal(self):
        assert set(BUDGET_WORKFLOW.terminal_states) == {"closed", "cancelled"}
