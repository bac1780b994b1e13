"""
Typed Exception Hierarchy for the Budget Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (forms, dashboards, approval inboxes) must react to
each rejection differently: show the shortfall, show the valid range,
retry after contention, or hide an action that is no longer available.
Parsing message strings for that is fragile, so every error:

  1. Has its own exception CLASS (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores its context as ATTRIBUTES (amounts, ids, ranges)
  4. Declares whether it is RETRYABLE

Example:
    try:
        ledger.submit_expense(expense_id)
    except InsufficientBudgetError as e:
        api_response(code=e.code, shortfall=str(e.shortfall.amount))
    except AllocationLockTimeoutError:
        ...  # safe to retry, see services.contention

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |
    +-- LedgerValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidDateRangeError
    |
    +-- NotFoundError
    |   +-- BudgetNotFoundError
    |   +-- BudgetItemNotFoundError
    |   +-- ExpenseNotFoundError
    |
    +-- ExpenseError
    |   +-- InvalidTransitionError
    |   |   +-- RejectionReasonRequiredError
    |   +-- ExpenseNotEditableError
    |   +-- SelfApprovalNotPermittedError
    |   +-- InsufficientBudgetError
    |   +-- SpendingNotPermittedError
    |
    +-- AllocationError
    |   +-- BelowSpentAmountError
    |   +-- ExceedsBudgetCapacityError
    |   +-- BelowAllocatedAmountError
    |
    +-- BudgetLifecycleError
    |   +-- InvalidBudgetTransitionError
    |   +-- OutstandingEncumbranceError
    |   +-- BudgetNotOpenError
    |   +-- BudgetApprovalNotAuthorizedError
    |   +-- BudgetItemInUseError
    |
    +-- ConcurrencyError
        +-- AllocationLockTimeoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|-------------------------------------
Currency     | INVALID_CURRENCY              | Not a known ISO 4217 code
             | CURRENCY_MISMATCH             | Money arithmetic across currencies
-------------|-------------------------------|-------------------------------------
Validation   | INVALID_AMOUNT                | Negative budget / non-positive expense
             | INVALID_DATE_RANGE            | Budget end_date before start_date
-------------|-------------------------------|-------------------------------------
Lookup       | BUDGET_NOT_FOUND              | Unknown budget id
             | BUDGET_ITEM_NOT_FOUND         | Unknown budget item id
             | EXPENSE_NOT_FOUND             | Unknown expense id
-------------|-------------------------------|-------------------------------------
Expense      | INVALID_TRANSITION            | Action not available from state
             | REJECTION_REASON_REQUIRED     | Reject without a reason
             | EXPENSE_NOT_EDITABLE          | Edit of pending/approved/paid
             | SELF_APPROVAL_NOT_PERMITTED   | Submitter approving above threshold
             | INSUFFICIENT_BUDGET           | Submit beyond available headroom
             | SPENDING_NOT_PERMITTED        | Item locked or budget not active
-------------|-------------------------------|-------------------------------------
Allocation   | BELOW_SPENT_AMOUNT            | Budgeted amount below spent
             | EXCEEDS_BUDGET_CAPACITY       | Allocation beyond budget total
             | BELOW_ALLOCATED_AMOUNT        | Budget total below its allocations
-------------|-------------------------------|-------------------------------------
Budget       | INVALID_BUDGET_TRANSITION     | Status change not permitted
             | OUTSTANDING_ENCUMBRANCE       | Close with pending/approved money
             | BUDGET_NOT_OPEN               | Change to a closed/cancelled budget
             | BUDGET_APPROVAL_NOT_AUTHORIZED| Approver lacks capability
             | BUDGET_ITEM_IN_USE            | Delete with non-terminal expenses
-------------|-------------------------------|-------------------------------------
Concurrency  | ALLOCATION_LOCK_TIMEOUT       | Critical section not acquired in time

No error in this hierarchy is fatal: each one is a rejected operation and
none leaves the ledger partially mutated.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """
    Base exception for all budget ledger errors.

    All subclasses must define a ``code`` class attribute.  ``retryable``
    marks errors that callers may retry automatically without changing
    their request.
    """

    code: str = "LEDGER_ERROR"
    retryable: bool = False


# Currency-related exceptions


class CurrencyError(LedgerError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Unknown or malformed ISO 4217 currency code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: Any):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: {currency!r}")


class CurrencyMismatchError(CurrencyError):
    """Attempted an operation on amounts in different currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str, operation: str = "combine"):
        self.currency1 = currency1
        self.currency2 = currency2
        self.operation = operation
        super().__init__(
            f"Cannot {operation} Money with different currencies: "
            f"{currency1} and {currency2}"
        )


# Validation exceptions


class LedgerValidationError(LedgerError):
    """Base exception for malformed input values."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(LedgerValidationError):
    """An amount violates its sign constraint."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: Any, reason: str):
        self.field = field
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid {field} {amount}: {reason}")


class InvalidDateRangeError(LedgerValidationError):
    """Budget end date precedes its start date."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, start_date: str, end_date: str):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(f"End date {end_date} is before start date {start_date}")


# Lookup exceptions


class NotFoundError(LedgerError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class BudgetNotFoundError(NotFoundError):
    code: str = "BUDGET_NOT_FOUND"

    def __init__(self, budget_id: str):
        self.budget_id = budget_id
        super().__init__(f"Budget not found: {budget_id}")


class BudgetItemNotFoundError(NotFoundError):
    code: str = "BUDGET_ITEM_NOT_FOUND"

    def __init__(self, budget_item_id: str):
        self.budget_item_id = budget_item_id
        super().__init__(f"Budget item not found: {budget_item_id}")


class ExpenseNotFoundError(NotFoundError):
    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense not found: {expense_id}")


# Expense-related exceptions


class ExpenseError(LedgerError):
    """Base exception for expense workflow errors."""

    code: str = "EXPENSE_ERROR"


class InvalidTransitionError(ExpenseError):
    """Requested expense state change is not available from its current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, expense_id: str, from_state: str, action: str, reason: str | None = None):
        self.expense_id = expense_id
        self.from_state = from_state
        self.action = action
        self.reason = reason
        message = f"Cannot {action} expense {expense_id} in state '{from_state}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RejectionReasonRequiredError(InvalidTransitionError):
    """Rejecting an expense requires a non-empty reason."""

    code: str = "REJECTION_REASON_REQUIRED"

    def __init__(self, expense_id: str, from_state: str):
        super().__init__(
            expense_id, from_state, "reject", reason="a rejection reason is required"
        )


class ExpenseNotEditableError(ExpenseError):
    """Expense fields are frozen once submitted for approval."""

    code: str = "EXPENSE_NOT_EDITABLE"

    def __init__(self, expense_id: str, status: str):
        self.expense_id = expense_id
        self.status = status
        super().__init__(
            f"Expense {expense_id} is '{status}' and can no longer be edited"
        )


class SelfApprovalNotPermittedError(ExpenseError):
    """Submitter attempted to approve their own above-threshold expense."""

    code: str = "SELF_APPROVAL_NOT_PERMITTED"

    def __init__(self, expense_id: str, actor: str | None, threshold: str):
        self.expense_id = expense_id
        self.actor = actor
        self.threshold = threshold
        super().__init__(
            f"Expense {expense_id} exceeds the approval threshold {threshold} "
            "and must be approved by someone other than its submitter"
        )


class InsufficientBudgetError(ExpenseError):
    """Submission would exceed the item's available budget."""

    code: str = "INSUFFICIENT_BUDGET"

    def __init__(self, expense_id: str, budget_item_id: str, requested, available):
        self.expense_id = expense_id
        self.budget_item_id = budget_item_id
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f"Expense {expense_id} of {requested} exceeds remaining budget "
            f"{available} on item {budget_item_id} by {self.shortfall}"
        )


class SpendingNotPermittedError(ExpenseError):
    """Item does not accept new spending (locked, budget inactive, or exhausted)."""

    code: str = "SPENDING_NOT_PERMITTED"

    def __init__(self, budget_item_id: str, reason: str):
        self.budget_item_id = budget_item_id
        self.reason = reason
        super().__init__(f"Budget item {budget_item_id} cannot accept spending: {reason}")


# Allocation exceptions


class AllocationError(LedgerError):
    """Base exception for allocation invariant violations."""

    code: str = "ALLOCATION_ERROR"


class BelowSpentAmountError(AllocationError):
    """Budgeted amount cannot shrink below what has already been spent."""

    code: str = "BELOW_SPENT_AMOUNT"

    def __init__(self, budget_item_id: str, requested, minimum, maximum):
        self.budget_item_id = budget_item_id
        self.requested = requested
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Budgeted amount {requested} for item {budget_item_id} is below the "
            f"spent amount; valid range is {minimum} to {maximum}"
        )


class ExceedsBudgetCapacityError(AllocationError):
    """Allocation would push the budget's total allocated above its total."""

    code: str = "EXCEEDS_BUDGET_CAPACITY"

    def __init__(self, budget_id: str, requested, minimum, maximum):
        self.budget_id = budget_id
        self.requested = requested
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Allocation of {requested} exceeds the capacity of budget {budget_id}; "
            f"valid range is {minimum} to {maximum}"
        )


class BelowAllocatedAmountError(AllocationError):
    """Budget total cannot shrink below what its items already hold."""

    code: str = "BELOW_ALLOCATED_AMOUNT"

    def __init__(self, budget_id: str, requested, minimum):
        self.budget_id = budget_id
        self.requested = requested
        self.minimum = minimum
        super().__init__(
            f"Total {requested} for budget {budget_id} is below its allocated "
            f"amount {minimum}"
        )


# Budget lifecycle exceptions


class BudgetLifecycleError(LedgerError):
    """Base exception for budget status errors."""

    code: str = "BUDGET_LIFECYCLE_ERROR"


class InvalidBudgetTransitionError(BudgetLifecycleError):
    code: str = "INVALID_BUDGET_TRANSITION"

    def __init__(self, budget_id: str, from_state: str, action: str):
        self.budget_id = budget_id
        self.from_state = from_state
        self.action = action
        super().__init__(f"Cannot {action} budget {budget_id} in state '{from_state}'")


class OutstandingEncumbranceError(BudgetLifecycleError):
    """Budget still has pending or approved money against it."""

    code: str = "OUTSTANDING_ENCUMBRANCE"

    def __init__(self, budget_id: str, encumbered, item_ids: tuple[str, ...]):
        self.budget_id = budget_id
        self.encumbered = encumbered
        self.item_ids = item_ids
        super().__init__(
            f"Budget {budget_id} has {encumbered} outstanding across "
            f"{len(item_ids)} item(s)"
        )


class BudgetNotOpenError(BudgetLifecycleError):
    """Budget is closed or cancelled and accepts no allocation changes."""

    code: str = "BUDGET_NOT_OPEN"

    def __init__(self, budget_id: str, status: str):
        self.budget_id = budget_id
        self.status = status
        super().__init__(f"Budget {budget_id} is '{status}'")


class BudgetApprovalNotAuthorizedError(BudgetLifecycleError):
    code: str = "BUDGET_APPROVAL_NOT_AUTHORIZED"

    def __init__(self, budget_id: str, actor: str):
        self.budget_id = budget_id
        self.actor = actor
        super().__init__(f"{actor} is not authorized to approve budget {budget_id}")


class BudgetItemInUseError(BudgetLifecycleError):
    """Item still owns expenses that have not reached a terminal state."""

    code: str = "BUDGET_ITEM_IN_USE"

    def __init__(self, budget_item_id: str, open_expense_count: int):
        self.budget_item_id = budget_item_id
        self.open_expense_count = open_expense_count
        super().__init__(
            f"Budget item {budget_item_id} has {open_expense_count} "
            "expense(s) still in progress"
        )


# Concurrency exceptions


class ConcurrencyError(LedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class AllocationLockTimeoutError(ConcurrencyError):
    """Critical section could not be entered before the timeout elapsed."""

    code: str = "ALLOCATION_LOCK_TIMEOUT"
    retryable: bool = True

    def __init__(self, resource_type: str, resource_id: str, timeout: float | None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout}s waiting for {resource_type} {resource_id}"
        )
