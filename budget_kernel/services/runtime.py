"""
LedgerRuntime -- one wired set of ledger collaborators.

Shares a single store, AllocationGuard and clock between the item ledger,
the budget service and the selector.  The services MUST share one guard:
two guards over the same store would hand out independent locks for the
same item.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.ledger import DEFAULT_HEALTH_THRESHOLDS, HealthThresholds
from budget_kernel.selectors.ledger_selector import LedgerSelector
from budget_kernel.services.allocation_guard import AllocationGuard
from budget_kernel.services.budget_service import BudgetApprovalAuthority, BudgetService
from budget_kernel.services.contention import (
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    with_contention_retry,
)
from budget_kernel.services.ledger_service import BudgetItemLedger
from budget_kernel.services.ledger_store import LedgerStore

T = TypeVar("T")


@dataclass(frozen=True)
class LedgerRuntime:
    store: LedgerStore
    guard: AllocationGuard
    clock: Clock
    ledger: BudgetItemLedger
    budgets: BudgetService
    selector: LedgerSelector
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY

    def retrying(self, operation: Callable[[], T]) -> T:
        """Run ``operation`` under this runtime's contention retry policy."""
        return with_contention_retry(operation, self.retry_policy)


def build_ledger_runtime(
    store: LedgerStore,
    *,
    clock: Clock | None = None,
    authority: BudgetApprovalAuthority | None = None,
    thresholds: HealthThresholds = DEFAULT_HEALTH_THRESHOLDS,
    lock_timeout: float | None = 5.0,
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    default_currency: str = "USD",
) -> LedgerRuntime:
    clock = clock or SystemClock()
    guard = AllocationGuard(default_timeout=lock_timeout)
    return LedgerRuntime(
        store=store,
        guard=guard,
        clock=clock,
        ledger=BudgetItemLedger(store, guard, clock, thresholds),
        budgets=BudgetService(
            store,
            guard,
            authority,
            clock,
            thresholds,
            default_currency=default_currency,
        ),
        selector=LedgerSelector(store, clock, thresholds),
        retry_policy=retry_policy,
    )
