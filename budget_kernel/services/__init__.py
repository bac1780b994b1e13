"""Services for the budget ledger (write side)."""

from budget_kernel.services.allocation_guard import AllocationGuard
from budget_kernel.services.budget_service import (
    BudgetApprovalAuthority,
    BudgetService,
    PermissiveApprovalAuthority,
    StaticApprovalAuthority,
)
from budget_kernel.services.contention import RetryPolicy, with_contention_retry
from budget_kernel.services.ledger_service import BudgetItemLedger
from budget_kernel.services.ledger_store import (
    InMemoryLedgerStore,
    LedgerReader,
    LedgerStore,
    LedgerTransaction,
)
from budget_kernel.services.runtime import LedgerRuntime, build_ledger_runtime
from budget_kernel.services.sql_store import SqlLedgerStore

__all__ = [
    "AllocationGuard",
    "BudgetApprovalAuthority",
    "BudgetItemLedger",
    "BudgetService",
    "InMemoryLedgerStore",
    "LedgerReader",
    "LedgerRuntime",
    "LedgerStore",
    "LedgerTransaction",
    "PermissiveApprovalAuthority",
    "RetryPolicy",
    "SqlLedgerStore",
    "StaticApprovalAuthority",
    "build_ledger_runtime",
    "with_contention_retry",
]
