"""
Ledger stores -- storage contract and the in-memory implementation.

Responsibility:
    Defines how ledger services read and atomically write Budgets,
    BudgetItems, Expenses and archived Expenses, and ships an in-process
    store used for embedded deployments and tests.  The SQLAlchemy store
    lives in ``services.sql_store`` and honours the same contract.

Architecture position:
    Kernel > Services -- imperative shell.  Services write through
    ``LedgerStore.transaction``; selectors read through ``LedgerStore.read``.

Invariants enforced:
    - Atomicity: a transaction's writes become visible all at once on
      commit, or not at all.  ANY exception leaving the block (including
      KeyboardInterrupt / cancellation) discards every staged write.
    - Readers never block: the in-memory store publishes an immutable
      snapshot and swaps a single reference on commit, so a reader always
      sees one consistent committed state.
    - Stored values are the frozen domain dataclasses; derived figures are
      never stored.

Failure modes:
    - Exceptions raised inside the transaction block propagate unchanged
      after rollback.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from uuid import UUID

from budget_kernel.domain.models import ArchivedExpense, Budget, BudgetItem, Expense
from budget_kernel.logging_config import get_logger

logger = get_logger("services.ledger_store")


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _creation_order(value) -> tuple:
    return (value.created_at or _EPOCH, str(value.id))


class LedgerReader(ABC):
    """Read access to one consistent view of the ledger."""

    @abstractmethod
    def get_budget(self, budget_id: UUID) -> Budget | None: ...

    @abstractmethod
    def get_item(self, item_id: UUID) -> BudgetItem | None: ...

    @abstractmethod
    def get_expense(self, expense_id: UUID) -> Expense | None: ...

    @abstractmethod
    def list_budgets(self) -> tuple[Budget, ...]: ...

    @abstractmethod
    def list_items(self, budget_id: UUID) -> tuple[BudgetItem, ...]:
        """Items of ``budget_id`` in creation order."""

    @abstractmethod
    def list_expenses(self, item_id: UUID) -> tuple[Expense, ...]:
        """Expenses of ``item_id`` in creation order."""

    @abstractmethod
    def list_archived(
        self,
        budget_item_id: UUID | None = None,
        budget_id: UUID | None = None,
    ) -> tuple[ArchivedExpense, ...]: ...


class LedgerTransaction(LedgerReader):
    """Read-your-writes view plus staged writes, committed as one unit."""

    @abstractmethod
    def lock_budget(self, budget_id: UUID) -> Budget | None:
        """Read ``budget_id`` for update (row lock where the backend has one)."""

    @abstractmethod
    def lock_item(self, item_id: UUID) -> BudgetItem | None:
        """Read ``item_id`` for update (row lock where the backend has one)."""

    @abstractmethod
    def save_budget(self, budget: Budget) -> None: ...

    @abstractmethod
    def save_item(self, item: BudgetItem) -> None: ...

    @abstractmethod
    def save_expense(self, expense: Expense) -> None: ...

    @abstractmethod
    def delete_expense(self, expense_id: UUID) -> None: ...

    @abstractmethod
    def delete_item(self, item_id: UUID) -> None: ...

    @abstractmethod
    def delete_budget(self, budget_id: UUID) -> None: ...

    @abstractmethod
    def archive_expense(self, archived: ArchivedExpense) -> None: ...


class LedgerStore(ABC):
    """Factory for read views and write transactions."""

    @abstractmethod
    def read(self) -> Iterator[LedgerReader]:
        """Context manager yielding a consistent read-only view."""

    @abstractmethod
    def transaction(self, actor: str) -> Iterator[LedgerTransaction]:
        """Context manager yielding a transaction committed on normal exit."""


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


_TABLES = ("budgets", "items", "expenses", "archive")


@dataclass(frozen=True)
class _LedgerState:
    """One committed, immutable version of the whole ledger."""

    version: int = 0
    budgets: Mapping[UUID, Budget] = field(default_factory=lambda: MappingProxyType({}))
    items: Mapping[UUID, BudgetItem] = field(default_factory=lambda: MappingProxyType({}))
    expenses: Mapping[UUID, Expense] = field(default_factory=lambda: MappingProxyType({}))
    archive: Mapping[UUID, ArchivedExpense] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def apply(self, writes: Mapping[str, Mapping[UUID, object]]) -> _LedgerState:
        tables = {}
        for table in _TABLES:
            current = getattr(self, table)
            staged = writes.get(table)
            if not staged:
                tables[table] = current
                continue
            tables[table] = MappingProxyType(_overlay(current, staged))
        return _LedgerState(version=self.version + 1, **tables)


_DELETED = object()


def _overlay(
    base: Mapping[UUID, object], staged: Mapping[UUID, object]
) -> dict[UUID, object]:
    merged = dict(base)
    for key, value in staged.items():
        if value is _DELETED:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


class _StateReader(LedgerReader):
    """Reader over a mapping-per-table source."""

    @abstractmethod
    def _table(self, name: str) -> Mapping[UUID, object]:
        """The committed or staged rows of table ``name``, keyed by id."""

    def get_budget(self, budget_id: UUID) -> Budget | None:
        return self._table("budgets").get(budget_id)

    def get_item(self, item_id: UUID) -> BudgetItem | None:
        return self._table("items").get(item_id)

    def get_expense(self, expense_id: UUID) -> Expense | None:
        return self._table("expenses").get(expense_id)

    def list_budgets(self) -> tuple[Budget, ...]:
        return tuple(sorted(self._table("budgets").values(), key=_creation_order))

    def list_items(self, budget_id: UUID) -> tuple[BudgetItem, ...]:
        items = (i for i in self._table("items").values() if i.budget_id == budget_id)
        return tuple(sorted(items, key=_creation_order))

    def list_expenses(self, item_id: UUID) -> tuple[Expense, ...]:
        expenses = (
            e for e in self._table("expenses").values() if e.budget_item_id == item_id
        )
        return tuple(sorted(expenses, key=_creation_order))

    def list_archived(
        self,
        budget_item_id: UUID | None = None,
        budget_id: UUID | None = None,
    ) -> tuple[ArchivedExpense, ...]:
        archived = [
            a for a in self._table("archive").values()
            if (budget_item_id is None or a.budget_item_id == budget_item_id)
            and (budget_id is None or a.budget_id == budget_id)
        ]
        archived.sort(key=lambda a: _creation_order(a.expense))
        return tuple(archived)


class _SnapshotReader(_StateReader):
    def __init__(self, state: _LedgerState):
        self._state = state

    def _table(self, name: str) -> Mapping[UUID, object]:
        return getattr(self._state, name)


class _MemoryTransaction(_StateReader, LedgerTransaction):
    """Staged writes overlaid on the store's latest committed state."""

    def __init__(self, store: InMemoryLedgerStore, actor: str):
        self._store = store
        self.actor = actor
        self._writes: dict[str, dict[UUID, object]] = {t: {} for t in _TABLES}

    def _table(self, name: str) -> Mapping[UUID, object]:
        base = getattr(self._store.snapshot(), name)
        staged = self._writes[name]
        if not staged:
            return base
        return _overlay(base, staged)

    @property
    def writes(self) -> Mapping[str, Mapping[UUID, object]]:
        return self._writes

    def lock_budget(self, budget_id: UUID) -> Budget | None:
        return self.get_budget(budget_id)

    def lock_item(self, item_id: UUID) -> BudgetItem | None:
        return self.get_item(item_id)

    def save_budget(self, budget: Budget) -> None:
        self._writes["budgets"][budget.id] = budget

    def save_item(self, item: BudgetItem) -> None:
        self._writes["items"][item.id] = item

    def save_expense(self, expense: Expense) -> None:
        self._writes["expenses"][expense.id] = expense

    def delete_expense(self, expense_id: UUID) -> None:
        self._writes["expenses"][expense_id] = _DELETED

    def delete_item(self, item_id: UUID) -> None:
        for expense in self.list_expenses(item_id):
            self.delete_expense(expense.id)
        self._writes["items"][item_id] = _DELETED

    def delete_budget(self, budget_id: UUID) -> None:
        for item in self.list_items(budget_id):
            self.delete_item(item.id)
        self._writes["budgets"][budget_id] = _DELETED

    def archive_expense(self, archived: ArchivedExpense) -> None:
        self._writes["archive"][archived.expense.id] = archived


class InMemoryLedgerStore(LedgerStore):
    """
    Process-local store with copy-on-commit snapshots.

    Contract:
        Writers must serialize conflicting mutations themselves (the
        AllocationGuard does this); the store only guarantees that each
        commit is applied atomically on top of the latest committed state.

    Guarantees:
        - ``read()`` never blocks and never observes a partial commit.
        - Commits of transactions touching different keys never lose each
          other's writes.
    """

    def __init__(self):
        self._state = _LedgerState()
        self._commit_lock = threading.Lock()

    def snapshot(self) -> _LedgerState:
        return self._state

    @property
    def version(self) -> int:
        return self._state.version

    @contextmanager
    def read(self) -> Iterator[LedgerReader]:
        yield _SnapshotReader(self._state)

    @contextmanager
    def transaction(self, actor: str) -> Iterator[LedgerTransaction]:
        tx = _MemoryTransaction(self, actor)
        try:
            yield tx
        except BaseException:
            logger.debug("transaction_rolled_back", extra={"actor_id": actor})
            raise

        with self._commit_lock:
            self._state = self._state.apply(tx.writes)
            version = self._state.version
        logger.debug(
            "transaction_committed",
            extra={"actor_id": actor, "version": version},
        )
