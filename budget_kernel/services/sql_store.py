"""
SqlLedgerStore -- SQLAlchemy-backed implementation of the ledger store.

Responsibility:
    Persists Budgets, BudgetItems, Expenses and archived Expenses through
    the ORM models in ``budget_kernel.models`` and maps rows back to the
    frozen domain dataclasses.

Architecture position:
    Kernel > Services -- imperative shell.  Owns one Session per read or
    transaction, opened through ``db.session_scope``.

Invariants enforced:
    - ``lock_budget`` / ``lock_item`` issue ``SELECT ... FOR UPDATE`` so
      that on PostgreSQL two processes cannot both validate against the
      same item row.  Locked reads refresh rows already in the session.
      Budget status changes lock the budget row and then every item row,
      so a submission in another process holding an item row finishes
      first or sees the new status.  SQLite ignores the clause; the
      in-process AllocationGuard still serializes callers there.
    - Every write is flushed immediately; the whole transaction commits
      once on exit, or rolls back on ANY exception.

Failure modes:
    - SQLAlchemy errors propagate after rollback.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from budget_kernel.db.engine import session_scope
from budget_kernel.domain.models import ArchivedExpense, Budget, BudgetItem, Expense
from budget_kernel.logging_config import get_logger
from budget_kernel.models.budget import (
    ArchivedExpenseModel,
    BudgetItemModel,
    BudgetModel,
    ExpenseModel,
)
from budget_kernel.services.ledger_store import (
    LedgerReader,
    LedgerStore,
    LedgerTransaction,
)

logger = get_logger("services.sql_store")


class _SqlReader(LedgerReader):
    def __init__(self, session: Session):
        self.session = session

    def get_budget(self, budget_id: UUID) -> Budget | None:
        row = self.session.get(BudgetModel, budget_id)
        return row.to_dto() if row is not None else None

    def get_item(self, item_id: UUID) -> BudgetItem | None:
        row = self.session.get(BudgetItemModel, item_id)
        return row.to_dto() if row is not None else None

    def get_expense(self, expense_id: UUID) -> Expense | None:
        row = self.session.get(ExpenseModel, expense_id)
        return row.to_dto() if row is not None else None

    def list_budgets(self) -> tuple[Budget, ...]:
        rows = self.session.scalars(
            select(BudgetModel).order_by(BudgetModel.created_at, BudgetModel.id)
        )
        return tuple(row.to_dto() for row in rows)

    def list_items(self, budget_id: UUID) -> tuple[BudgetItem, ...]:
        rows = self.session.scalars(
            select(BudgetItemModel)
            .where(BudgetItemModel.budget_id == budget_id)
            .order_by(BudgetItemModel.created_at, BudgetItemModel.id)
        )
        return tuple(row.to_dto() for row in rows)

    def list_expenses(self, item_id: UUID) -> tuple[Expense, ...]:
        rows = self.session.scalars(
            select(ExpenseModel)
            .where(ExpenseModel.budget_item_id == item_id)
            .order_by(ExpenseModel.created_at, ExpenseModel.id)
        )
        return tuple(row.to_dto() for row in rows)

    def list_archived(
        self,
        budget_item_id: UUID | None = None,
        budget_id: UUID | None = None,
    ) -> tuple[ArchivedExpense, ...]:
        stmt = select(ArchivedExpenseModel)
        if budget_item_id is not None:
            stmt = stmt.where(ArchivedExpenseModel.budget_item_id == budget_item_id)
        if budget_id is not None:
            stmt = stmt.where(ArchivedExpenseModel.budget_id == budget_id)
        stmt = stmt.order_by(ArchivedExpenseModel.created_at, ArchivedExpenseModel.id)
        return tuple(row.to_archived_dto() for row in self.session.scalars(stmt))


class _SqlTransaction(_SqlReader, LedgerTransaction):
    def __init__(self, session: Session, actor: str):
        super().__init__(session)
        self.actor = actor

    def lock_budget(self, budget_id: UUID) -> Budget | None:
        row = self.session.execute(
            select(BudgetModel)
            .where(BudgetModel.id == budget_id)
            .with_for_update()  # Row-level lock
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def lock_item(self, item_id: UUID) -> BudgetItem | None:
        row = self.session.execute(
            select(BudgetItemModel)
            .where(BudgetItemModel.id == item_id)
            .with_for_update()  # Row-level lock
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def save_budget(self, budget: Budget) -> None:
        row = self.session.get(BudgetModel, budget.id)
        if row is None:
            self.session.add(BudgetModel.from_dto(budget))
        else:
            row.update_from_dto(budget, updated_by=self.actor)
        self.session.flush()

    def save_item(self, item: BudgetItem) -> None:
        row = self.session.get(BudgetItemModel, item.id)
        if row is None:
            self.session.add(BudgetItemModel.from_dto(item, created_by=self.actor))
        else:
            row.update_from_dto(item, updated_by=self.actor)
        self.session.flush()

    def save_expense(self, expense: Expense) -> None:
        row = self.session.get(ExpenseModel, expense.id)
        if row is None:
            self.session.add(ExpenseModel.from_dto(expense))
        else:
            row.update_from_dto(expense, updated_by=self.actor)
        self.session.flush()

    def delete_expense(self, expense_id: UUID) -> None:
        row = self.session.get(ExpenseModel, expense_id)
        if row is not None:
            self.session.delete(row)
            self.session.flush()

    def delete_item(self, item_id: UUID) -> None:
        row = self.session.get(BudgetItemModel, item_id)
        if row is not None:
            self.session.delete(row)
            self.session.flush()

    def delete_budget(self, budget_id: UUID) -> None:
        row = self.session.get(BudgetModel, budget_id)
        if row is not None:
            self.session.delete(row)
            self.session.flush()

    def archive_expense(self, archived: ArchivedExpense) -> None:
        self.session.add(ArchivedExpenseModel.from_archived_dto(archived))
        self.session.flush()


class SqlLedgerStore(LedgerStore):
    """
    Ledger store over a SQLAlchemy session factory.

    Contract:
        ``session_factory`` yields sessions bound to a database where
        ``db.create_tables`` has been run.

    Non-goals:
        - Does NOT create tables or manage the engine.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @contextmanager
    def read(self) -> Iterator[LedgerReader]:
        session = self._session_factory()
        try:
            yield _SqlReader(session)
        finally:
            session.close()

    @contextmanager
    def transaction(self, actor: str) -> Iterator[LedgerTransaction]:
        with session_scope(self._session_factory) as session:
            yield _SqlTransaction(session, actor)
