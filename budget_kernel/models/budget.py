"""
SQLAlchemy ORM persistence models for the budget ledger.

Responsibility
--------------
Database-backed persistence for budgets, budget items, expenses and the
expense archive.  Derived figures (spent, committed, available, health) are
NEVER stored; they are recomputed from expense rows on every read.

Architecture position
---------------------
**Kernel models layer** -- ORM models consumed by the SQL ledger store.
Inherit from ``TrackedBase``.  Each model maps to and from its frozen
domain dataclass via ``to_dto`` / ``from_dto`` / ``update_from_dto``.

Invariants enforced
-------------------
* Monetary columns are Numeric(38,9) paired with a 3-letter currency column.
* Enum fields stored as String(50) for readability and portability.
* Expenses cascade-delete with their item, items with their budget; the
  store archives terminal expenses into ``budget_expense_archive`` first.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from budget_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from budget_kernel.domain.models import (
    ArchivedExpense,
    Budget,
    BudgetItem,
    BudgetStatus,
    BudgetType,
    Expense,
    ExpenseStatus,
    ExpenseType,
)
from budget_kernel.domain.values import Money


# ---------------------------------------------------------------------------
# BudgetModel
# ---------------------------------------------------------------------------


class BudgetModel(TrackedBase):
    """
    A budget header.

    Guarantees:
        - ``status`` follows draft -> active -> closed, or -> cancelled.
        - Owns its items exclusively (delete-orphan cascade).
    """

    __tablename__ = "budget_budgets"

    __table_args__ = (
        Index("idx_budget_status", "status"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total_amount: Mapped[Decimal]
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    budget_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    fiscal_year: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    items: Mapped[list["BudgetItemModel"]] = relationship(
        "BudgetItemModel",
        back_populates="budget",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dto(self) -> Budget:
        return Budget(
            id=self.id,
            title=self.title,
            total_amount=Money.of(self.total_amount, self.currency),
            start_date=self.start_date,
            end_date=self.end_date,
            created_by=self.created_by,
            status=BudgetStatus(self.status),
            budget_type=BudgetType(self.budget_type),
            description=self.description,
            fiscal_year=self.fiscal_year,
            notes=self.notes,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            created_at=self.created_at,
            status_changed_at=self.status_changed_at,
        )

    @classmethod
    def from_dto(cls, dto: Budget) -> BudgetModel:
        row = cls(id=dto.id, created_by=dto.created_by)
        if dto.created_at is not None:
            row.created_at = dto.created_at
        row.update_from_dto(dto)
        return row

    def update_from_dto(self, dto: Budget, updated_by: str | None = None) -> None:
        self.title = dto.title
        self.currency = dto.currency.code
        self.total_amount = dto.total_amount.amount
        self.start_date = dto.start_date
        self.end_date = dto.end_date
        self.status = dto.status.value
        self.budget_type = dto.budget_type.value
        self.description = dto.description
        self.fiscal_year = dto.fiscal_year
        self.notes = dto.notes
        self.approved_by = dto.approved_by
        self.approved_at = dto.approved_at
        self.status_changed_at = dto.status_changed_at
        if updated_by is not None:
            self.updated_by = updated_by

    def __repr__(self) -> str:
        return f"<BudgetModel {self.title} [{self.status}]>"


# ---------------------------------------------------------------------------
# BudgetItemModel
# ---------------------------------------------------------------------------


class BudgetItemModel(TrackedBase):
    """A spending line within a budget.  The row the allocation lock targets."""

    __tablename__ = "budget_items"

    __table_args__ = (
        Index("idx_budget_item_budget", "budget_id"),
    )

    budget_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budget_budgets.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    subcategory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    budgeted_amount: Mapped[Decimal]
    approval_required_threshold: Mapped[Decimal | None] = mapped_column(nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    responsible_person: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    budget: Mapped["BudgetModel"] = relationship("BudgetModel", back_populates="items")
    expenses: Mapped[list["ExpenseModel"]] = relationship(
        "ExpenseModel",
        back_populates="budget_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dto(self) -> BudgetItem:
        threshold = self.approval_required_threshold
        return BudgetItem(
            id=self.id,
            budget_id=self.budget_id,
            category=self.category,
            budgeted_amount=Money.of(self.budgeted_amount, self.currency),
            description=self.description,
            subcategory=self.subcategory,
            approval_required_threshold=(
                None if threshold is None else Money.of(threshold, self.currency)
            ),
            is_locked=self.is_locked,
            responsible_person=self.responsible_person,
            notes=self.notes,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: BudgetItem, created_by: str) -> BudgetItemModel:
        row = cls(id=dto.id, budget_id=dto.budget_id, created_by=created_by)
        if dto.created_at is not None:
            row.created_at = dto.created_at
        row.update_from_dto(dto)
        return row

    def update_from_dto(self, dto: BudgetItem, updated_by: str | None = None) -> None:
        threshold = dto.approval_required_threshold
        self.category = dto.category
        self.subcategory = dto.subcategory
        self.description = dto.description
        self.currency = dto.currency.code
        self.budgeted_amount = dto.budgeted_amount.amount
        self.approval_required_threshold = None if threshold is None else threshold.amount
        self.is_locked = dto.is_locked
        self.responsible_person = dto.responsible_person
        self.notes = dto.notes
        if updated_by is not None:
            self.updated_by = updated_by

    def __repr__(self) -> str:
        return f"<BudgetItemModel {self.category} {self.budgeted_amount} {self.currency}>"


# ---------------------------------------------------------------------------
# Expense columns shared by live and archived expenses
# ---------------------------------------------------------------------------


class _ExpenseColumns:
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[Decimal]
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    expense_type: Mapped[str] = mapped_column(String(50), nullable=False)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receipt_reference: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    submitted_by: Mapped[str] = mapped_column(String(255), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self) -> Expense:
        return Expense(
            id=self.id,
            budget_item_id=self.budget_item_id,
            title=self.title,
            amount=Money.of(self.amount, self.currency),
            expense_date=self.expense_date,
            submitted_by=self.submitted_by,
            expense_type=ExpenseType(self.expense_type),
            status=ExpenseStatus(self.status),
            description=self.description,
            vendor=self.vendor,
            receipt_reference=self.receipt_reference,
            notes=self.notes,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            rejection_reason=self.rejection_reason,
            rejected_by=self.rejected_by,
            paid_at=self.paid_at,
            created_at=self.created_at,
            status_changed_at=self.status_changed_at,
        )

    def update_from_dto(self, dto: Expense, updated_by: str | None = None) -> None:
        self.title = dto.title
        self.description = dto.description
        self.currency = dto.amount.currency.code
        self.amount = dto.amount.amount
        self.expense_date = dto.expense_date
        self.expense_type = dto.expense_type.value
        self.vendor = dto.vendor
        self.receipt_reference = dto.receipt_reference
        self.notes = dto.notes
        self.status = dto.status.value
        self.submitted_by = dto.submitted_by
        self.approved_by = dto.approved_by
        self.approved_at = dto.approved_at
        self.rejection_reason = dto.rejection_reason
        self.rejected_by = dto.rejected_by
        self.paid_at = dto.paid_at
        self.status_changed_at = dto.status_changed_at
        if updated_by is not None:
            self.updated_by = updated_by


class ExpenseModel(_ExpenseColumns, TrackedBase):
    """A live expense.  Never reparented: budget_item_id is set once."""

    __tablename__ = "budget_expenses"

    __table_args__ = (
        Index("idx_expense_item", "budget_item_id"),
        Index("idx_expense_status", "status"),
    )

    budget_item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budget_items.id", ondelete="CASCADE"), nullable=False
    )

    budget_item: Mapped["BudgetItemModel"] = relationship(
        "BudgetItemModel", back_populates="expenses"
    )

    @classmethod
    def from_dto(cls, dto: Expense) -> ExpenseModel:
        row = cls(id=dto.id, budget_item_id=dto.budget_item_id, created_by=dto.submitted_by)
        if dto.created_at is not None:
            row.created_at = dto.created_at
        row.update_from_dto(dto)
        return row

    def __repr__(self) -> str:
        return f"<ExpenseModel {self.title} {self.amount} {self.currency} [{self.status}]>"


class ArchivedExpenseModel(_ExpenseColumns, TrackedBase):
    """
    A terminal expense preserved after its budget item was deleted.

    Keeps the original item and budget ids without foreign keys so the
    record survives the deletion of both.
    """

    __tablename__ = "budget_expense_archive"

    __table_args__ = (
        Index("idx_archive_item", "budget_item_id"),
        Index("idx_archive_budget", "budget_id"),
    )

    budget_item_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    budget_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    archived_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    archived_by: Mapped[str] = mapped_column(String(255), nullable=False)

    def to_archived_dto(self) -> ArchivedExpense:
        return ArchivedExpense(
            expense=self.to_dto(),
            budget_id=self.budget_id,
            archived_at=self.archived_at,
            archived_by=self.archived_by,
        )

    @classmethod
    def from_archived_dto(cls, dto: ArchivedExpense) -> ArchivedExpenseModel:
        expense = dto.expense
        row = cls(
            id=expense.id,
            budget_item_id=expense.budget_item_id,
            budget_id=dto.budget_id,
            archived_at=dto.archived_at,
            archived_by=dto.archived_by,
            created_by=expense.submitted_by,
        )
        if expense.created_at is not None:
            row.created_at = expense.created_at
        row.update_from_dto(expense)
        return row
