"""
Tests for the LedgerStore contract: atomic commit, rollback, read isolation.

Contract tests run against both backends through the ``store`` fixture;
snapshot and version behaviour is specific to InMemoryLedgerStore.
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from budget_kernel.domain.models import Budget, BudgetItem, BudgetStatus
from budget_kernel.domain.values import Money
from budget_kernel.services.ledger_store import _StateReader

ACTOR = "owner@ngo.test"


def make_budget(title="Shelter repairs", created_at=None) -> Budget:
    return Budget(
        id=uuid4(),
        title=title,
        total_amount=Money.of("5000", "USD"),
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
        created_by=ACTOR,
        created_at=created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def make_item(budget, category="Materials") -> BudgetItem:
    return BudgetItem(
        id=uuid4(),
        budget_id=budget.id,
        category=category,
        budgeted_amount=Money.of("1000", "USD"),
        created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
    )


class TestTransactionContract:
    def test_commit_visible_to_readers(self, store):
        budget = make_budget()
        with store.transaction(ACTOR) as tx:
            tx.save_budget(budget)
        with store.read() as reader:
            assert reader.get_budget(budget.id).title == "Shelter repairs"

    def test_rollback_on_exception(self, store):
        budget = make_budget()
        with pytest.raises(RuntimeError):
            with store.transaction(ACTOR) as tx:
                tx.save_budget(budget)
                raise RuntimeError("validation failed")
        with store.read() as reader:
            assert reader.get_budget(budget.id) is None

    def test_rollback_on_keyboard_interrupt(self, store):
        budget = make_budget()
        with pytest.raises(KeyboardInterrupt):
            with store.transaction(ACTOR) as tx:
                tx.save_budget(budget)
                raise KeyboardInterrupt
        with store.read() as reader:
            assert reader.get_budget(budget.id) is None

    def test_own_writes_visible_inside_transaction(self, store):
        budget = make_budget()
        with store.transaction(ACTOR) as tx:
            tx.save_budget(budget)
            item = make_item(budget)
            tx.save_item(item)
            assert tx.lock_budget(budget.id) == budget
            assert [i.id for i in tx.list_items(budget.id)] == [item.id]

    def test_update_replaces_row(self, store):
        budget = make_budget()
        with store.transaction(ACTOR) as tx:
            tx.save_budget(budget)
        with store.transaction(ACTOR) as tx:
            tx.save_budget(replace(budget, status=BudgetStatus.ACTIVE))
        with store.read() as reader:
            assert reader.get_budget(budget.id).status == BudgetStatus.ACTIVE
            assert len(reader.list_budgets()) == 1

    def test_delete_budget_cascades_items(self, store):
        budget = make_budget()
        item = make_item(budget)
        with store.transaction(ACTOR) as tx:
            tx.save_budget(budget)
            tx.save_item(item)
        with store.transaction(ACTOR) as tx:
            tx.delete_budget(budget.id)
        with store.read() as reader:
            assert reader.get_budget(budget.id) is None
            assert reader.get_item(item.id) is None

    def test_budgets_listed_in_creation_order(self, store):
        older = make_budget("older", datetime(2023, 1, 1, tzinfo=timezone.utc))
        newer = make_budget("newer", datetime(2024, 1, 1, tzinfo=timezone.utc))
        with store.transaction(ACTOR) as tx:
            tx.save_budget(newer)
            tx.save_budget(older)
        with store.read() as reader:
            assert [b.title for b in reader.list_budgets()] == ["older", "newer"]


class TestInMemorySnapshots:
    def test_version_increments_per_commit(self, memory_store):
        assert memory_store.version == 0
        with memory_store.transaction(ACTOR) as tx:
            tx.save_budget(make_budget())
        assert memory_store.version == 1

    def test_rollback_keeps_version(self, memory_store):
        with pytest.raises(ValueError):
            with memory_store.transaction(ACTOR) as tx:
                tx.save_budget(make_budget())
                raise ValueError
        assert memory_store.version == 0

    def test_open_reader_keeps_its_snapshot(self, memory_store):
        budget = make_budget()
        with memory_store.read() as reader:
            with memory_store.transaction(ACTOR) as tx:
                tx.save_budget(budget)
            assert reader.get_budget(budget.id) is None
        with memory_store.read() as reader:
            assert reader.get_budget(budget.id) == budget

    def test_disjoint_commits_both_survive(self, memory_store):
        first, second = make_budget("first"), make_budget("second")
        with memory_store.transaction(ACTOR) as tx_a:
            tx_a.save_budget(first)
            with memory_store.transaction(ACTOR) as tx_b:
                tx_b.save_budget(second)
        with memory_store.read() as reader:
            assert {b.title for b in reader.list_budgets()} == {"first", "second"}


class TestReaderContract:
    def test_table_source_required(self):
        class _NoTables(_StateReader):
            pass

        with pytest.raises(TypeError, match="_table"):
            _NoTables()
