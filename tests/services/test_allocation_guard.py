"""
Tests for AllocationGuard critical sections.

Threads are coordinated with Events so no test depends on sleep timing
except the short lock timeouts themselves.
"""

import threading
from uuid import UUID, uuid4

import pytest

from budget_kernel.exceptions import AllocationLockTimeoutError
from budget_kernel.services.allocation_guard import BUDGET, BUDGET_ITEM, AllocationGuard


def hold_in_thread(guard, **hold_kwargs):
    """Start a thread that holds a section until the returned release event is set."""
    acquired = threading.Event()
    release = threading.Event()

    def _run():
        with guard.hold(**hold_kwargs):
            acquired.set()
            release.wait(5)

    thread = threading.Thread(target=_run, daemon=True)
    thread.start()
    assert acquired.wait(5)
    return release, thread


def try_in_thread(guard, **hold_kwargs) -> bool:
    """Attempt a section from a fresh thread; True if it was entered."""
    result = {}

    def _run():
        try:
            with guard.hold(**hold_kwargs):
                result["entered"] = True
        except AllocationLockTimeoutError:
            result["entered"] = False

    thread = threading.Thread(target=_run)
    thread.start()
    thread.join(5)
    return result["entered"]


class TestHold:
    def test_times_out_when_held_elsewhere(self):
        guard = AllocationGuard()
        item_id = uuid4()
        release, thread = hold_in_thread(guard, item_ids=[item_id])
        try:
            with pytest.raises(AllocationLockTimeoutError) as exc_info:
                with guard.hold(item_ids=[item_id], timeout=0.05):
                    pass
            assert exc_info.value.retryable is True
            assert exc_info.value.resource_type == BUDGET_ITEM
            assert exc_info.value.resource_id == str(item_id)
        finally:
            release.set()
            thread.join(5)

    def test_different_items_do_not_block(self):
        guard = AllocationGuard()
        release, thread = hold_in_thread(guard, item_ids=[uuid4()])
        try:
            assert try_in_thread(guard, item_ids=[uuid4()], timeout=0.05)
        finally:
            release.set()
            thread.join(5)

    def test_budget_key_blocks_budget_sections_only(self):
        guard = AllocationGuard()
        budget_id, item_id = uuid4(), uuid4()
        release, thread = hold_in_thread(guard, budget_id=budget_id)
        try:
            assert not try_in_thread(guard, budget_id=budget_id, timeout=0.05)
            assert try_in_thread(guard, item_ids=[item_id], timeout=0.05)
        finally:
            release.set()
            thread.join(5)

    def test_reentrant_within_thread(self):
        guard = AllocationGuard(default_timeout=0.05)
        item_id = uuid4()
        with guard.hold(item_ids=[item_id]):
            with guard.hold(item_ids=[item_id]):
                entered = True
        assert entered

    def test_released_after_exception(self):
        guard = AllocationGuard()
        item_id = uuid4()
        with pytest.raises(RuntimeError):
            with guard.hold(item_ids=[item_id]):
                raise RuntimeError("boom")
        assert try_in_thread(guard, item_ids=[item_id], timeout=0.05)

    def test_partial_acquisition_released_on_timeout(self):
        guard = AllocationGuard()
        budget_id, free_item, busy_item = uuid4(), uuid4(), uuid4()
        release, thread = hold_in_thread(guard, item_ids=[busy_item])
        try:
            assert not try_in_thread(
                guard, budget_id=budget_id, item_ids=[free_item, busy_item], timeout=0.05
            )
            # Keys taken before the timeout were given back.
            assert try_in_thread(guard, budget_id=budget_id, item_ids=[free_item], timeout=0.05)
        finally:
            release.set()
            thread.join(5)

    def test_timeout_logged(self, captured_logs):
        guard = AllocationGuard()
        item_id = uuid4()
        release, thread = hold_in_thread(guard, item_ids=[item_id])
        try:
            assert not try_in_thread(guard, item_ids=[item_id], timeout=0.01)
        finally:
            release.set()
            thread.join(5)
        records = [r for r in captured_logs() if r["message"] == "allocation_lock_timeout"]
        assert records[0]["resource_id"] == str(item_id)


class TestLockOrdering:
    def test_budget_first_then_items_sorted(self):
        budget_id = uuid4()
        items = [UUID(int=3), UUID(int=1), UUID(int=2), UUID(int=1)]
        keys = AllocationGuard._ordered_keys(budget_id, items)
        assert keys == [
            (BUDGET, budget_id),
            (BUDGET_ITEM, UUID(int=1)),
            (BUDGET_ITEM, UUID(int=2)),
            (BUDGET_ITEM, UUID(int=3)),
        ]

    def test_opposite_request_orders_do_not_deadlock(self):
        guard = AllocationGuard(default_timeout=5.0)
        first, second = uuid4(), uuid4()
        start = threading.Barrier(2)
        done = []

        def _run(item_ids):
            start.wait()
            for _ in range(200):
                with guard.hold(item_ids=item_ids):
                    pass
            done.append(True)

        threads = [
            threading.Thread(target=_run, args=([first, second],)),
            threading.Thread(target=_run, args=([second, first],)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)
        assert done == [True, True]


class TestKeyRegistry:
    """Lock entries live only while some caller holds or waits on the key."""

    def test_empty_after_sections_exit(self):
        guard = AllocationGuard()
        budget_id, item_id = uuid4(), uuid4()
        with guard.hold(budget_id=budget_id, item_ids=[item_id]):
            with guard.hold(item_ids=[item_id]):
                assert len(guard._locks) == 2
        assert guard._locks == {}

    def test_empty_after_exception(self):
        guard = AllocationGuard()
        with pytest.raises(RuntimeError):
            with guard.hold(item_ids=[uuid4()]):
                raise RuntimeError("boom")
        assert guard._locks == {}

    def test_empty_after_timeout(self):
        guard = AllocationGuard()
        budget_id, free_item, busy_item = uuid4(), uuid4(), uuid4()
        release, thread = hold_in_thread(guard, item_ids=[busy_item])
        try:
            assert not try_in_thread(
                guard, budget_id=budget_id, item_ids=[free_item, busy_item], timeout=0.05
            )
            assert set(guard._locks) == {(BUDGET_ITEM, busy_item)}
        finally:
            release.set()
            thread.join(5)
        assert guard._locks == {}

    def test_waiter_keeps_entry_alive(self):
        guard = AllocationGuard(default_timeout=5.0)
        item_id = uuid4()
        release, holder = hold_in_thread(guard, item_ids=[item_id])
        entered = threading.Event()

        def _wait_then_enter():
            with guard.hold(item_ids=[item_id]):
                entered.set()

        waiter = threading.Thread(target=_wait_then_enter)
        waiter.start()
        release.set()
        holder.join(5)
        waiter.join(5)
        assert entered.is_set()
        assert guard._locks == {}

    def test_deleted_items_leave_no_entries(self, guard, budgets, ledger, create_budget):
        budget = create_budget()
        for n in range(25):
            item = budgets.add_item(
                budget.id, category=f"Line {n}", budgeted_amount="10", actor="owner"
            )
            ledger.lock(item.id, "owner")
            ledger.delete_item(item.id, "owner")
        assert guard._locks == {}
