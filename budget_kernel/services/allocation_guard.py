"""
AllocationGuard -- per-key critical sections for ledger mutations.

Responsibility:
    Serializes every mutation of one BudgetItem (and, for capacity checks
    and status changes, its parent Budget) so that read-validate-write
    sequences never interleave.  Two concurrent submissions against the
    same item are forced through one at a time; submissions against
    different items proceed in parallel.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Used by BudgetItemLedger and BudgetService around each store
    transaction.  Readers never touch it.

Invariants enforced:
    - Lock ordering: the Budget key is always acquired before any item
      key, and item keys in ascending id order.  Every caller goes through
      ``hold`` so no two threads can wait on each other in a cycle.
    - Re-entrancy: a thread already holding a key may hold it again
      (nested ``hold`` calls from one operation never self-deadlock).
    - All-or-nothing acquisition: on timeout every key taken so far is
      released before AllocationLockTimeoutError is raised.

Failure modes:
    - AllocationLockTimeoutError (retryable) when the keys cannot all be
      taken within the timeout.  Nothing has been read or written yet.

Usage:
    guard = AllocationGuard(default_timeout=5.0)
    with guard.hold(budget_id=budget.id, item_ids=[item.id]):
        ...  # read, validate, write inside one store transaction
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from uuid import UUID

from budget_kernel.exceptions import AllocationLockTimeoutError
from budget_kernel.logging_config import get_logger

logger = get_logger("services.allocation_guard")

BUDGET = "budget"
BUDGET_ITEM = "budget_item"


class _KeyLock:
    """A key's lock plus the number of callers holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class AllocationGuard:
    """Registry of re-entrant locks keyed by (resource type, id).

    Contract:
        ``hold`` is the only way to enter a critical section.

    Guarantees:
        - One lock object per key while any caller holds or waits on it.
          The entry is dropped when the last of them leaves, so keys of
          deleted budgets and items do not accumulate.
        - ``timeout=None`` on both the call and the guard blocks forever.
    """

    def __init__(self, default_timeout: float | None = 5.0):
        self._default_timeout = default_timeout
        self._registry_lock = threading.Lock()
        self._locks: dict[tuple[str, UUID], _KeyLock] = {}

    @property
    def default_timeout(self) -> float | None:
        return self._default_timeout

    def _checkout(self, key: tuple[str, UUID]) -> threading.RLock:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
            return entry.lock

    def _checkin(self, key: tuple[str, UUID]) -> None:
        with self._registry_lock:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @staticmethod
    def _ordered_keys(
        budget_id: UUID | None, item_ids: Iterable[UUID]
    ) -> list[tuple[str, UUID]]:
        keys: list[tuple[str, UUID]] = []
        if budget_id is not None:
            keys.append((BUDGET, budget_id))
        keys.extend((BUDGET_ITEM, item_id) for item_id in sorted(set(item_ids), key=str))
        return keys

    @contextmanager
    def hold(
        self,
        budget_id: UUID | None = None,
        item_ids: Iterable[UUID] = (),
        timeout: float | None = None,
    ) -> Iterator[None]:
        """Hold the Budget key (if given) and every item key for the block.

        Args:
            budget_id: Parent budget to lock first.
            item_ids: Items to lock, in any order; locked in sorted order.
            timeout: Seconds allowed for acquiring ALL keys.  Falls back
                to the guard's default.

        Raises:
            AllocationLockTimeoutError: a key was not acquired in time.
        """
        effective = self._default_timeout if timeout is None else timeout
        deadline = None if effective is None else time.monotonic() + effective
        checked_out: list[tuple[str, UUID]] = []
        acquired: list[threading.RLock] = []

        try:
            for resource_type, resource_id in self._ordered_keys(budget_id, item_ids):
                key = (resource_type, resource_id)
                lock = self._checkout(key)
                checked_out.append(key)
                if deadline is None:
                    lock.acquire()
                elif not lock.acquire(timeout=max(deadline - time.monotonic(), 0)):
                    logger.warning(
                        "allocation_lock_timeout",
                        extra={
                            "resource_type": resource_type,
                            "resource_id": str(resource_id),
                            "timeout_seconds": effective,
                            "keys_held": len(acquired),
                        },
                    )
                    raise AllocationLockTimeoutError(
                        resource_type, str(resource_id), effective
                    )
                acquired.append(lock)

            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)
