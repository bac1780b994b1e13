"""
Pytest fixtures for the budget ledger test suite.

Provides:
- Structured logging configuration and log capture
- A deterministic clock
- In-memory and SQLite-backed ledger stores
- Wired ledger / budget services and selector sharing one AllocationGuard
- Factories for budgets, items and expenses

Environment Variables:
- DATABASE_URL: optional PostgreSQL URL for tests marked ``postgres``.
  Those tests are skipped when it is not set.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from budget_kernel.db.engine import build_engine, create_tables, drop_tables
from budget_kernel.domain.clock import DeterministicClock
from budget_kernel.domain.models import ExpenseType
from budget_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from budget_kernel.selectors.ledger_selector import LedgerSelector
from budget_kernel.services.allocation_guard import AllocationGuard
from budget_kernel.services.budget_service import (
    BudgetService,
    PermissiveApprovalAuthority,
)
from budget_kernel.services.ledger_service import BudgetItemLedger
from budget_kernel.services.ledger_store import InMemoryLedgerStore
from budget_kernel.services.sql_store import SqlLedgerStore

# Identities used across tests
OWNER = "owner@ngo.test"
SUBMITTER = "alice@ngo.test"
APPROVER = "bob@ngo.test"

BUDGET_START = date(2024, 1, 1)
BUDGET_END = date(2024, 12, 31)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture budget_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.submit_expense(expense.id)
            logs = captured_logs()
            assert any(r["message"] == "expense_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("budget_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock and stores
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Clock fixed at 2024-01-01 12:00 UTC until advanced."""
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def memory_store():
    return InMemoryLedgerStore()


@pytest.fixture
def sqlite_engine(tmp_path):
    """File-backed SQLite engine so several threads share one database."""
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def sql_store(sqlite_engine):
    return SqlLedgerStore(sessionmaker(bind=sqlite_engine, expire_on_commit=False))


@pytest.fixture
def postgres_store():
    url = os.environ.get("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")
    engine = build_engine(url)
    create_tables(engine)
    yield SqlLedgerStore(sessionmaker(bind=engine, expire_on_commit=False))
    drop_tables(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Every store implementation; tests using it run once per backend."""
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sql_store")


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def guard():
    return AllocationGuard(default_timeout=2.0)


@pytest.fixture
def ledger(store, guard, deterministic_clock):
    return BudgetItemLedger(store, guard, deterministic_clock)


@pytest.fixture
def budgets(store, guard, deterministic_clock):
    return BudgetService(
        store, guard, PermissiveApprovalAuthority(), deterministic_clock
    )


@pytest.fixture
def selector(store, deterministic_clock):
    return LedgerSelector(store, deterministic_clock)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def create_budget(budgets):
    """Create a budget, activated unless ``activate=False``."""

    def _create(total="10000.00", currency="USD", activate=True, **kwargs):
        kwargs.setdefault("title", "Community outreach 2024")
        kwargs.setdefault("start_date", BUDGET_START)
        kwargs.setdefault("end_date", BUDGET_END)
        kwargs.setdefault("created_by", OWNER)
        budget = budgets.create_budget(total_amount=total, currency=currency, **kwargs)
        if activate:
            budget = budgets.approve_budget(budget.id, OWNER)
        return budget

    return _create


@pytest.fixture
def create_item(budgets, create_budget):
    """Add an item; creates a fresh active budget unless one is given."""

    def _create(budgeted="1000.00", threshold=None, budget=None, **kwargs):
        if budget is None:
            budget = create_budget()
        kwargs.setdefault("category", "Travel")
        kwargs.setdefault("actor", OWNER)
        return budgets.add_item(
            budget.id,
            budgeted_amount=budgeted,
            approval_required_threshold=threshold,
            **kwargs,
        )

    return _create


@pytest.fixture
def create_expense(ledger):
    """Add a draft expense to an item."""

    def _create(item, amount="100.00", submitted_by=SUBMITTER, **kwargs):
        kwargs.setdefault("title", "Field visit")
        kwargs.setdefault("expense_date", date(2024, 1, 15))
        kwargs.setdefault("expense_type", ExpenseType.TRAVEL)
        return ledger.add_expense(
            item.id,
            amount=Decimal(amount),
            submitted_by=submitted_by,
            **kwargs,
        )

    return _create
