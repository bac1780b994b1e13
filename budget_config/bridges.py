"""
Config -> Kernel Bridges.

Functions that convert LedgerSettings into kernel objects.  These live in
budget_config (the producer) because the kernel must NEVER import
budget_config.

Usage:
    from budget_config import get_active_config
    from budget_config.bridges import build_runtime

    runtime = build_runtime(get_active_config())
    budget = runtime.budgets.create_budget(...)
"""

from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from budget_config.schema import LedgerSettings
from budget_kernel.db.engine import build_engine, create_tables
from budget_kernel.domain.clock import Clock
from budget_kernel.domain.ledger import HealthThresholds
from budget_kernel.logging_config import configure_logging
from budget_kernel.services.budget_service import (
    BudgetApprovalAuthority,
    PermissiveApprovalAuthority,
    StaticApprovalAuthority,
)
from budget_kernel.services.contention import RetryPolicy
from budget_kernel.services.ledger_store import InMemoryLedgerStore, LedgerStore
from budget_kernel.services.runtime import LedgerRuntime, build_ledger_runtime
from budget_kernel.services.sql_store import SqlLedgerStore


def build_health_thresholds(settings: LedgerSettings) -> HealthThresholds:
    health = settings.health
    return HealthThresholds(
        at_risk_percentage=health.at_risk_percentage,
        caution_percentage=health.caution_percentage,
        underutilized_spent_percentage=health.underutilized_spent_percentage,
        underutilized_age_fraction=health.underutilized_age_fraction,
    )


def build_retry_policy(settings: LedgerSettings) -> RetryPolicy:
    retry = settings.retry_policy
    return RetryPolicy(
        max_attempts=retry.max_attempts,
        initial_backoff_seconds=retry.initial_backoff_seconds,
        backoff_multiplier=retry.backoff_multiplier,
        max_backoff_seconds=retry.max_backoff_seconds,
    )


def build_approval_authority(settings: LedgerSettings) -> BudgetApprovalAuthority:
    if settings.budget_approvers:
        return StaticApprovalAuthority(settings.budget_approvers)
    return PermissiveApprovalAuthority()


def build_store(settings: LedgerSettings) -> LedgerStore:
    """In-memory store, or a SQL store (tables created) for ``database_url``."""
    url = settings.storage.database_url
    if url is None:
        return InMemoryLedgerStore()
    engine = build_engine(url, echo=settings.storage.echo_sql)
    create_tables(engine)
    return SqlLedgerStore(sessionmaker(bind=engine, expire_on_commit=False))


def build_runtime(
    settings: LedgerSettings,
    *,
    clock: Clock | None = None,
    store: LedgerStore | None = None,
    authority: BudgetApprovalAuthority | None = None,
    configure_logs: bool = False,
) -> LedgerRuntime:
    """Wire a LedgerRuntime from ``settings``.

    ``store`` and ``authority`` override what the settings would build.
    """
    if configure_logs:
        configure_logging(level=settings.log_level)
    return build_ledger_runtime(
        store if store is not None else build_store(settings),
        clock=clock,
        authority=authority or build_approval_authority(settings),
        thresholds=build_health_thresholds(settings),
        lock_timeout=settings.allocation_guard.lock_timeout_seconds,
        retry_policy=build_retry_policy(settings),
        default_currency=settings.default_currency,
    )
