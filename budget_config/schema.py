"""
Ledger settings schema.

The typed, frozen form of ``ledger.yaml``.  The loader parses YAML into
these types; ``budget_config.bridges`` turns them into kernel objects.
Values stay in plain Python / Decimal form here so the schema has no
dependency on kernel value types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationGuardDef:
    """How long a mutation may wait for its critical section."""

    lock_timeout_seconds: float | None = 5.0


@dataclass(frozen=True)
class RetryPolicyDef:
    """Bounded exponential backoff for lock-timeout retries."""

    max_attempts: int = 3
    initial_backoff_seconds: float = 0.05
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 1.0


@dataclass(frozen=True)
class HealthThresholdsDef:
    """Utilization bands for budget item health."""

    at_risk_percentage: Decimal = Decimal("95")
    caution_percentage: Decimal = Decimal("85")
    underutilized_spent_percentage: Decimal = Decimal("25")
    underutilized_age_fraction: Decimal = Decimal("0.5")


@dataclass(frozen=True)
class StorageDef:
    """Which store backs the ledger.  ``database_url`` None = in-memory."""

    database_url: str | None = None
    echo_sql: bool = False


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerSettings:
    """Complete ledger configuration."""

    config_id: str
    version: int = 1
    default_currency: str = "USD"
    log_level: str = "INFO"
    budget_approvers: tuple[str, ...] = ()  # empty = anyone may approve
    allocation_guard: AllocationGuardDef = field(default_factory=AllocationGuardDef)
    retry_policy: RetryPolicyDef = field(default_factory=RetryPolicyDef)
    health: HealthThresholdsDef = field(default_factory=HealthThresholdsDef)
    storage: StorageDef = field(default_factory=StorageDef)
    checksum: str = ""
