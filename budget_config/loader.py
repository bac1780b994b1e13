"""
Configuration Loader (``budget_config.loader``).

Responsibility
--------------
Loads a ledger settings YAML file and parses it into the frozen
``budget_config.schema`` dataclasses.  Runtime callers go through
``budget_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Unknown top-level or section keys are rejected, so a misspelt setting
  never silently falls back to its default.
* ``compute_checksum`` is a deterministic SHA-256 of the canonical JSON
  form of the raw YAML, identifying exactly which settings are active.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` -> ``KeyError``.
* Unknown keys or bad values -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from budget_config.schema import (
    AllocationGuardDef,
    HealthThresholdsDef,
    LedgerSettings,
    RetryPolicyDef,
    StorageDef,
)

_SECTIONS = {
    "allocation_guard": AllocationGuardDef,
    "retry_policy": RetryPolicyDef,
    "health": HealthThresholdsDef,
    "storage": StorageDef,
}

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in {section}: {sorted(unknown)}")


def parse_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, float):
        # YAML reads 0.5 as float; go through its shortest repr.
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{name} is not a decimal number: {value!r}") from e


def parse_section(name: str, data: dict[str, Any] | None):
    """Parse one section mapping into its dataclass."""
    cls = _SECTIONS[name]
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Section {name} must be a mapping")
    _check_keys(name, data, {f.name for f in fields(cls)})

    if cls is HealthThresholdsDef:
        data = {k: parse_decimal(v, f"{name}.{k}") for k, v in data.items()}
    return cls(**data)


def parse_settings(data: dict[str, Any]) -> LedgerSettings:
    """
    Parse a ``LedgerSettings`` from the raw YAML mapping.

    Raises:
        KeyError: ``config_id`` is missing.
        ValueError: unknown keys or invalid values.
    """
    allowed = {f.name for f in fields(LedgerSettings)} - {"checksum"}
    _check_keys("ledger settings", data, allowed)

    log_level = str(data.get("log_level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"Unknown log_level: {log_level!r}")

    return LedgerSettings(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        default_currency=str(data.get("default_currency", "USD")).upper(),
        log_level=log_level,
        budget_approvers=tuple(data.get("budget_approvers") or ()),
        allocation_guard=parse_section("allocation_guard", data.get("allocation_guard")),
        retry_policy=parse_section("retry_policy", data.get("retry_policy")),
        health=parse_section("health", data.get("health")),
        storage=parse_section("storage", data.get("storage")),
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> LedgerSettings:
    return parse_settings(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
