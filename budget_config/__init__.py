"""
budget_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain ledger settings at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``budget_kernel``.  The kernel MUST NEVER
    import from ``budget_config``; ``budget_config.bridges`` translates
    settings into kernel objects.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Every successful load emits a ``ledger_config_loaded`` log entry with
      the config id, version and checksum.

Failure modes:
    - ``FileNotFoundError`` -- the selected YAML file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema violations (see loader).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from budget_config.loader import load_settings
from budget_config.schema import LedgerSettings

_logger = logging.getLogger("budget_kernel.config")

CONFIG_ENV_VAR = "BUDGET_LEDGER_CONFIG"

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "defaults" / "ledger.yaml"


def get_active_config(path: Path | str | None = None) -> LedgerSettings:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then the ``BUDGET_LEDGER_CONFIG``
    environment variable, then the packaged ``defaults/ledger.yaml``.

    Raises:
        FileNotFoundError: the resolved file does not exist.
        ValueError: the file fails schema validation.
    """
    if path is not None:
        source = Path(path)
    elif os.environ.get(CONFIG_ENV_VAR):
        source = Path(os.environ[CONFIG_ENV_VAR])
    else:
        source = _DEFAULT_CONFIG_FILE

    settings = load_settings(source)

    _logger.info(
        "ledger_config_loaded",
        extra={
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "config_path": str(source),
            "default_currency": settings.default_currency,
        },
    )
    return settings


__all__ = ["CONFIG_ENV_VAR", "LedgerSettings", "get_active_config"]
