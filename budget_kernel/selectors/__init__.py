"""Selectors for the budget ledger (read side)."""

from budget_kernel.selectors.ledger_selector import (
    CurrencyTotals,
    LedgerSelector,
    PortfolioStatistics,
)

__all__ = [
    "CurrencyTotals",
    "LedgerSelector",
    "PortfolioStatistics",
]
