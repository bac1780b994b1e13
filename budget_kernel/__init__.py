"""
Budget Kernel

Budget allocation and expense approval ledger:
- Exact decimal Money with currency enforcement
- Expense approval state machine with threshold-gated approval
- Derived (never stored) spent / committed / available / health figures
- Per-item allocation guard so money is never double-committed
"""

__version__ = "0.1.0"
