"""
Contention retry -- bounded automatic retry of lock timeouts.

Only errors flagged ``retryable`` (today: AllocationLockTimeoutError) are
retried.  Every other LedgerError is a rejected operation and surfaces on
the first attempt.  A timed-out attempt wrote nothing, so re-running the
same operation is always safe.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from budget_kernel.exceptions import LedgerError
from budget_kernel.logging_config import get_logger

logger = get_logger("services.contention")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: initial, initial*multiplier, ... capped at max."""
    max_attempts: int = 3
    initial_backoff_seconds: float = 0.05
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_backoff_seconds < 0 or self.max_backoff_seconds < 0:
            raise ValueError("backoff seconds must not be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")

    def backoff(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (1-based)."""
        delay = self.initial_backoff_seconds * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_backoff_seconds)


DEFAULT_RETRY_POLICY = RetryPolicy()


def with_contention_retry(
    operation: Callable[[], T],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying retryable ledger errors with backoff.

    Raises:
        The last retryable error once ``policy.max_attempts`` is exhausted,
        or any non-retryable error immediately.
    """
    attempt = 1
    while True:
        try:
            return operation()
        except LedgerError as exc:
            if not exc.retryable:
                raise
            if attempt >= policy.max_attempts:
                logger.warning(
                    "contention_retries_exhausted",
                    extra={"attempts": attempt, "error_code": exc.code},
                )
                raise
            delay = policy.backoff(attempt)
            logger.info(
                "contention_retry_scheduled",
                extra={
                    "attempt": attempt,
                    "delay_seconds": delay,
                    "error_code": exc.code,
                },
            )
            sleep(delay)
            attempt += 1
