"""
Retry logic with exponential backoff for transient failures.

Two kinds of failure are worth retrying: SQLite lock contention, and a
funding record that changed between our read and our write (optimistic
concurrency). Both resolve themselves once the competing writer finishes.
"""

import sqlite3
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from care_ledger.kernel.errors import BalanceVersionConflict
from care_ledger.kernel.logging import get_logger
from care_ledger.kernel.metrics import balance_version_conflicts_total

logger = get_logger(__name__)

T = TypeVar("T")


def retry_on_sqlite_lock(
    max_attempts: int = 3,
    min_wait_ms: int = 100,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for SQLite lock contention (OperationalError).

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait_ms: Minimum wait time in milliseconds (default: 100)
        max_wait_ms: Maximum wait time in milliseconds (default: 1000)

    Returns:
        Decorated function that retries on sqlite3.OperationalError
    """
    return retry(
        retry=retry_if_exception_type(sqlite3.OperationalError),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=lambda retry_state: logger.warning(
            "SQLite lock detected, retrying",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
        reraise=True,
    )


def _log_version_conflict(retry_state) -> None:  # type: ignore[no-untyped-def]
    balance_version_conflicts_total.inc()
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Funding record changed concurrently, retrying",
        attempt=retry_state.attempt_number,
        contract_id=getattr(exc, "contract_id", None),
    )


def retry_on_version_conflict(
    max_attempts: int = 3,
    min_wait_ms: int = 10,
    max_wait_ms: int = 200,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for optimistic concurrency conflicts on funding records.

    The decorated function must re-read the funding record on every attempt;
    retrying a write with stale data would just conflict again.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait_ms: Minimum wait time in milliseconds (default: 10)
        max_wait_ms: Maximum wait time in milliseconds (default: 200)

    Returns:
        Decorated function that retries on BalanceVersionConflict
    """
    return retry(
        retry=retry_if_exception_type(BalanceVersionConflict),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=_log_version_conflict,
        reraise=True,
    )
