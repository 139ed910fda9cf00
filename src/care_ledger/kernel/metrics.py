"""
Prometheus metrics collection for Care Ledger.

Provides observability into posting throughput, rejections and contract
balances.
"""

import time
from collections.abc import Callable
from decimal import Decimal
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from care_ledger.kernel.errors import CareLedgerError, StorageError

# ============================================================================
# Operation Metrics
# ============================================================================

operation_duration_seconds = Histogram(
    "care_ledger_operation_duration_seconds",
    "Duration of ledger operations in seconds",
    ["operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

operations_total = Counter(
    "care_ledger_operations_total",
    "Total number of ledger operations processed",
    ["operation", "status"],  # status: success, rejected, failure
)

# ============================================================================
# Transaction Lifecycle Metrics
# ============================================================================

transactions_created_total = Counter(
    "care_ledger_transactions_created_total",
    "Total number of draft transactions created",
    ["service_code"],
)

transactions_posted_total = Counter(
    "care_ledger_transactions_posted_total",
    "Total number of transactions posted against contracts",
    ["contract_type"],
)

transactions_voided_total = Counter(
    "care_ledger_transactions_voided_total",
    "Total number of posted transactions voided",
    ["contract_type"],
)

posting_rejections_total = Counter(
    "care_ledger_posting_rejections_total",
    "Total number of posting attempts rejected",
    ["reason"],  # insufficient_balance, inactive_contract, invalid_state
)

amount_overrides_total = Counter(
    "care_ledger_amount_overrides_total",
    "Transactions whose amount differs from quantity x unit price",
)

# ============================================================================
# Bulk & Concurrency Metrics
# ============================================================================

bulk_items_total = Counter(
    "care_ledger_bulk_items_total",
    "Items processed by bulk operations",
    ["action", "outcome"],  # outcome: processed, failed
)

balance_version_conflicts_total = Counter(
    "care_ledger_balance_version_conflicts_total",
    "Optimistic concurrency conflicts on funding records",
)

# ============================================================================
# Contract Metrics
# ============================================================================

contract_balance = Gauge(
    "care_ledger_contract_balance",
    "Current remaining balance per funding contract",
    ["contract_id"],
)


P = ParamSpec("P")
R = TypeVar("R")


def track_operation(operation: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track ledger operation duration and outcome.

    Domain rejections (validation, state, balance) count as "rejected";
    anything else raised counts as "failure".

    Args:
        operation: Operation name

    Returns:
        Decorated function that records metrics
    """
    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except StorageError:
                status = "failure"
                raise
            except CareLedgerError:
                status = "rejected"
                raise
            except Exception:
                status = "failure"
                raise
            finally:
                operation_duration_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start
                )
                operations_total.labels(operation=operation, status=status).inc()

        return wrapper

    return decorator


def record_contract_balance(contract_id: str, balance: Decimal) -> None:
    """Publish a contract's remaining balance."""
    contract_balance.labels(contract_id=contract_id).set(float(balance))


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)
    """
    start_http_server(port)
