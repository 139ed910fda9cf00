"""
Kernel - Shared infrastructure for the ledger domains

Errors, ids, time, logging, metrics, retry, per-contract locking and the
ledger policy. Domain packages (funding, transactions) build on these.
"""

from care_ledger.kernel.errors import (
    CareLedgerError,
    ConsistencyError,
    FieldIssue,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from care_ledger.kernel.ids import IdFactory, SequentialIdFactory, generate_id
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    # IDs
    "IdFactory",
    "SequentialIdFactory",
    "generate_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Policy
    "LedgerPolicy",
    # Errors
    "CareLedgerError",
    "FieldIssue",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "InsufficientBalanceError",
    "ConsistencyError",
]
