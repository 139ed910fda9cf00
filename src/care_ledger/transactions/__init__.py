"""
Transaction Module - Billable events and the posting engine

This module implements the core ledger mechanics:
- Draft transactions with quantity x unit price amounts (or explicit overrides)
- Posting and voiding against contract balances
- Balance previews before anything is committed
- Filtered, sorted, paginated listings

Fun fact: "Posting" comes from the old ledger clerks who physically carried
entries from the day journal and posted them into the general ledger.
"""

from care_ledger.transactions.models import (
    BalancePreview,
    BulkOperationResult,
    TransactionPage,
    TransactionRecord,
    TransactionStatus,
)

__all__ = [
    "TransactionRecord",
    "TransactionStatus",
    "BalancePreview",
    "BulkOperationResult",
    "TransactionPage",
]
