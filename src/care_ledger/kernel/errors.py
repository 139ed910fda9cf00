"""
Custom exceptions for Care Ledger

Well-defined error hierarchy enables precise error handling at the API
boundary. Every error carries a ``code`` naming its taxonomy family, which is
what bulk results report and what the API layer maps to a status code.

Fun fact: Double-entry bookkeeping was documented by Luca Pacioli in 1494.
Five centuries later we still raise an error when the books don't balance.
"""

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    import pydantic

    from care_ledger.transactions.models import BalancePreview


def field_path(name: str) -> str:
    """API-facing field path for a model attribute (start_date -> startDate)"""
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class FieldIssue(BaseModel):
    """Single field-level violation (field path + human-readable message)"""

    field: str
    message: str


class CareLedgerError(Exception):
    """Base exception for all Care Ledger errors"""

    code = "CareLedgerError"


# Validation


class ValidationError(CareLedgerError):
    """
    Raised when input values are malformed or out of range

    Carries every violation found, not just the first one, so callers can
    report all offending fields at once.
    """

    code = "ValidationError"

    def __init__(self, issues: list[FieldIssue], message: str = "") -> None:
        self.issues = issues
        summary = "; ".join(f"{issue.field}: {issue.message}" for issue in issues)
        super().__init__(message or f"Validation failed - {summary}")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        """Build a ValidationError with exactly one issue"""
        return cls([FieldIssue(field=field, message=message)])

    @classmethod
    def from_pydantic(cls, exc: "pydantic.ValidationError") -> "ValidationError":
        """
        Convert a pydantic ValidationError into a Care Ledger one

        Args:
            exc: Error raised while constructing a command model

        Returns:
            ValidationError with dotted field paths
        """
        issues = [
            FieldIssue(
                field=".".join(field_path(str(part)) for part in error["loc"]) or "__root__",
                message=error["msg"],
            )
            for error in exc.errors()
        ]
        return cls(issues)

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]


# Not found


class NotFoundError(CareLedgerError):
    """Base class for dangling references"""

    code = "NotFoundError"


class ResidentNotFound(NotFoundError):
    """Raised when resident does not exist"""

    def __init__(self, resident_id: str) -> None:
        self.resident_id = resident_id
        super().__init__(f"Resident {resident_id} not found")


class HouseNotFound(NotFoundError):
    """Raised when house does not exist"""

    def __init__(self, house_id: str) -> None:
        self.house_id = house_id
        super().__init__(f"House {house_id} not found")


class ContractNotFound(NotFoundError):
    """Raised when funding record (contract) does not exist or was deleted"""

    def __init__(self, contract_id: str) -> None:
        self.contract_id = contract_id
        super().__init__(f"Funding contract {contract_id} not found")


class TransactionNotFound(NotFoundError):
    """Raised when transaction does not exist"""

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


# Lifecycle


class InvalidStateError(CareLedgerError):
    """Base class for illegal lifecycle transitions"""

    code = "InvalidStateError"


class InvalidTransition(InvalidStateError):
    """Raised when a transaction cannot move from its current status"""

    def __init__(self, transaction_id: str, current_status: str, action: str) -> None:
        self.transaction_id = transaction_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} transaction {transaction_id}: status is {current_status}"
        )


class ContractInactive(InvalidStateError):
    """Raised when posting against a contract that is switched off"""

    def __init__(self, contract_id: str) -> None:
        self.contract_id = contract_id
        super().__init__(f"Funding contract {contract_id} is inactive")


# Balance


class InsufficientBalanceError(CareLedgerError):
    """
    Raised when posting would overdraw a contract

    The preview that triggered the rejection is attached so the caller can
    show the same numbers the engine used.
    """

    code = "InsufficientBalanceError"

    def __init__(self, contract_id: str, preview: "BalancePreview") -> None:
        self.contract_id = contract_id
        self.preview = preview
        super().__init__(
            f"Cannot post against contract {contract_id}: {preview.warning_message}"
        )


# Consistency


class ConsistencyError(CareLedgerError):
    """Base class for cross-entity mismatches"""

    code = "ConsistencyError"


class ContractResidentMismatch(ConsistencyError):
    """Raised when a contract is referenced through the wrong resident"""

    def __init__(self, contract_id: str, resident_id: str, owner_id: str) -> None:
        self.contract_id = contract_id
        self.resident_id = resident_id
        self.owner_id = owner_id
        super().__init__(
            f"Funding contract {contract_id} belongs to resident {owner_id}, "
            f"not {resident_id}"
        )


class ContractInUse(ConsistencyError):
    """Raised when deleting a contract that still has live transactions"""

    def __init__(self, contract_id: str, live_transactions: int) -> None:
        self.contract_id = contract_id
        self.live_transactions = live_transactions
        super().__init__(
            f"Funding contract {contract_id} has {live_transactions} draft or posted "
            "transaction(s) and cannot be deleted"
        )


class BalanceDriftDetected(ConsistencyError):
    """Raised by strict reconciliation when stored and ledger balances differ"""

    def __init__(self, contract_id: str, stored: str, computed: str) -> None:
        self.contract_id = contract_id
        self.stored = stored
        self.computed = computed
        super().__init__(
            f"Funding contract {contract_id} stored balance {stored} does not match "
            f"ledger balance {computed}"
        )


# Storage


class StorageError(CareLedgerError):
    """Base class for repository errors"""

    code = "StorageError"


class BalanceVersionConflict(StorageError):
    """
    Raised when a funding record changed between read and write

    Indicates concurrent modification - caller should reload and retry.
    """

    def __init__(self, contract_id: str, expected_version: int, actual_version: int) -> None:
        self.contract_id = contract_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Funding contract {contract_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )


class RecordDeleted(StorageError):
    """Raised when saving a record whose id has been deleted"""

    def __init__(self, kind: str, record_id: str) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} was deleted and cannot be saved again")


# API boundary helpers

_HTTP_STATUS = {
    ValidationError: 400,
    ConsistencyError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
    InsufficientBalanceError: 409,
    BalanceVersionConflict: 409,
}


def error_code(exc: BaseException) -> str:
    """Taxonomy name for an exception (InternalError for anything unexpected)"""
    if isinstance(exc, CareLedgerError) and not isinstance(exc, StorageError):
        return exc.code
    return "InternalError"


def http_status_for(exc: BaseException) -> int:
    """Map an exception to the status code the API layer should answer with"""
    for error_type, status in _HTTP_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 500


def error_payload(exc: BaseException) -> dict[str, Any]:
    """
    Build a response body for an exception

    Unexpected errors get a generic message so internals never leak.

    Args:
        exc: Raised exception

    Returns:
        Dict with success flag, error code, message and details
    """
    code = error_code(exc)
    if code == "InternalError":
        return {
            "success": False,
            "error": code,
            "message": "An unexpected error occurred",
            "details": [],
        }

    details: list[dict[str, str]] = []
    if isinstance(exc, ValidationError):
        details = [issue.model_dump() for issue in exc.issues]
    return {"success": False, "error": code, "message": str(exc), "details": details}
