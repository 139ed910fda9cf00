"""
Tests for the error taxonomy and its API mapping

Every error carries a taxonomy code; the API helpers turn exceptions into
status codes and response bodies without leaking internals.
"""

from datetime import date
from decimal import Decimal

import pydantic
import pytest

from care_ledger.funding.commands import CreateFunding
from care_ledger.kernel.errors import (
    BalanceVersionConflict,
    ContractInactive,
    ContractNotFound,
    ContractResidentMismatch,
    FieldIssue,
    InsufficientBalanceError,
    InvalidTransition,
    RecordDeleted,
    ValidationError,
    error_code,
    error_payload,
    field_path,
    http_status_for,
)
from care_ledger.transactions.models import BalancePreview


def test_field_path_converts_snake_case() -> None:
    assert field_path("end_date") == "endDate"
    assert field_path("unit_price") == "unitPrice"
    assert field_path("amount") == "amount"


def test_validation_error_collects_every_issue() -> None:
    """A ValidationError reports all offending fields at once"""
    error = ValidationError(
        [
            FieldIssue(field="amount", message="Funding amount must be positive"),
            FieldIssue(field="endDate", message="End date must be after start date"),
        ]
    )

    assert error.fields == ["amount", "endDate"]
    assert "amount: Funding amount must be positive" in str(error)
    assert "endDate: End date must be after start date" in str(error)


def test_validation_error_from_pydantic_uses_api_paths() -> None:
    with pytest.raises(pydantic.ValidationError) as exc_info:
        CreateFunding(
            resident_id="res-1",
            type="NDIS",
            amount="not-a-number",
            start_date=date(2025, 1, 1),
        )

    error = ValidationError.from_pydantic(exc_info.value)

    assert error.fields == ["amount"]


def test_taxonomy_codes() -> None:
    """Subclasses report the code of their family"""
    assert ValidationError.single("x", "bad").code == "ValidationError"
    assert ContractNotFound("fund-1").code == "NotFoundError"
    assert InvalidTransition("txn-1", "voided", "post").code == "InvalidStateError"
    assert ContractInactive("fund-1").code == "InvalidStateError"
    assert ContractResidentMismatch("fund-1", "res-2", "res-1").code == "ConsistencyError"


def test_error_code_hides_storage_and_unexpected_errors() -> None:
    assert error_code(ContractNotFound("fund-1")) == "NotFoundError"
    assert error_code(BalanceVersionConflict("fund-1", 1, 2)) == "InternalError"
    assert error_code(RecordDeleted("Funding record", "fund-1")) == "InternalError"
    assert error_code(RuntimeError("boom")) == "InternalError"


@pytest.mark.parametrize(
    ("exc", "status"),
    [
        (ValidationError.single("amount", "bad"), 400),
        (ContractResidentMismatch("fund-1", "res-2", "res-1"), 400),
        (ContractNotFound("fund-1"), 404),
        (InvalidTransition("txn-1", "posted", "update"), 409),
        (BalanceVersionConflict("fund-1", 1, 2), 409),
        (RuntimeError("boom"), 500),
    ],
)
def test_http_status_mapping(exc: Exception, status: int) -> None:
    assert http_status_for(exc) == status


def test_insufficient_balance_maps_to_conflict_and_keeps_preview() -> None:
    preview = BalancePreview(
        current_balance=Decimal("700.00"),
        transaction_amount=Decimal("800.00"),
        remaining_after_post=Decimal("-100.00"),
        can_post=False,
        warning_message="Exceeds remaining balance by $100.00",
    )
    error = InsufficientBalanceError("fund-1", preview)

    assert http_status_for(error) == 409
    assert error.preview.remaining_after_post == Decimal("-100.00")
    assert "Exceeds remaining balance by $100.00" in str(error)


def test_error_payload_includes_validation_details() -> None:
    payload = error_payload(ValidationError.single("endDate", "End date must be after start date"))

    assert payload["success"] is False
    assert payload["error"] == "ValidationError"
    assert payload["details"] == [
        {"field": "endDate", "message": "End date must be after start date"}
    ]


def test_error_payload_never_leaks_internal_messages() -> None:
    payload = error_payload(RuntimeError("connection string postgres://secret"))

    assert payload["error"] == "InternalError"
    assert "secret" not in payload["message"]
    assert payload["details"] == []
