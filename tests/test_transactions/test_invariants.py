"""
Tests for Transaction Module Invariants - field rules and lifecycle gates
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from care_ledger.kernel.errors import InvalidTransition, ValidationError
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.transactions.commands import CreateTransaction, UpdateTransaction
from care_ledger.transactions.invariants import (
    validate_can_delete,
    validate_can_post,
    validate_can_void,
    validate_transaction_create,
    validate_transaction_update,
    validate_void_reason,
)
from care_ledger.transactions.models import TransactionRecord, TransactionStatus

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_create(**overrides) -> CreateTransaction:
    fields = {
        "resident_id": "res-1",
        "contract_id": "fund-1",
        "occurred_at": date(2025, 1, 10),
        "service_code": "CORE_SUPPORT",
        "quantity": Decimal("2"),
        "unit_price": Decimal("150"),
    }
    fields.update(overrides)
    return CreateTransaction(**fields)


def make_draft(status: TransactionStatus = TransactionStatus.DRAFT, **overrides) -> TransactionRecord:
    fields = {
        "id": "txn-1",
        "resident_id": "res-1",
        "contract_id": "fund-1",
        "occurred_at": date(2025, 1, 10),
        "service_code": "CORE_SUPPORT",
        "quantity": Decimal("2"),
        "unit_price": Decimal("150"),
        "amount": Decimal("300.00"),
        "computed_amount": Decimal("300.00"),
        "status": status,
        "created_at": NOW,
        "created_by": "tester",
    }
    fields.update(overrides)
    return TransactionRecord(**fields)


def test_amount_defaults_to_quantity_times_price(policy: LedgerPolicy) -> None:
    data = validate_transaction_create(make_create(), policy)

    assert data["amount"] == Decimal("300.00")
    assert data["computed_amount"] == Decimal("300.00")
    assert data["amount_overridden"] is False


def test_explicit_amount_is_recorded_as_override(policy: LedgerPolicy) -> None:
    data = validate_transaction_create(make_create(amount=Decimal("250.00")), policy)

    assert data["amount"] == Decimal("250.00")
    assert data["computed_amount"] == Decimal("300.00")
    assert data["amount_overridden"] is True


def test_explicit_amount_equal_to_product_is_not_an_override(policy: LedgerPolicy) -> None:
    data = validate_transaction_create(make_create(amount=Decimal("300")), policy)

    assert data["amount_overridden"] is False


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"quantity": Decimal("0")}, "quantity"),
        ({"quantity": Decimal("-1")}, "quantity"),
        ({"unit_price": Decimal("-0.01")}, "unitPrice"),
        ({"amount": Decimal("-1")}, "amount"),
        ({"amount": Decimal("10.001")}, "amount"),
        ({"quantity": Decimal("1e20")}, "quantity"),
        ({"quantity": Decimal("10000.5")}, "quantity"),
        ({"unit_price": Decimal("1e30")}, "unitPrice"),
        ({"unit_price": Decimal("1000000")}, "unitPrice"),
        ({"amount": Decimal("1e27")}, "amount"),
        ({"amount": Decimal("1000000.00")}, "amount"),
        ({"quantity": Decimal("10000"), "unit_price": Decimal("100.01")}, "amount"),
        ({"service_code": ""}, "serviceCode"),
        ({"service_code": "MASSAGE"}, "serviceCode"),
        ({"description": "x" * 501}, "description"),
        ({"note": "x" * 1001}, "note"),
    ],
)
def test_field_rules(overrides: dict, field: str, policy: LedgerPolicy) -> None:
    with pytest.raises(ValidationError) as exc_info:
        validate_transaction_create(make_create(**overrides), policy)

    assert exc_info.value.fields == [field]


def test_zero_unit_price_allowed(policy: LedgerPolicy) -> None:
    data = validate_transaction_create(make_create(unit_price=Decimal("0")), policy)

    assert data["amount"] == Decimal("0.00")


def test_update_changed_quantity_recomputes_and_drops_override(policy: LedgerPolicy) -> None:
    draft = make_draft(amount=Decimal("250.00"), amount_overridden=True)
    command = UpdateTransaction(transaction_id="txn-1", quantity=Decimal("3"))

    data = validate_transaction_update(draft, command, policy)

    assert data["amount"] == Decimal("450.00")
    assert data["amount_overridden"] is False


def test_update_with_oversized_values_reports_fields(policy: LedgerPolicy) -> None:
    command = UpdateTransaction(
        transaction_id="txn-1", unit_price=Decimal("1e10"), amount=Decimal("1e27")
    )

    with pytest.raises(ValidationError) as exc_info:
        validate_transaction_update(make_draft(), command, policy)

    assert exc_info.value.fields == ["unitPrice", "amount"]


def test_update_other_field_keeps_override(policy: LedgerPolicy) -> None:
    draft = make_draft(amount=Decimal("250.00"), amount_overridden=True)
    command = UpdateTransaction(transaction_id="txn-1", description="Weekly support")

    data = validate_transaction_update(draft, command, policy)

    assert data["amount"] == Decimal("250.00")
    assert data["amount_overridden"] is True
    assert data["description"] == "Weekly support"


def test_update_clearing_amount_restores_product(policy: LedgerPolicy) -> None:
    draft = make_draft(amount=Decimal("250.00"), amount_overridden=True)
    command = UpdateTransaction(transaction_id="txn-1", amount=None)

    data = validate_transaction_update(draft, command, policy)

    assert data["amount"] == Decimal("300.00")
    assert data["amount_overridden"] is False


def test_update_cannot_clear_required_fields(policy: LedgerPolicy) -> None:
    command = UpdateTransaction(transaction_id="txn-1", service_code=None)

    with pytest.raises(ValidationError) as exc_info:
        validate_transaction_update(make_draft(), command, policy)

    assert exc_info.value.fields == ["serviceCode"]


@pytest.mark.parametrize("status", [TransactionStatus.POSTED, TransactionStatus.VOIDED])
def test_only_drafts_can_be_updated(status: TransactionStatus, policy: LedgerPolicy) -> None:
    command = UpdateTransaction(transaction_id="txn-1", description="late edit")

    with pytest.raises(InvalidTransition):
        validate_transaction_update(make_draft(status), command, policy)


def test_lifecycle_gates() -> None:
    draft = make_draft()
    posted = make_draft(TransactionStatus.POSTED)
    voided = make_draft(TransactionStatus.VOIDED)

    validate_can_post(draft)
    validate_can_delete(draft)
    validate_can_void(posted)

    for record in (posted, voided):
        with pytest.raises(InvalidTransition):
            validate_can_post(record)
        with pytest.raises(InvalidTransition):
            validate_can_delete(record)
    for record in (draft, voided):
        with pytest.raises(InvalidTransition):
            validate_can_void(record)


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_void_reason_required(reason: str | None, policy: LedgerPolicy) -> None:
    with pytest.raises(ValidationError) as exc_info:
        validate_void_reason(reason, policy)

    assert exc_info.value.fields == ["reason"]


def test_void_reason_is_stripped(policy: LedgerPolicy) -> None:
    assert validate_void_reason("  duplicate ", policy) == "duplicate"
