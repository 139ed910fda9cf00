"""
Tests for the Balance Calculator - pure arithmetic, no storage
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from care_ledger.funding.models import FundingRecord, FundingType
from care_ledger.transactions.balance import (
    compute_balance,
    posted_total,
    preview_posting,
    summarize_resident,
)
from care_ledger.transactions.models import (
    TransactionRecord,
    TransactionStatus,
    compute_amount,
    to_money,
)

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_record(
    amount: str = "1000.00", balance: str | None = None, **overrides
) -> FundingRecord:
    fields = {
        "id": "fund-1",
        "resident_id": "res-1",
        "type": FundingType.NDIS,
        "amount": Decimal(amount),
        "start_date": date(2025, 1, 1),
        "current_balance": Decimal(balance if balance is not None else amount),
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return FundingRecord(**fields)


def make_txn(
    txn_id: str,
    amount: str,
    status: TransactionStatus,
    contract_id: str = "fund-1",
    occurred_at: date = date(2025, 1, 10),
) -> TransactionRecord:
    return TransactionRecord(
        id=txn_id,
        resident_id="res-1",
        contract_id=contract_id,
        occurred_at=occurred_at,
        service_code="CORE_SUPPORT",
        quantity=Decimal("1"),
        unit_price=Decimal(amount),
        amount=Decimal(amount),
        computed_amount=Decimal(amount),
        status=status,
        created_at=NOW,
        created_by="tester",
    )


def test_compute_amount_rounds_half_up() -> None:
    assert compute_amount(Decimal("2"), Decimal("150")) == Decimal("300.00")
    assert compute_amount(Decimal("1.5"), Decimal("10.01")) == Decimal("15.02")  # 15.015
    assert to_money(Decimal("0.005")) == Decimal("0.01")


def test_only_posted_transactions_count() -> None:
    txns = [
        make_txn("t1", "300.00", TransactionStatus.POSTED),
        make_txn("t2", "50.00", TransactionStatus.DRAFT),
        make_txn("t3", "80.00", TransactionStatus.VOIDED),
        make_txn("t4", "20.00", TransactionStatus.POSTED, contract_id="fund-2"),
    ]

    assert posted_total("fund-1", txns) == Decimal("300.00")
    assert compute_balance(make_record(), txns) == Decimal("700.00")


def test_preview_within_balance() -> None:
    preview = preview_posting(make_record(), Decimal("300.00"))

    assert preview.current_balance == Decimal("1000.00")
    assert preview.remaining_after_post == Decimal("700.00")
    assert preview.can_post is True
    assert preview.warning_message is None


def test_preview_exact_balance_is_postable() -> None:
    preview = preview_posting(make_record(balance="300.00"), Decimal("300.00"))

    assert preview.remaining_after_post == Decimal("0.00")
    assert preview.can_post is True


def test_preview_exceeding_balance() -> None:
    preview = preview_posting(make_record(balance="700.00"), Decimal("800.00"))

    assert preview.can_post is False
    assert preview.remaining_after_post == Decimal("-100.00")
    assert preview.warning_message == "Exceeds remaining balance by $100.00"


def test_preview_against_empty_contract() -> None:
    preview = preview_posting(make_record(balance="0.00"), Decimal("25"))

    assert preview.can_post is False
    assert preview.warning_message == "Contract has no remaining balance (exceeds by $25.00)"


def test_zero_amount_always_postable() -> None:
    preview = preview_posting(make_record(balance="0.00"), Decimal("0"))

    assert preview.can_post is True


def test_preview_uses_supplied_balance() -> None:
    preview = preview_posting(make_record(balance="1000.00"), Decimal("300"), Decimal("200"))

    assert preview.current_balance == Decimal("200")
    assert preview.can_post is False


@pytest.mark.parametrize("amount", ["0", "1", "999.99", "1000", "1000.01", "5000"])
def test_preview_is_idempotent_and_pure(amount: str) -> None:
    record = make_record(balance="1000.00")
    before = record.model_copy(deep=True)

    first = preview_posting(record, Decimal(amount))
    second = preview_posting(record, Decimal(amount))

    assert first == second
    assert record == before


def test_summarize_resident() -> None:
    active = make_record(amount="1000.00", balance="700.00")
    inactive = make_record(id="fund-2", amount="500.00", is_active=False)
    txns = [
        make_txn("t1", "300.00", TransactionStatus.POSTED),
        make_txn("t2", "40.00", TransactionStatus.DRAFT, occurred_at=date(2024, 11, 1)),
        make_txn("t3", "60.00", TransactionStatus.VOIDED),
    ]

    summary = summarize_resident("res-1", [active, inactive], txns, date(2025, 1, 15))

    assert [line.contract_id for line in summary.active_contracts] == ["fund-1"]
    assert summary.active_contracts[0].recent_transaction_count == 1
    assert summary.total_allocated == Decimal("1000.00")
    assert summary.total_remaining == Decimal("700.00")
    assert summary.total_spent == Decimal("300.00")
