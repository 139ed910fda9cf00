"""
Posting Examples - Walkthroughs of the contract balance engine

This example demonstrates:
- Registering a resident and funding contracts
- Drafting, previewing, posting and voiding transactions
- Overdraft protection and the amount override audit trail
- Bulk posting with per-item results
- Balance summaries and reconciliation
"""

import tempfile
from datetime import date
from pathlib import Path

from care_ledger import CareLedger
from care_ledger.kernel.errors import InsufficientBalanceError


def example_1_post_and_void():
    """
    Example 1: Post, block an overdraft, void

    Demonstrates:
    - A draft has no balance effect
    - Posting debits the contract
    - A post that would overdraw is refused with the preview numbers
    - Voiding credits the contract back
    """
    print("\n=== Example 1: Post and Void ===\n")

    with tempfile.TemporaryDirectory() as tmpdir:
        ledger = CareLedger(sqlite_path=Path(tmpdir) / "example1.db")

        house = ledger.register_house("Banksia House")
        resident = ledger.register_resident("Ada", "Lovelace", house_id=house.id)
        contract = ledger.add_funding(
            resident.id, "NDIS", "1000.00", date(2025, 1, 1), end_date=date(2025, 12, 31)
        )
        print(f"Contract {contract.id}: ${contract.current_balance}")

        support = ledger.create_transaction(
            resident.id, contract.id, date(2025, 1, 6), "CORE_SUPPORT", "2", "150.00"
        )
        print(f"Draft {support.id}: ${support.amount} (2 x $150.00)")

        ledger.post_transaction(support.id)
        print(f"Posted -> balance ${ledger.get_funding(contract.id).current_balance}")

        equipment = ledger.create_transaction(
            resident.id, contract.id, date(2025, 1, 8), "EQUIPMENT", "1", "800.00"
        )
        preview = ledger.preview_transaction(equipment.id)
        print(f"Preview: can post = {preview.can_post}, {preview.warning_message}")

        try:
            ledger.post_transaction(equipment.id)
        except InsufficientBalanceError as e:
            print(f"Blocked: {e}")

        ledger.void_transaction(support.id, reason="duplicate")
        print(f"Voided -> balance ${ledger.get_funding(contract.id).current_balance}")


def example_2_overrides_and_bulk():
    """
    Example 2: Amount overrides and bulk posting

    Demonstrates:
    - An explicit amount overrides quantity x unit price and is recorded
    - Bulk post keeps going past failing items
    """
    print("\n=== Example 2: Overrides and Bulk Posting ===\n")

    ledger = CareLedger()
    resident = ledger.register_resident("Grace", "Hopper")
    contract = ledger.add_funding(resident.id, "Family", "500.00", date(2025, 1, 1))

    discounted = ledger.create_transaction(
        resident.id, contract.id, date(2025, 2, 3), "THERAPY", "2", "120.00",
        amount="200.00", note="Provider discount",
    )
    print(
        f"Override: ${discounted.amount} instead of ${discounted.computed_amount} "
        f"(difference {discounted.override_difference})"
    )

    ids = [discounted.id]
    for day, price in ((4, "90.00"), (5, "400.00"), (6, "60.00")):
        txn = ledger.create_transaction(
            resident.id, contract.id, date(2025, 2, day), "TRANSPORT", "1", price
        )
        ids.append(txn.id)

    result = ledger.bulk_operation("post", ids)
    print(f"Bulk post: {result.processed} processed, {result.failed} failed")
    for error in result.errors:
        print(f"  {error.transaction_id}: {error.error} - {error.message}")


def example_3_summary_and_reconcile():
    """
    Example 3: Balance summary and reconciliation

    Demonstrates:
    - Per-resident totals across active contracts
    - Reconciling a stored balance against the ledger
    """
    print("\n=== Example 3: Summary and Reconciliation ===\n")

    ledger = CareLedger()
    resident = ledger.register_resident("Alan", "Turing")
    ndis = ledger.add_funding(resident.id, "NDIS", "2000.00", date(2025, 1, 1))
    private = ledger.add_funding(resident.id, "Private", "300.00", date(2025, 1, 1))

    for contract, service, price in (
        (ndis, "SIL_SUPPORT", "640.00"),
        (private, "RESPITE", "120.00"),
    ):
        txn = ledger.create_transaction(
            resident.id, contract.id, date.today(), service, "1", price
        )
        ledger.post_transaction(txn.id)

    summary = ledger.resident_balance_summary(resident.id)
    print(f"Allocated ${summary.total_allocated}, spent ${summary.total_spent}")
    for line in summary.active_contracts:
        print(f"  {line.type}: ${line.current_balance} of ${line.original_amount}")

    record = ledger.reconcile_contract(ndis.id)
    print(f"Reconciled {record.id}: ${record.current_balance} matches its ledger")


if __name__ == "__main__":
    example_1_post_and_void()
    example_2_overrides_and_bulk()
    example_3_summary_and_reconcile()
