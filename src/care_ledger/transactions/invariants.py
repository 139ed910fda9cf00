"""
Transaction Module Invariants - Field rules and lifecycle gates

Two kinds of check live here:

1. Field rules (quantity, unit price, amount override, service code, text
   bounds) - collected into one ValidationError per request
2. Lifecycle gates (draft-only edits, draft → posted, posted → voided) and
   cross-entity rules (contract belongs to resident, contract active)

All functions are pure; the posting workflow loads state and calls them
before it writes anything.
"""

from typing import Any

from care_ledger.funding.models import FundingRecord
from care_ledger.kernel.errors import (
    ContractInactive,
    ContractResidentMismatch,
    FieldIssue,
    InvalidTransition,
    ValidationError,
    field_path,
)
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.transactions.commands import CreateTransaction, UpdateTransaction
from care_ledger.transactions.models import (
    CENT,
    TransactionRecord,
    TransactionStatus,
    compute_amount,
)

# Fields an update may not set to None
REQUIRED_FIELDS = {"occurred_at", "service_code", "quantity", "unit_price"}


def check_transaction_fields(data: dict[str, Any], policy: LedgerPolicy) -> list[FieldIssue]:
    """
    Collect every field-rule violation of a transaction payload

    Args:
        data: quantity, unit_price, service_code, description, note and an
            optional amount override
        policy: Ledger policy supplying limits and the service catalogue

    Returns:
        List of issues (empty when valid)
    """
    issues: list[FieldIssue] = []
    money_max = policy.transaction_amount_max

    quantity = data["quantity"]
    if not quantity.is_finite() or quantity <= 0:
        issues.append(FieldIssue(field="quantity", message="Quantity must be positive"))
    elif quantity > policy.transaction_quantity_max:
        issues.append(
            FieldIssue(
                field="quantity",
                message=f"Quantity must be no more than {policy.transaction_quantity_max}",
            )
        )

    unit_price = data["unit_price"]
    if not unit_price.is_finite() or unit_price < 0:
        issues.append(FieldIssue(field="unitPrice", message="Unit price must be non-negative"))
    elif unit_price > money_max:
        issues.append(
            FieldIssue(field="unitPrice", message=f"Unit price must be no more than {money_max}")
        )

    # Bounds come before quantize: Decimal cannot round numbers past its precision
    amount = data.get("amount")
    if amount is not None:
        if not amount.is_finite() or amount < 0:
            issues.append(FieldIssue(field="amount", message="Amount must be non-negative"))
        elif amount > money_max:
            issues.append(
                FieldIssue(field="amount", message=f"Amount must be no more than {money_max}")
            )
        elif amount != amount.quantize(CENT):
            issues.append(
                FieldIssue(field="amount", message="Amount cannot have more than 2 decimal places")
            )
    elif not issues and compute_amount(quantity, unit_price) > money_max:
        issues.append(
            FieldIssue(
                field="amount",
                message=f"Quantity x unit price must be no more than {money_max}",
            )
        )

    service_code = (data.get("service_code") or "").strip()
    if not service_code:
        issues.append(FieldIssue(field="serviceCode", message="Service code is required"))
    elif not policy.is_known_service_code(service_code):
        issues.append(
            FieldIssue(field="serviceCode", message=f"Unknown service code {service_code}")
        )

    description = data.get("description")
    if description is not None and len(description) > policy.transaction_description_max_length:
        issues.append(
            FieldIssue(
                field="description",
                message=(
                    "Description must be no more than "
                    f"{policy.transaction_description_max_length} characters"
                ),
            )
        )

    note = data.get("note")
    if note is not None and len(note) > policy.transaction_note_max_length:
        issues.append(
            FieldIssue(
                field="note",
                message=f"Note must be no more than {policy.transaction_note_max_length} characters",
            )
        )

    return issues


def resolve_amount(data: dict[str, Any]) -> dict[str, Any]:
    """
    Fill amount, computed_amount and amount_overridden

    An explicit amount wins over quantity x unit_price; it is flagged as an
    override only when it actually differs.
    """
    computed = compute_amount(data["quantity"], data["unit_price"])
    override = data.get("amount")
    data["computed_amount"] = computed
    data["amount"] = computed if override is None else override
    data["amount_overridden"] = override is not None and override != computed
    return data


def validate_transaction_create(
    command: CreateTransaction, policy: LedgerPolicy
) -> dict[str, Any]:
    """
    Validate the field rules of a new transaction

    Resident/contract resolution happens in the workflow; this checks
    values only.

    Returns:
        Normalized fields with amount resolved

    Raises:
        ValidationError: With every offending field
    """
    data = command.model_dump(exclude={"resident_id", "contract_id"})
    data["service_code"] = (data["service_code"] or "").strip()

    issues = check_transaction_fields(data, policy)
    if issues:
        raise ValidationError(issues)
    return resolve_amount(data)


def validate_transaction_update(
    record: TransactionRecord, command: UpdateTransaction, policy: LedgerPolicy
) -> dict[str, Any]:
    """
    Merge an edit onto a draft and validate it with the create rules

    Amount handling:
    - amount supplied → it becomes the (possibly overriding) amount
    - amount explicitly set to None → override dropped, amount recomputed
    - quantity or unit_price changed → amount recomputed, override dropped
    - otherwise an existing override is kept

    Raises:
        InvalidTransition: If the transaction is not a draft
        ValidationError: With every offending field
    """
    if not record.is_draft():
        raise InvalidTransition(record.id, record.status.value, "update")

    changes = command.changes()
    cleared = [
        FieldIssue(field=field_path(name), message="Field cannot be cleared")
        for name, value in changes.items()
        if name in REQUIRED_FIELDS and value is None
    ]
    if cleared:
        raise ValidationError(cleared)

    merged = record.model_dump(
        include={"occurred_at", "service_code", "description", "quantity", "unit_price", "note"}
    )
    merged.update({k: v for k, v in changes.items() if k != "amount"})
    if "service_code" in changes:
        merged["service_code"] = merged["service_code"].strip()

    if "amount" in changes:
        merged["amount"] = changes["amount"]
    elif "quantity" in changes or "unit_price" in changes:
        merged["amount"] = None
    else:
        merged["amount"] = record.amount if record.amount_overridden else None

    issues = check_transaction_fields(merged, policy)
    if issues:
        raise ValidationError(issues)
    return resolve_amount(merged)


def validate_contract_owner(record: FundingRecord, resident_id: str) -> None:
    """
    Verify a contract belongs to the resident it is referenced through

    Raises:
        ContractResidentMismatch: If owned by someone else
    """
    if record.resident_id != resident_id:
        raise ContractResidentMismatch(record.id, resident_id, record.resident_id)


def validate_contract_active(record: FundingRecord) -> None:
    """
    Verify a contract accepts postings

    Raises:
        ContractInactive: If the contract was switched off
    """
    if not record.is_active:
        raise ContractInactive(record.id)


def validate_can_post(record: TransactionRecord) -> None:
    """Only drafts can be posted"""
    if record.status != TransactionStatus.DRAFT:
        raise InvalidTransition(record.id, record.status.value, "post")


def validate_can_void(record: TransactionRecord) -> None:
    """Only posted transactions can be voided (drafts are deleted instead)"""
    if record.status != TransactionStatus.POSTED:
        raise InvalidTransition(record.id, record.status.value, "void")


def validate_can_delete(record: TransactionRecord) -> None:
    """Only drafts can be deleted"""
    if record.status != TransactionStatus.DRAFT:
        raise InvalidTransition(record.id, record.status.value, "delete")


def validate_void_reason(reason: str | None, policy: LedgerPolicy) -> str:
    """
    A void needs a non-empty reason

    Returns:
        The stripped reason

    Raises:
        ValidationError: If missing, blank or too long
    """
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError.single("reason", "Void reason is required")
    if len(cleaned) > policy.void_reason_max_length:
        raise ValidationError.single(
            "reason",
            f"Void reason must be no more than {policy.void_reason_max_length} characters",
        )
    return cleaned
