"""
Funding Module Invariants - Contract validation

Pure functions that check funding payloads. Each check returns the issues it
found instead of raising on the first one, so a caller learns about every
bad field in a single round trip. The public validate_* entry points raise
one ValidationError carrying all issues.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from care_ledger.funding.commands import CreateFunding, UpdateFunding
from care_ledger.funding.models import DrawdownRate, FundingRecord, FundingType
from care_ledger.kernel.errors import FieldIssue, ValidationError, field_path
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.transactions.models import CENT

# Fields an update may not set to None
REQUIRED_FIELDS = {
    "type",
    "amount",
    "start_date",
    "is_active",
    "drawdown_rate",
    "auto_drawdown",
}


def check_amount(amount: Any, policy: LedgerPolicy) -> list[FieldIssue]:
    """Funding amount must be a finite decimal in cents within [0, policy maximum]"""
    if not isinstance(amount, Decimal):
        return [FieldIssue(field="amount", message="Invalid funding amount")]
    if not amount.is_finite():
        return [FieldIssue(field="amount", message="Invalid funding amount")]
    if amount < 0:
        return [FieldIssue(field="amount", message="Funding amount must be positive")]
    if amount > policy.funding_amount_max:
        return [
            FieldIssue(
                field="amount",
                message=f"Funding amount must be no more than {policy.funding_amount_max}",
            )
        ]
    if amount != amount.quantize(CENT):
        return [
            FieldIssue(
                field="amount",
                message="Funding amount cannot have more than 2 decimal places",
            )
        ]
    return []


def check_dates(
    start_date: date, end_date: date | None, renewal_date: date | None
) -> list[FieldIssue]:
    """end_date may equal start_date; renewal_date must be strictly later"""
    issues: list[FieldIssue] = []
    if end_date is not None and end_date < start_date:
        issues.append(FieldIssue(field="endDate", message="End date must be after start date"))
    if renewal_date is not None and renewal_date <= start_date:
        issues.append(
            FieldIssue(field="renewalDate", message="Renewal date must be after start date")
        )
    return issues


def check_enums(data: dict[str, Any]) -> list[FieldIssue]:
    issues: list[FieldIssue] = []
    if "type" in data:
        try:
            FundingType(data["type"])
        except ValueError:
            allowed = ", ".join(t.value for t in FundingType)
            issues.append(FieldIssue(field="type", message=f"Funding type must be one of {allowed}"))
    if "drawdown_rate" in data:
        try:
            DrawdownRate(data["drawdown_rate"])
        except ValueError:
            allowed = ", ".join(r.value for r in DrawdownRate)
            issues.append(
                FieldIssue(field="drawdownRate", message=f"Drawdown rate must be one of {allowed}")
            )
    return issues


def check_description(description: str | None, policy: LedgerPolicy) -> list[FieldIssue]:
    limit = policy.funding_description_max_length
    if description is not None and len(description) > limit:
        return [
            FieldIssue(
                field="description",
                message=f"Description must be no more than {limit} characters",
            )
        ]
    return []


def validate_funding_fields(data: dict[str, Any], policy: LedgerPolicy) -> list[FieldIssue]:
    """
    Collect every violation in a complete funding payload

    Args:
        data: Funding fields (type, amount, dates, description, drawdown_rate)
        policy: Ledger policy supplying limits

    Returns:
        List of issues (empty when valid)
    """
    issues = check_enums(data)
    issues += check_amount(data.get("amount"), policy)
    issues += check_dates(data["start_date"], data.get("end_date"), data.get("renewal_date"))
    issues += check_description(data.get("description"), policy)
    return issues


def _normalize_description(data: dict[str, Any]) -> None:
    # An empty description means "no description"
    if data.get("description") == "":
        data["description"] = None


def validate_funding_create(command: CreateFunding, policy: LedgerPolicy) -> dict[str, Any]:
    """
    Validate a funding creation payload

    Args:
        command: CreateFunding command
        policy: Ledger policy

    Returns:
        Normalized field dict ready to build a FundingRecord

    Raises:
        ValidationError: With every offending field
    """
    data = command.model_dump(exclude={"resident_id"})
    _normalize_description(data)

    issues = validate_funding_fields(data, policy)
    if issues:
        raise ValidationError(issues)

    data["type"] = FundingType(data["type"])
    data["drawdown_rate"] = DrawdownRate(data["drawdown_rate"])
    return data


def merge_funding_update(
    record: FundingRecord,
    command: UpdateFunding,
    policy: LedgerPolicy,
    posted_total: Decimal,
) -> dict[str, Any]:
    """
    Merge a partial update onto a contract and validate the result

    Only supplied fields are merged. The merged whole is validated, so a
    change to start_date is checked against the stored end_date. Nothing is
    applied if any issue is found.

    Args:
        record: Current funding record
        command: Partial update
        policy: Ledger policy
        posted_total: Sum of posted transaction amounts on this contract

    Returns:
        Merged field dict (type/drawdown_rate converted to enums)

    Raises:
        ValidationError: If any supplied or merged value is invalid
    """
    changes = command.changes()
    _normalize_description(changes)

    issues = [
        FieldIssue(field=field_path(name), message="Field cannot be cleared")
        for name, value in changes.items()
        if name in REQUIRED_FIELDS and value is None
    ]
    if issues:
        raise ValidationError(issues)

    merged = record.model_dump(
        include={
            "type",
            "amount",
            "start_date",
            "end_date",
            "renewal_date",
            "description",
            "is_active",
            "drawdown_rate",
            "auto_drawdown",
        }
    )
    merged.update(changes)

    issues = validate_funding_fields(merged, policy)
    if not issues and merged["amount"] < posted_total:
        issues.append(
            FieldIssue(
                field="amount",
                message=(
                    f"Funding amount {merged['amount']} is below the posted total "
                    f"{posted_total} - void transactions first"
                ),
            )
        )
    if issues:
        raise ValidationError(issues)

    merged["type"] = FundingType(merged["type"])
    merged["drawdown_rate"] = DrawdownRate(merged["drawdown_rate"])
    return merged
