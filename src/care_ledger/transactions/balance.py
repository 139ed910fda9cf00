"""
Balance Calculator - Pure balance arithmetic

Nothing here touches storage or mutates a record. The posting workflow
recomputes a contract's balance from its ledger of transactions and asks for
a preview before every post; the same preview serves the live form while a
user edits a draft.

Fun fact: The word "balance" comes from the Latin bilanx, "having two
scales" - which is exactly what amount minus posted total is.
"""

from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal

from care_ledger.funding.models import FundingRecord
from care_ledger.transactions.models import (
    BalancePreview,
    ContractBalanceLine,
    ResidentBalanceSummary,
    TransactionRecord,
    TransactionStatus,
    to_money,
)

ZERO = Decimal("0")


def posted_total(contract_id: str, transactions: Iterable[TransactionRecord]) -> Decimal:
    """Sum of amounts of the contract's currently posted transactions"""
    return sum(
        (t.amount for t in transactions if t.contract_id == contract_id and t.is_posted()),
        ZERO,
    )


def compute_balance(record: FundingRecord, transactions: Iterable[TransactionRecord]) -> Decimal:
    """
    Recompute a contract's balance from its ledger

    Drafts and voided transactions do not count; only posted ones debit.

    Args:
        record: Funding record
        transactions: Transactions (any contract; others are ignored)

    Returns:
        amount - sum(posted amounts)
    """
    return record.amount - posted_total(record.id, transactions)


def preview_posting(
    record: FundingRecord,
    amount: Decimal,
    current_balance: Decimal | None = None,
) -> BalancePreview:
    """
    Preview the effect of posting an amount against a contract

    Idempotent: identical inputs give identical previews, and the record is
    never modified.

    Args:
        record: Contract to post against
        amount: Prospective transaction amount
        current_balance: Balance to preview against (defaults to the
            record's stored balance; the workflow passes a recomputed one)

    Returns:
        BalancePreview with can_post and, when blocked, a warning
    """
    balance = record.current_balance if current_balance is None else current_balance
    remaining = balance - amount
    can_post = amount == ZERO or remaining >= ZERO

    warning = None
    if not can_post:
        overdraft = to_money(-remaining)
        if balance <= ZERO:
            warning = f"Contract has no remaining balance (exceeds by ${overdraft})"
        else:
            warning = f"Exceeds remaining balance by ${overdraft}"

    return BalancePreview(
        current_balance=balance,
        transaction_amount=amount,
        remaining_after_post=remaining,
        can_post=can_post,
        warning_message=warning,
    )


def summarize_resident(
    resident_id: str,
    records: Iterable[FundingRecord],
    transactions: Iterable[TransactionRecord],
    today: date,
    window_days: int = 30,
) -> ResidentBalanceSummary:
    """
    Balance overview of a resident's active contracts

    Args:
        resident_id: Resident to summarize
        records: The resident's funding records
        transactions: The resident's transactions
        today: Reference day for the "recent" window
        window_days: Length of the recent window

    Returns:
        ResidentBalanceSummary with per-contract lines and totals
    """
    since = today - timedelta(days=window_days)
    transactions = list(transactions)

    lines: list[ContractBalanceLine] = []
    for record in records:
        if not record.is_active:
            continue
        recent = sum(
            1
            for t in transactions
            if t.contract_id == record.id
            and t.status != TransactionStatus.VOIDED
            and t.occurred_at >= since
        )
        lines.append(
            ContractBalanceLine(
                contract_id=record.id,
                type=record.type.value,
                original_amount=record.amount,
                current_balance=record.current_balance,
                recent_transaction_count=recent,
            )
        )

    total_allocated = sum((line.original_amount for line in lines), ZERO)
    total_remaining = sum((line.current_balance for line in lines), ZERO)
    return ResidentBalanceSummary(
        resident_id=resident_id,
        active_contracts=lines,
        total_allocated=total_allocated,
        total_remaining=total_remaining,
        total_spent=total_allocated - total_remaining,
    )
