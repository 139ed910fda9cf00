"""
Transaction Module Commands - Intentions to change transaction state

Commands carry typed values; business rules (positive quantity, known
service code, text bounds, resident/contract consistency) live in the
transaction invariants.
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from care_ledger.transactions.models import BulkAction


class CreateTransaction(BaseModel):
    """
    Create a draft transaction

    amount is optional: when absent it is quantity x unit_price; when given
    it overrides the product and the divergence is recorded.
    """

    resident_id: str
    contract_id: str
    occurred_at: date
    service_code: str
    description: str | None = None
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal | None = None
    note: str | None = None


class UpdateTransaction(BaseModel):
    """
    Edit a draft transaction

    resident_id and contract_id are immutable and therefore absent. Only
    explicitly set fields are applied.
    """

    transaction_id: str
    occurred_at: date | None = None
    service_code: str | None = None
    description: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    amount: Decimal | None = None
    note: str | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={"transaction_id"})


class PostTransaction(BaseModel):
    """
    Post a draft transaction (draft → posted)

    force only has an effect when the ledger policy allows overdraft
    override. request_id makes a retried post return the original result.
    """

    transaction_id: str
    force: bool = False
    request_id: str | None = None


class VoidTransaction(BaseModel):
    """Void a posted transaction (posted → voided)"""

    transaction_id: str
    reason: str | None = None
    request_id: str | None = None


class BulkTransactionOperation(BaseModel):
    """
    Apply post or void to many transactions

    reason is required for void and applied to every voided transaction.
    """

    transaction_ids: list[str] = Field(default_factory=list)
    action: BulkAction
    reason: str | None = None
