"""
Transaction Domain Models - Billable events drawn against contracts

A transaction records one service delivered to a resident and billed to one
of the resident's funding contracts. It starts as an inert draft, is posted
to debit the contract, and may later be voided to credit it back.

Lifecycle:
    draft → posted → voided

Nothing ever returns to draft, and voided is terminal.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, Field
from sqlmodel import SQLModel

CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    """Round a decimal to cents, half-up"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_amount(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """Default transaction amount: quantity x unit price, in cents"""
    return to_money(quantity * unit_price)


class TransactionStatus(str, Enum):
    """
    Transaction lifecycle states

    Only POSTED transactions affect a contract's balance.
    """

    DRAFT = "draft"  # Inert, editable, deletable
    POSTED = "posted"  # Debits the contract
    VOIDED = "voided"  # Reversed, terminal


class TransactionRecord(BaseModel):
    """
    One billable event against a funding contract

    Attributes:
        id: Unique identifier
        resident_id: Resident the service was delivered to (immutable)
        contract_id: Contract the service is billed to (immutable)
        occurred_at: Day the service happened
        service_code: Catalogue code of the service
        description: Optional free text
        quantity: Units delivered (> 0)
        unit_price: Price per unit (>= 0)
        amount: Billed amount (>= 0)
        computed_amount: quantity x unit_price at the time amount was set
        amount_overridden: True when amount was supplied explicitly and
            differs from computed_amount
        status: Lifecycle state
        note: Optional internal note
        created_at/created_by: Set once at creation
        posted_at/posted_by/posted_request_id: Set once on post
        voided_at/voided_by/void_reason/voided_request_id: Set once on void
    """

    id: str
    resident_id: str
    contract_id: str
    occurred_at: date
    service_code: str
    description: str | None = None
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    amount: Decimal = Field(ge=0)
    computed_amount: Decimal = Field(ge=0)
    amount_overridden: bool = False
    status: TransactionStatus = TransactionStatus.DRAFT
    note: str | None = None
    created_at: datetime
    created_by: str
    posted_at: datetime | None = None
    posted_by: str | None = None
    posted_request_id: str | None = None
    voided_at: datetime | None = None
    voided_by: str | None = None
    void_reason: str | None = None
    voided_request_id: str | None = None

    def is_draft(self) -> bool:
        return self.status == TransactionStatus.DRAFT

    def is_posted(self) -> bool:
        return self.status == TransactionStatus.POSTED

    def is_voided(self) -> bool:
        return self.status == TransactionStatus.VOIDED

    @property
    def override_difference(self) -> Decimal:
        """How far an explicit amount diverges from quantity x unit price"""
        return self.amount - self.computed_amount


class BalancePreview(BaseModel):
    """
    Non-committing view of what posting an amount would do to a contract

    Used both before a post (server side) and while a user edits a draft
    (live form preview).
    """

    current_balance: Decimal
    transaction_amount: Decimal
    remaining_after_post: Decimal
    can_post: bool
    warning_message: str | None = None


# Bulk operations


class BulkAction(str, Enum):
    POST = "post"
    VOID = "void"


class BulkError(BaseModel):
    """One failed item of a bulk operation"""

    transaction_id: str
    error: str  # taxonomy name, e.g. "InvalidStateError"
    message: str


class BulkOperationResult(BaseModel):
    """
    Outcome of a bulk post/void

    Items are independent: one failure never aborts the others.
    """

    success: bool
    processed: int = Field(ge=0)
    failed: int = Field(ge=0)
    errors: list[BulkError] = Field(default_factory=list)
    transactions: list[TransactionRecord] = Field(default_factory=list)


# Listing


class DateRange(BaseModel):
    """Inclusive occurred_at range; either bound may be open"""

    start: date | None = None
    end: date | None = None

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True


class TransactionFilters(BaseModel):
    """
    Conjunctive transaction filters

    Every supplied filter must match; None imposes no constraint.
    """

    date_range: DateRange | None = None
    resident_ids: list[str] | None = None
    contract_ids: list[str] | None = None
    house_ids: list[str] | None = None
    statuses: list[TransactionStatus] | None = None
    service_code: str | None = None
    search: str | None = None


class SortField(str, Enum):
    """Sortable fields - raw transaction fields plus three joined ones"""

    OCCURRED_AT = "occurred_at"
    AMOUNT = "amount"
    STATUS = "status"
    SERVICE_CODE = "service_code"
    CREATED_AT = "created_at"
    QUANTITY = "quantity"
    UNIT_PRICE = "unit_price"
    POSTED_AT = "posted_at"
    ID = "id"
    RESIDENT_NAME = "resident_name"
    HOUSE_NAME = "house_name"
    CONTRACT_TYPE = "contract_type"

    def is_derived(self) -> bool:
        return self in (SortField.RESIDENT_NAME, SortField.HOUSE_NAME, SortField.CONTRACT_TYPE)


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class TransactionSort(BaseModel):
    field: SortField = SortField.OCCURRED_AT
    direction: SortDirection = SortDirection.DESC


class TransactionPage(BaseModel):
    """One page of a filtered, sorted transaction listing"""

    transactions: list[TransactionRecord]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)
    has_more: bool


# Read models (for read-side queries)


class ContractBalanceLine(SQLModel):
    contract_id: str
    type: str
    original_amount: Decimal
    current_balance: Decimal
    recent_transaction_count: int


class ResidentBalanceSummary(SQLModel):
    """Balance overview of a resident's active contracts"""

    resident_id: str
    active_contracts: list[ContractBalanceLine]
    total_allocated: Decimal
    total_remaining: Decimal
    total_spent: Decimal


class RecentTransactionsSummary(SQLModel):
    resident_id: str
    transactions: list[TransactionRecord]
    total_count: int
    has_more: bool
