"""
Funding Domain Models - Contracts that residents draw down

A funding record (contract) is an allocation of money to one resident from
one funding source. Transactions posted against it consume its balance;
voids give it back.

Key concepts:
- current_balance always equals amount minus the posted transaction total
- contract_status is derived from the active flag and the contract dates
- version increases on every write and backs optimistic concurrency
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class FundingType(str, Enum):
    """Source of the money behind a contract"""

    NDIS = "NDIS"
    GOVERNMENT = "Government"
    PRIVATE = "Private"
    FAMILY = "Family"
    OTHER = "Other"


class DrawdownRate(str, Enum):
    """Schedule at which a contract's balance is consumed"""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ContractStatus(str, Enum):
    """
    Derived contract category

    INACTIVE wins over everything (the contract was switched off);
    otherwise the dates decide between PENDING, ACTIVE and EXPIRED.
    """

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    PENDING = "Pending"  # start_date still in the future
    EXPIRED = "Expired"  # end_date already passed


def derive_contract_status(
    is_active: bool, start_date: date, end_date: date | None, today: date
) -> ContractStatus:
    """Compute the contract status for a given day"""
    if not is_active:
        return ContractStatus.INACTIVE
    if end_date is not None and end_date < today:
        return ContractStatus.EXPIRED
    if start_date > today:
        return ContractStatus.PENDING
    return ContractStatus.ACTIVE


class FundingRecord(BaseModel):
    """
    One funding contract on a resident

    Invariants enforced:
    - 0 <= amount <= policy maximum
    - end_date absent or >= start_date
    - renewal_date absent or > start_date
    - current_balance == amount - sum(posted transaction amounts)

    Attributes:
        id: Unique identifier
        resident_id: Owning resident (immutable)
        type: Funding source
        amount: Original contract value
        start_date: First day of the contract
        end_date: Last day of the contract (open-ended if None)
        renewal_date: When the contract is due for renewal
        description: Free-text description
        is_active: Whether the contract may be posted against
        drawdown_rate: Consumption schedule
        auto_drawdown: Whether drawdown happens automatically
        current_balance: Remaining balance
        contract_status: Derived category
        version: Write counter for optimistic concurrency
    """

    id: str
    resident_id: str
    type: FundingType
    amount: Decimal = Field(ge=0)
    start_date: date
    end_date: date | None = None
    renewal_date: date | None = None
    description: str | None = None
    is_active: bool = True
    drawdown_rate: DrawdownRate = DrawdownRate.MONTHLY
    auto_drawdown: bool = True
    current_balance: Decimal
    contract_status: ContractStatus = ContractStatus.ACTIVE
    version: int = Field(default=1, ge=1)
    created_at: datetime
    updated_at: datetime

    def posted_total(self) -> Decimal:
        """Amount already consumed by posted transactions"""
        return self.amount - self.current_balance

    def status_on(self, today: date) -> ContractStatus:
        return derive_contract_status(self.is_active, self.start_date, self.end_date, today)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": "fund-0001",
                    "resident_id": "res-0001",
                    "type": "NDIS",
                    "amount": "1000.00",
                    "start_date": "2024-01-01",
                    "end_date": "2024-12-31",
                    "renewal_date": None,
                    "description": "Core supports plan",
                    "is_active": True,
                    "drawdown_rate": "monthly",
                    "auto_drawdown": True,
                    "current_balance": "700.00",
                    "contract_status": "Active",
                    "version": 3,
                    "created_at": "2024-01-01T09:00:00Z",
                    "updated_at": "2024-02-01T09:00:00Z",
                }
            ]
        }
    }
