"""
Funding Module Commands - Intentions to change funding contracts

Commands carry typed values only. Range, ordering and enum rules are checked
by the funding invariants so that every violation is reported with its field
path in one ValidationError.
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel


class CreateFunding(BaseModel):
    """
    Add a funding contract to a resident

    Requirements:
    - Resident must exist
    - 0 <= amount <= 999999.99 and finite
    - end_date >= start_date, renewal_date > start_date
    """

    resident_id: str
    type: str
    amount: Decimal
    start_date: date
    end_date: date | None = None
    renewal_date: date | None = None
    description: str | None = None
    is_active: bool = True
    drawdown_rate: str = "monthly"
    auto_drawdown: bool = True


class UpdateFunding(BaseModel):
    """
    Partially update a funding contract

    Only fields explicitly set are merged; everything else keeps its prior
    value. Explicitly setting end_date/renewal_date/description to None
    clears them.
    """

    contract_id: str
    type: str | None = None
    amount: Decimal | None = None
    start_date: date | None = None
    end_date: date | None = None
    renewal_date: date | None = None
    description: str | None = None
    is_active: bool | None = None
    drawdown_rate: str | None = None
    auto_drawdown: bool | None = None

    def changes(self) -> dict:
        """Fields the caller actually supplied (contract_id excluded)"""
        return self.model_dump(exclude_unset=True, exclude={"contract_id"})


class DeleteFunding(BaseModel):
    """Delete a funding contract (terminal)"""

    contract_id: str
