"""
Resident and House lookup entities

The ledger does not manage residents; it only needs to resolve who owns a
contract and to join resident and house names into transaction listings.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class House(BaseModel):
    """A care house residents live in"""

    id: str
    name: str = Field(..., min_length=1, max_length=200)


class Resident(BaseModel):
    """
    A person receiving care

    Attributes:
        id: Unique identifier
        first_name: Given name
        last_name: Family name
        house_id: House the resident lives in (None if unassigned)
        created_at: When the resident was registered
    """

    id: str
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    house_id: str | None = None
    created_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
