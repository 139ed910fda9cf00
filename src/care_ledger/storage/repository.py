"""
Repository interface consumed by the ledger core

The core never knows how residents, contracts and transactions are stored.
It talks to a LedgerRepository, which must provide:

- lookups that return None for missing ids (the core raises NotFound)
- terminal deletion of funding records (a deleted id never comes back)
- versioned funding writes (optimistic concurrency)
- commit_transition: the transaction status write and the funding balance
  write succeed or fail together
"""

from typing import Protocol

from care_ledger.funding.models import FundingRecord
from care_ledger.residents.models import House, Resident
from care_ledger.transactions.models import (
    TransactionFilters,
    TransactionPage,
    TransactionRecord,
    TransactionSort,
)


class LedgerRepository(Protocol):
    """Storage protocol for residents, houses, funding records and transactions"""

    # Residents & houses

    def get_resident(self, resident_id: str) -> Resident | None: ...

    def save_resident(self, resident: Resident) -> None: ...

    def list_residents(self) -> list[Resident]: ...

    def get_house(self, house_id: str) -> House | None: ...

    def save_house(self, house: House) -> None: ...

    def list_houses(self) -> list[House]: ...

    # Funding records

    def get_funding_record(self, contract_id: str) -> FundingRecord | None: ...

    def list_funding_records(self, resident_id: str | None = None) -> list[FundingRecord]: ...

    def save_funding_record(
        self, record: FundingRecord, expected_version: int | None = None
    ) -> FundingRecord:
        """
        Insert or update a funding record

        With expected_version set, the stored version must match and the
        saved record gets expected_version + 1; otherwise
        BalanceVersionConflict is raised. Saving a deleted id raises
        RecordDeleted.
        """
        ...

    def delete_funding_record(self, contract_id: str) -> bool:
        """Tombstone a funding record; False if it did not exist"""
        ...

    # Transactions

    def get_transaction(self, transaction_id: str) -> TransactionRecord | None: ...

    def save_transaction(self, transaction: TransactionRecord) -> None: ...

    def delete_transaction(self, transaction_id: str) -> bool: ...

    def iter_transactions(
        self, contract_id: str | None = None, resident_id: str | None = None
    ) -> list[TransactionRecord]: ...

    def list_transactions(
        self,
        filters: TransactionFilters | None = None,
        sort: TransactionSort | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> TransactionPage: ...

    # Atomic balance change

    def commit_transition(
        self,
        transaction: TransactionRecord,
        record: FundingRecord,
        expected_version: int,
    ) -> FundingRecord:
        """
        Save a transaction and its contract's new balance as one unit

        Raises:
            BalanceVersionConflict: If the contract changed since it was read
        """
        ...
