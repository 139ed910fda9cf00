"""
In-memory repository

Dict-backed LedgerRepository for tests and embedding. Records are copied on
the way in and out so callers can never mutate stored state by accident.
One internal lock makes every method, and commit_transition in particular,
atomic.
"""

import threading

from care_ledger.funding.models import FundingRecord
from care_ledger.kernel.errors import BalanceVersionConflict, ContractNotFound, RecordDeleted
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.residents.models import House, Resident
from care_ledger.transactions.models import (
    TransactionFilters,
    TransactionPage,
    TransactionRecord,
    TransactionSort,
)
from care_ledger.transactions.query import LookupContext, query_transactions


class InMemoryRepository:
    """Thread-safe dict-backed repository"""

    def __init__(self, policy: LedgerPolicy | None = None) -> None:
        self.policy = policy or LedgerPolicy()
        self._lock = threading.RLock()
        self._residents: dict[str, Resident] = {}
        self._houses: dict[str, House] = {}
        self._funding: dict[str, FundingRecord] = {}
        self._deleted_funding: set[str] = set()
        self._transactions: dict[str, TransactionRecord] = {}

    # Residents & houses

    def get_resident(self, resident_id: str) -> Resident | None:
        with self._lock:
            resident = self._residents.get(resident_id)
            return resident.model_copy(deep=True) if resident else None

    def save_resident(self, resident: Resident) -> None:
        with self._lock:
            self._residents[resident.id] = resident.model_copy(deep=True)

    def list_residents(self) -> list[Resident]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._residents.values()]

    def get_house(self, house_id: str) -> House | None:
        with self._lock:
            house = self._houses.get(house_id)
            return house.model_copy(deep=True) if house else None

    def save_house(self, house: House) -> None:
        with self._lock:
            self._houses[house.id] = house.model_copy(deep=True)

    def list_houses(self) -> list[House]:
        with self._lock:
            return [h.model_copy(deep=True) for h in self._houses.values()]

    # Funding records

    def get_funding_record(self, contract_id: str) -> FundingRecord | None:
        with self._lock:
            record = self._funding.get(contract_id)
            return record.model_copy(deep=True) if record else None

    def list_funding_records(self, resident_id: str | None = None) -> list[FundingRecord]:
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self._funding.values()
                if resident_id is None or r.resident_id == resident_id
            ]

    def save_funding_record(
        self, record: FundingRecord, expected_version: int | None = None
    ) -> FundingRecord:
        with self._lock:
            stored = self._check_version(record.id, expected_version)
            if stored is not None:
                record = record.model_copy(update={"version": stored.version + 1})
            self._funding[record.id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    def delete_funding_record(self, contract_id: str) -> bool:
        with self._lock:
            if contract_id not in self._funding:
                return False
            del self._funding[contract_id]
            self._deleted_funding.add(contract_id)
            return True

    def _check_version(
        self, contract_id: str, expected_version: int | None
    ) -> FundingRecord | None:
        if contract_id in self._deleted_funding:
            raise RecordDeleted("Funding record", contract_id)
        if expected_version is None:
            return None
        stored = self._funding.get(contract_id)
        if stored is None:
            raise ContractNotFound(contract_id)
        if stored.version != expected_version:
            raise BalanceVersionConflict(contract_id, expected_version, stored.version)
        return stored

    # Transactions

    def get_transaction(self, transaction_id: str) -> TransactionRecord | None:
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            return transaction.model_copy(deep=True) if transaction else None

    def save_transaction(self, transaction: TransactionRecord) -> None:
        with self._lock:
            self._transactions[transaction.id] = transaction.model_copy(deep=True)

    def delete_transaction(self, transaction_id: str) -> bool:
        with self._lock:
            return self._transactions.pop(transaction_id, None) is not None

    def iter_transactions(
        self, contract_id: str | None = None, resident_id: str | None = None
    ) -> list[TransactionRecord]:
        with self._lock:
            return [
                t.model_copy(deep=True)
                for t in self._transactions.values()
                if (contract_id is None or t.contract_id == contract_id)
                and (resident_id is None or t.resident_id == resident_id)
            ]

    def list_transactions(
        self,
        filters: TransactionFilters | None = None,
        sort: TransactionSort | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> TransactionPage:
        with self._lock:
            lookups = LookupContext(
                residents=dict(self._residents),
                houses=dict(self._houses),
                contracts=dict(self._funding),
            )
            candidates = list(self._transactions.values())
        page_result = query_transactions(
            candidates, lookups, self.policy, filters, sort, page, page_size
        )
        page_result.transactions = [t.model_copy(deep=True) for t in page_result.transactions]
        return page_result

    # Atomic balance change

    def commit_transition(
        self,
        transaction: TransactionRecord,
        record: FundingRecord,
        expected_version: int,
    ) -> FundingRecord:
        with self._lock:
            self._check_version(record.id, expected_version)
            saved = record.model_copy(update={"version": expected_version + 1})
            self._funding[saved.id] = saved.model_copy(deep=True)
            self._transactions[transaction.id] = transaction.model_copy(deep=True)
            return saved
