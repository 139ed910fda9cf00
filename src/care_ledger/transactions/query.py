"""
Transaction listing - filtering, sorting and pagination

Repositories hand this module the candidate transactions plus the lookups
needed for the joined fields (resident name, house name, contract type).
Ordering is deterministic: ties on the sort field are broken by id
ascending, and records missing the sort value go last, so repeated calls on
unchanged data return identical pages.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from care_ledger.funding.models import FundingRecord
from care_ledger.kernel.errors import ValidationError
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.residents.models import House, Resident
from care_ledger.transactions.models import (
    SortDirection,
    SortField,
    TransactionFilters,
    TransactionPage,
    TransactionRecord,
    TransactionSort,
)


@dataclass
class LookupContext:
    """Join tables for derived filter and sort fields"""

    residents: dict[str, Resident] = field(default_factory=dict)
    houses: dict[str, House] = field(default_factory=dict)
    contracts: dict[str, FundingRecord] = field(default_factory=dict)

    def resident_name(self, transaction: TransactionRecord) -> str | None:
        resident = self.residents.get(transaction.resident_id)
        return resident.full_name if resident else None

    def house_id(self, transaction: TransactionRecord) -> str | None:
        resident = self.residents.get(transaction.resident_id)
        return resident.house_id if resident else None

    def house_name(self, transaction: TransactionRecord) -> str | None:
        house = self.houses.get(self.house_id(transaction) or "")
        return house.name if house else None

    def contract_type(self, transaction: TransactionRecord) -> str | None:
        contract = self.contracts.get(transaction.contract_id)
        return contract.type.value if contract else None


def matches(
    transaction: TransactionRecord, filters: TransactionFilters, lookups: LookupContext
) -> bool:
    """True when the transaction satisfies every supplied filter"""
    if filters.date_range and not filters.date_range.contains(transaction.occurred_at):
        return False
    if filters.resident_ids is not None and transaction.resident_id not in filters.resident_ids:
        return False
    if filters.contract_ids is not None and transaction.contract_id not in filters.contract_ids:
        return False
    if filters.house_ids is not None and lookups.house_id(transaction) not in filters.house_ids:
        return False
    if filters.statuses is not None and transaction.status not in filters.statuses:
        return False
    if filters.service_code and transaction.service_code != filters.service_code:
        return False

    search = (filters.search or "").strip().casefold()
    if search:
        haystack = [
            transaction.description or "",
            transaction.service_code,
            lookups.resident_name(transaction) or "",
        ]
        if not any(search in text.casefold() for text in haystack):
            return False

    return True


def filter_transactions(
    transactions: Iterable[TransactionRecord],
    filters: TransactionFilters | None,
    lookups: LookupContext,
) -> list[TransactionRecord]:
    if filters is None:
        return list(transactions)
    return [t for t in transactions if matches(t, filters, lookups)]


def sort_value(
    transaction: TransactionRecord, sort_field: SortField, lookups: LookupContext
) -> Any:
    """Comparable value of a sort field (None when missing)"""
    if sort_field == SortField.RESIDENT_NAME:
        name = lookups.resident_name(transaction)
        return name.casefold() if name else None
    if sort_field == SortField.HOUSE_NAME:
        name = lookups.house_name(transaction)
        return name.casefold() if name else None
    if sort_field == SortField.CONTRACT_TYPE:
        return lookups.contract_type(transaction)

    value = getattr(transaction, sort_field.value)
    if sort_field == SortField.STATUS:
        return value.value
    return value


def sort_transactions(
    transactions: Iterable[TransactionRecord],
    sort: TransactionSort | None,
    lookups: LookupContext,
) -> list[TransactionRecord]:
    """
    Sort deterministically

    Records are first ordered by id; the main sort is stable, so equal keys
    keep id order in both directions. Missing values are appended last.
    """
    sort = sort or TransactionSort()
    by_id = sorted(transactions, key=lambda t: t.id)

    present = [t for t in by_id if sort_value(t, sort.field, lookups) is not None]
    missing = [t for t in by_id if sort_value(t, sort.field, lookups) is None]

    present.sort(
        key=lambda t: sort_value(t, sort.field, lookups),
        reverse=sort.direction == SortDirection.DESC,
    )
    return present + missing


def paginate(
    transactions: list[TransactionRecord],
    page: int,
    page_size: int | None,
    policy: LedgerPolicy,
) -> TransactionPage:
    """
    Slice one page out of an ordered list

    Raises:
        ValidationError: If page < 1
    """
    if page < 1:
        raise ValidationError.single("page", "Page must be 1 or greater")
    size = policy.clamp_page_size(page_size)

    total = len(transactions)
    start = (page - 1) * size
    return TransactionPage(
        transactions=transactions[start : start + size],
        total=total,
        page=page,
        page_size=size,
        has_more=page * size < total,
    )


def query_transactions(
    transactions: Iterable[TransactionRecord],
    lookups: LookupContext,
    policy: LedgerPolicy,
    filters: TransactionFilters | None = None,
    sort: TransactionSort | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> TransactionPage:
    """Filter, sort and paginate in one call"""
    selected = filter_transactions(transactions, filters, lookups)
    ordered = sort_transactions(selected, sort, lookups)
    return paginate(ordered, page, page_size, policy)
