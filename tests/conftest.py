"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

import tempfile
from collections.abc import Iterator
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from care_ledger.funding.models import FundingRecord
from care_ledger.kernel.ids import SequentialIdFactory
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.kernel.time import TestTimeProvider
from care_ledger.ledger import CareLedger
from care_ledger.residents.models import House, Resident
from care_ledger.storage.memory import InMemoryRepository


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "ledger.db"


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC, mid-month so both the start of
    the year and a 30-day look-back window are in reach.
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> LedgerPolicy:
    """Provide default ledger policy for tests"""
    return LedgerPolicy()


@pytest.fixture
def id_factory() -> SequentialIdFactory:
    """Ids like "txn-0001" so tests can name records up front"""
    return SequentialIdFactory()


@pytest.fixture
def repository(policy: LedgerPolicy) -> InMemoryRepository:
    return InMemoryRepository(policy)


@pytest.fixture
def ledger(
    repository: InMemoryRepository,
    policy: LedgerPolicy,
    test_time: TestTimeProvider,
    id_factory: SequentialIdFactory,
) -> CareLedger:
    """Provide a ledger over fresh in-memory storage"""
    return CareLedger(
        repository=repository,
        policy=policy,
        time_provider=test_time,
        id_factory=id_factory,
    )


@pytest.fixture
def house(ledger: CareLedger) -> House:
    return ledger.register_house("Banksia House")


@pytest.fixture
def resident(ledger: CareLedger, house: House) -> Resident:
    """Resident res-0001 living in house-0001"""
    return ledger.register_resident("Ada", "Lovelace", house_id=house.id)


@pytest.fixture
def contract(ledger: CareLedger, resident: Resident) -> FundingRecord:
    """
    NDIS contract fund-0001 worth 1000.00 for the whole of 2025

    The amount matches the worked posting example: post 300, then an 800
    post is blocked, then a void restores the balance.
    """
    return ledger.add_funding(
        resident_id=resident.id,
        type="NDIS",
        amount="1000.00",
        start_date=date(2025, 1, 1),
        end_date=date(2025, 12, 31),
        description="Core supports plan",
    )
