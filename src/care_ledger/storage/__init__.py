"""Storage - repository protocol plus in-memory and SQLite implementations"""

from care_ledger.storage.memory import InMemoryRepository
from care_ledger.storage.repository import LedgerRepository
from care_ledger.storage.sqlite import SQLiteRepository

__all__ = ["LedgerRepository", "InMemoryRepository", "SQLiteRepository"]
