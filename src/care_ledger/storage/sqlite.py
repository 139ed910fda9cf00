"""
SQLite Repository - Durable storage for the ledger

Every entity is stored as its pydantic JSON payload next to the few columns
we filter on. Funding records carry a version column for optimistic locking
and a deleted_at tombstone; commit_transition writes a transaction and its
contract's balance inside one SQLite transaction.

Fun fact: SQLite is the most widely deployed database engine in the world -
there are likely more copies of it running than of every other database
combined.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import BaseModel

from care_ledger.funding.models import FundingRecord
from care_ledger.kernel.errors import (
    BalanceVersionConflict,
    ContractNotFound,
    RecordDeleted,
    StorageError,
)
from care_ledger.kernel.logging import get_logger
from care_ledger.kernel.policy import LedgerPolicy
from care_ledger.kernel.retry import retry_on_sqlite_lock
from care_ledger.kernel.time import TimeProvider, default_time_provider
from care_ledger.residents.models import House, Resident
from care_ledger.transactions.models import (
    TransactionFilters,
    TransactionPage,
    TransactionRecord,
    TransactionSort,
)
from care_ledger.transactions.query import LookupContext, query_transactions

logger = get_logger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS houses (
        id TEXT PRIMARY KEY,
        payload_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS residents (
        id TEXT PRIMARY KEY,
        house_id TEXT,
        payload_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS funding_records (
        id TEXT PRIMARY KEY,
        resident_id TEXT NOT NULL,
        version INTEGER NOT NULL,
        deleted_at TEXT,
        payload_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        resident_id TEXT NOT NULL,
        contract_id TEXT NOT NULL,
        status TEXT NOT NULL,
        occurred_at TEXT NOT NULL,
        payload_json TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_funding_resident ON funding_records(resident_id)",
    "CREATE INDEX IF NOT EXISTS idx_txn_contract ON transactions(contract_id)",
    "CREATE INDEX IF NOT EXISTS idx_txn_resident ON transactions(resident_id)",
    "CREATE INDEX IF NOT EXISTS idx_txn_occurred ON transactions(occurred_at)",
)


class SQLiteRepository:
    """
    SQLite-backed LedgerRepository

    Uses WAL mode for crash safety and concurrent reads. Connections are
    opened per call, so one instance may be shared between threads.
    """

    def __init__(
        self,
        db_path: str | Path,
        policy: LedgerPolicy | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        """
        Initialize repository with SQLite database

        Args:
            db_path: Path to SQLite database file (created if missing)
            policy: Ledger policy used for page size clamping
            time_provider: Clock for tombstone timestamps
        """
        self.db_path = Path(db_path)
        self.policy = policy or LedgerPolicy()
        self.time_provider = time_provider or default_time_provider
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            for statement in SCHEMA:
                conn.execute(statement)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection; multi-statement writes use _transaction"""
        conn = sqlite3.connect(str(self.db_path), timeout=5.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run statements in one write transaction

        BEGIN IMMEDIATE takes the write lock up front so the version check
        and the writes cannot interleave with another writer.
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    @staticmethod
    def _dump(model: BaseModel) -> str:
        return model.model_dump_json()

    # Residents & houses

    def get_resident(self, resident_id: str) -> Resident | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM residents WHERE id = ?", (resident_id,)
            ).fetchone()
        return Resident.model_validate_json(row["payload_json"]) if row else None

    @retry_on_sqlite_lock()
    def save_resident(self, resident: Resident) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO residents (id, house_id, payload_json) VALUES (?, ?, ?)",
                (resident.id, resident.house_id, self._dump(resident)),
            )

    def list_residents(self) -> list[Resident]:
        with self._connect() as conn:
            rows = conn.execute("SELECT payload_json FROM residents ORDER BY id").fetchall()
        return [Resident.model_validate_json(row["payload_json"]) for row in rows]

    def get_house(self, house_id: str) -> House | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM houses WHERE id = ?", (house_id,)
            ).fetchone()
        return House.model_validate_json(row["payload_json"]) if row else None

    @retry_on_sqlite_lock()
    def save_house(self, house: House) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO houses (id, payload_json) VALUES (?, ?)",
                (house.id, self._dump(house)),
            )

    def list_houses(self) -> list[House]:
        with self._connect() as conn:
            rows = conn.execute("SELECT payload_json FROM houses ORDER BY id").fetchall()
        return [House.model_validate_json(row["payload_json"]) for row in rows]

    # Funding records

    def get_funding_record(self, contract_id: str) -> FundingRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM funding_records WHERE id = ? AND deleted_at IS NULL",
                (contract_id,),
            ).fetchone()
        return FundingRecord.model_validate_json(row["payload_json"]) if row else None

    def list_funding_records(self, resident_id: str | None = None) -> list[FundingRecord]:
        query = "SELECT payload_json FROM funding_records WHERE deleted_at IS NULL"
        params: list[str] = []
        if resident_id is not None:
            query += " AND resident_id = ?"
            params.append(resident_id)
        query += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [FundingRecord.model_validate_json(row["payload_json"]) for row in rows]

    @retry_on_sqlite_lock()
    def save_funding_record(
        self, record: FundingRecord, expected_version: int | None = None
    ) -> FundingRecord:
        try:
            with self._transaction() as conn:
                return self._write_funding(conn, record, expected_version)
        except sqlite3.OperationalError:
            raise
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save funding record {record.id}: {e}") from e

    @retry_on_sqlite_lock()
    def delete_funding_record(self, contract_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE funding_records SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (self.time_provider.now().isoformat(), contract_id),
            )
            return cursor.rowcount > 0

    def _write_funding(
        self,
        conn: sqlite3.Connection,
        record: FundingRecord,
        expected_version: int | None,
    ) -> FundingRecord:
        """Version-checked upsert inside an open transaction"""
        row = conn.execute(
            "SELECT version, deleted_at FROM funding_records WHERE id = ?", (record.id,)
        ).fetchone()
        if row is not None and row["deleted_at"] is not None:
            raise RecordDeleted("Funding record", record.id)

        if expected_version is not None:
            if row is None:
                raise ContractNotFound(record.id)
            if row["version"] != expected_version:
                raise BalanceVersionConflict(record.id, expected_version, row["version"])
            record = record.model_copy(update={"version": expected_version + 1})

        conn.execute(
            """
            INSERT OR REPLACE INTO funding_records (id, resident_id, version, deleted_at, payload_json)
            VALUES (?, ?, ?, NULL, ?)
            """,
            (record.id, record.resident_id, record.version, self._dump(record)),
        )
        return record

    # Transactions

    def get_transaction(self, transaction_id: str) -> TransactionRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload_json FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
        return TransactionRecord.model_validate_json(row["payload_json"]) if row else None

    @retry_on_sqlite_lock()
    def save_transaction(self, transaction: TransactionRecord) -> None:
        with self._connect() as conn:
            self._write_transaction(conn, transaction)

    @retry_on_sqlite_lock()
    def delete_transaction(self, transaction_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
            return cursor.rowcount > 0

    def _write_transaction(self, conn: sqlite3.Connection, transaction: TransactionRecord) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO transactions (
                id, resident_id, contract_id, status, occurred_at, payload_json
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                transaction.id,
                transaction.resident_id,
                transaction.contract_id,
                transaction.status.value,
                transaction.occurred_at.isoformat(),
                self._dump(transaction),
            ),
        )

    def iter_transactions(
        self, contract_id: str | None = None, resident_id: str | None = None
    ) -> list[TransactionRecord]:
        conditions = []
        params: list[str] = []
        if contract_id is not None:
            conditions.append("contract_id = ?")
            params.append(contract_id)
        if resident_id is not None:
            conditions.append("resident_id = ?")
            params.append(resident_id)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT payload_json FROM transactions WHERE {where_clause} ORDER BY id",
                params,
            ).fetchall()
        return [TransactionRecord.model_validate_json(row["payload_json"]) for row in rows]

    def _prefilter(self, filters: TransactionFilters | None) -> list[TransactionRecord]:
        """
        Push the column-backed filters down to SQL

        The remaining filters (house, search) and sorting run in
        query_transactions, which re-applies every filter anyway.
        """
        conditions = []
        params: list[str] = []

        if filters is not None:
            for column, values in (
                ("resident_id", filters.resident_ids),
                ("contract_id", filters.contract_ids),
                ("status", [s.value for s in filters.statuses] if filters.statuses else None),
            ):
                if values is None:
                    continue
                if not values:
                    return []
                conditions.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)

            if filters.date_range and filters.date_range.start:
                conditions.append("occurred_at >= ?")
                params.append(filters.date_range.start.isoformat())
            if filters.date_range and filters.date_range.end:
                conditions.append("occurred_at <= ?")
                params.append(filters.date_range.end.isoformat())

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT payload_json FROM transactions WHERE {where_clause}", params
            ).fetchall()
        return [TransactionRecord.model_validate_json(row["payload_json"]) for row in rows]

    def list_transactions(
        self,
        filters: TransactionFilters | None = None,
        sort: TransactionSort | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> TransactionPage:
        candidates = self._prefilter(filters)
        lookups = LookupContext(
            residents={r.id: r for r in self.list_residents()},
            houses={h.id: h for h in self.list_houses()},
            contracts={c.id: c for c in self.list_funding_records()},
        )
        return query_transactions(candidates, lookups, self.policy, filters, sort, page, page_size)

    # Atomic balance change

    @retry_on_sqlite_lock()
    def commit_transition(
        self,
        transaction: TransactionRecord,
        record: FundingRecord,
        expected_version: int,
    ) -> FundingRecord:
        try:
            with self._transaction() as conn:
                saved = self._write_funding(conn, record, expected_version)
                self._write_transaction(conn, transaction)
        except sqlite3.OperationalError:
            raise
        except sqlite3.Error as e:
            raise StorageError(f"Failed to commit transaction {transaction.id}: {e}") from e

        logger.debug(
            "Transition committed",
            transaction_id=transaction.id,
            contract_id=saved.id,
            status=transaction.status.value,
            version=saved.version,
        )
        return saved

    def count_transactions(self) -> int:
        """Get total number of stored transactions"""
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0]
