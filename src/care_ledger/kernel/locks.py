"""
Per-contract serialization

Post, void and funding updates are read-modify-write cycles on a funding
record's balance. Two of them interleaving on the same contract could lose
an update, so each contract gets its own lock. Different contracts never
block each other.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from care_ledger.kernel.logging import get_logger

logger = get_logger(__name__)


class ContractLockRegistry:
    """
    Hands out one re-entrant lock per contract id

    The registry guard is held only while looking the lock up, never while
    the caller talks to the repository.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def lock_for(self, contract_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(contract_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[contract_id] = lock
            return lock

    @contextmanager
    def hold(self, contract_id: str) -> Iterator[None]:
        """
        Serialize a block of work on one contract

        Args:
            contract_id: Contract whose balance is about to change
        """
        lock = self.lock_for(contract_id)
        with lock:
            yield

    def forget(self, contract_id: str) -> None:
        """Drop the lock of a deleted contract"""
        with self._guard:
            self._locks.pop(contract_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
