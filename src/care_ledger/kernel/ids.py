"""
ID generation using UUIDv7-style time-ordered identifiers

Every record id carries a short type prefix ("fund", "txn", "res") followed
by a time-ordered UUID, so ids sort by creation time and are recognisable in
logs and support tickets.
"""

import itertools
import secrets
import threading
import time
from typing import Protocol


class IdFactory(Protocol):
    """Protocol for ID generation strategies"""

    def generate(self, prefix: str) -> str:
        """Generate a new unique ID with the given type prefix"""
        ...


def _uuid7() -> str:
    # 48-bit millisecond timestamp, version nibble 7, variant bits 10
    timestamp_48 = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    rand_a = secrets.randbits(12)
    rand_b = secrets.randbits(62)

    return (
        f"{timestamp_48 >> 16:08x}-"
        f"{timestamp_48 & 0xFFFF:04x}-"
        f"{0x7000 | rand_a:04x}-"
        f"{0x8000 | ((rand_b >> 48) & 0x3FFF):04x}-"
        f"{rand_b & 0xFFFFFFFFFFFF:012x}"
    )


def generate_id(prefix: str = "") -> str:
    """
    Generate a time-ordered identifier

    Args:
        prefix: Record type prefix (e.g. "txn")

    Returns:
        "<prefix>_<uuid7>" or a bare UUID when no prefix is given
    """
    uid = _uuid7()
    return f"{prefix}_{uid}" if prefix else uid


class DefaultIdFactory:
    """Default ID factory using UUIDv7-like generation"""

    def generate(self, prefix: str) -> str:
        return generate_id(prefix)


class SequentialIdFactory:
    """
    Deterministic ID factory for tests

    Produces "txn-0001", "txn-0002", ... with an independent counter per
    prefix so assertions can name ids up front.
    """

    def __init__(self) -> None:
        self._counters: dict[str, itertools.count] = {}
        self._lock = threading.Lock()

    def generate(self, prefix: str) -> str:
        with self._lock:
            counter = self._counters.setdefault(prefix, itertools.count(1))
            return f"{prefix}-{next(counter):04d}"


default_id_factory = DefaultIdFactory()
