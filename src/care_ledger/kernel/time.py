"""
Time provider abstraction for deterministic testing

Posting timestamps, contract status (Pending/Active/Expired) and the
"recent transactions" window all depend on the current time, so time is
injected rather than read from the system clock inside domain code.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    """Protocol for time providers - allows deterministic testing"""

    def now(self) -> datetime:
        """Return current UTC datetime"""
        ...

    def today(self) -> date:
        """Return current UTC calendar date"""
        ...


class RealTimeProvider:
    """Production time provider using system clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class TestTimeProvider:
    """
    Controllable time provider for deterministic tests

    Allows tests to freeze time and move it forward explicitly.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, initial_time: datetime | None = None) -> None:
        """
        Initialize with optional fixed time

        Args:
            initial_time: Starting time (defaults to Unix epoch)
        """
        self._current_time = initial_time or datetime(1970, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def today(self) -> date:
        return self._current_time.date()

    def set_time(self, dt: datetime) -> None:
        self._current_time = dt

    def advance_seconds(self, seconds: int) -> None:
        self._current_time += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._current_time += timedelta(days=days)


default_time_provider: TimeProvider = RealTimeProvider()
