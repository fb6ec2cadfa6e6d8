"""
Clock -- injectable time source.

Services never call ``datetime.now()`` directly; the engine facade hands
them a Clock, so transaction dates, ledger entry timestamps and audit rows
are deterministic under test.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Returns timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value until ``advance()`` or ``set_time()``
    is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        self._advance_seconds += seconds
