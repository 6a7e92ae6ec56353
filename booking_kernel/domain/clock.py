"""
Injectable time source.

The ledger, trigger, sweeper and resend path take a ``Clock`` in their
constructor and never call ``datetime.now()`` themselves; sweeper grace
windows and stale-claim timeouts are tested by advancing a
``DeterministicClock``.

All values are timezone-aware UTC.  SQLite returns naive datetimes, so
anything read back from the ledger goes through ``ensure_utc``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock for tests.  Time only moves through ``advance()``."""

    def __init__(self, start: datetime | None = None):
        self._now = ensure_utc(start) if start is not None else DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new time."""
        self._now += timedelta(seconds=seconds)
        return self._now


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
