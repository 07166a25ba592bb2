"""
Clock Module

Supplies "now" to the engine so due-date comparisons and timestamps are
deterministic under test.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone, timedelta


class Clock(ABC):
    """Source of the current UTC time"""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime"""
        pass


class SystemClock(Clock):
    """Wall-clock time"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock pinned to a given instant, advanced manually (testing)"""

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by a timedelta expressed as keyword args"""
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant
