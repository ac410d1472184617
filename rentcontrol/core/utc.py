"""
UTC DateTime Utilities and Clocks for RentControl.

All timestamps are handled in UTC with timezone awareness. Controllers never
call datetime.now() directly; they ask an injected Clock so every temporal
rule can be exercised deterministically in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Always returns a datetime with tzinfo=timezone.utc.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC timezone-aware datetime.

    - If naive: assumes UTC and adds timezone
    - If aware: converts to UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Clock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware UTC datetime."""


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return utc_now()


class FixedClock(Clock):
    """
    Clock frozen at a given instant until moved explicitly.

    Example:
        clock = FixedClock(datetime(2024, 3, 20, 9, 0))
        clock.advance(days=30)
    """

    def __init__(self, at: datetime):
        self._at = to_utc(at)

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = to_utc(at)

    def advance(self, **delta) -> datetime:
        self._at = self._at + timedelta(**delta)
        return self._at
