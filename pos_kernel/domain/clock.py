"""
Clock -- injectable time abstraction.

Responsibility:
    Lets services stamp sessions, transactions, and receipts without calling
    ``datetime.now()`` directly, so tests can pin the business day.

Architecture position:
    Kernel > Domain -- zero I/O except SystemClock, the one sanctioned
    source of wall-clock time.

Audit relevance:
    opened_at, processed_at, closed_at, and receipt dates all come from an
    injected Clock; receipt numbering depends on the business day it reports.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of aware timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)


class SystemClock(Clock):
    """Wall-clock time, in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock for tests.

    Time stands still until ``advance()``, ``tick()`` or ``set_time()``
    moves it, so every stamp taken in between is identical.
    """

    def __init__(self, start: datetime | None = None):
        start = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs an aware datetime")
        self._current = start

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            raise ValueError("DeterministicClock needs an aware datetime")
        self._current = moment

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Move one second forward and return the new time."""
        self.advance(1)
        return self._current
