"""
Injectable clock.

Overdue detection, reminder windows and penalty day counts all depend on
"today", so no domain, engine or service code reads the system time
directly.  Services take a ``Clock`` at construction and tests pin it with
``DeterministicClock``.

Kernel > Domain.  ``SystemClock`` is the only place that touches real time.
"""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, time, timedelta

_NOON = time(12, 0, tzinfo=UTC)


class Clock(ABC):
    """``now()`` is timezone-aware; ``today()`` is its UTC calendar date."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().astimezone(UTC).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Starts at 2024-05-01 12:00 UTC unless another instant is given.  Dates
    set through ``set_date`` land on noon UTC so ``today()`` is unambiguous.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime.combine(date(2024, 5, 1), _NOON)

    def now(self) -> datetime:
        return self._current

    def set_date(self, day: date) -> None:
        self._current = datetime.combine(day, _NOON)

    def advance_days(self, days: int) -> None:
        self._current += timedelta(days=days)
