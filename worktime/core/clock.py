"""
Injectable time source.

Services never call ``date.today()`` or ``datetime.now()`` directly: "today"
bounds every target/actual computation, so tests and replays need to pin it.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from worktime.core.config import settings


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current time."""
        ...

    def today(self) -> date:
        return self.now().date()

    def utcnow_naive(self) -> datetime:
        """UTC timestamp without tzinfo, the form stored in ledger rows."""
        return self.now().astimezone(timezone.utc).replace(tzinfo=None)


class SystemClock(Clock):

    def __init__(self, tz: Optional[str] = None):
        self._tz = ZoneInfo(tz or settings.timezone)

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock(Clock):
    """
    Clock pinned to a given instant. Each ``now()`` call advances by one
    microsecond so that rows written in a single test keep a strict
    creation order.
    """

    def __init__(self, fixed: datetime):
        if fixed.tzinfo is None:
            fixed = fixed.replace(tzinfo=timezone.utc)
        self._current = fixed

    def now(self) -> datetime:
        self._current = self._current + timedelta(microseconds=1)
        return self._current

    def today(self) -> date:
        return self._current.date()

    def set_date(self, day: date) -> None:
        self._current = datetime(day.year, day.month, day.day, 12, 0, tzinfo=self._current.tzinfo)

    def advance(self, days: int = 0, seconds: int = 0) -> None:
        self._current = self._current + timedelta(days=days, seconds=seconds)
