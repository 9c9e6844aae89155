"""
Work schedule resolution.

Answers one question: how many hours is an employee expected to work on a
given calendar date. Everything else (targets, absence credits, ledger
postings, snapshots) is built on top of ``WorkScheduleResolver``.
"""
import logging
from datetime import date, timedelta
from typing import Dict, Iterator, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from worktime.core.config import settings
from worktime.models.employee import Employee, WEEKDAYS
from worktime.models.holiday import Holiday, HolidayScope

logger = logging.getLogger(__name__)


def iter_days(start: date, end: date) -> Iterator[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


class HolidayCalendar:
    """
    Read-only holiday lookup, cached per (year, region) for the lifetime
    of the instance.
    """

    def __init__(self, db: Session):
        self.db = db
        self._cache: Dict[Tuple[int, str], Dict[date, str]] = {}

    def holidays_for_year(self, year: int, region: Optional[str] = None) -> Dict[date, str]:
        """
        Federal holidays plus the regional holidays of ``region``.

        Returns:
            Mapping of holiday date to holiday name
        """
        region = region or settings.default_holiday_region
        key = (year, region)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        rows = (
            self.db.query(Holiday)
            .filter(
                Holiday.date >= date(year, 1, 1),
                Holiday.date <= date(year, 12, 31),
                or_(
                    Holiday.scope == HolidayScope.FEDERAL.value,
                    and_(Holiday.scope == HolidayScope.REGIONAL.value, Holiday.region == region),
                ),
            )
            .all()
        )
        holidays = {row.date: row.name for row in rows}
        self._cache[key] = holidays
        logger.debug(f"Loaded {len(holidays)} holidays for {year}/{region}")
        return holidays

    def is_holiday(self, day: date, region: Optional[str] = None) -> bool:
        return day in self.holidays_for_year(day.year, region)

    def holiday_name(self, day: date, region: Optional[str] = None) -> Optional[str]:
        return self.holidays_for_year(day.year, region).get(day)

    def invalidate(self):
        self._cache.clear()


class WorkScheduleResolver:
    """
    Expected hours for one employee on one date.

    Resolution order:
        1. outside the employment window -> 0
        2. holiday for the employee's region -> 0
        3. per-weekday schedule present -> that weekday's hours (missing weekday -> 0)
        4. otherwise weekly_hours / 5 on Monday..Friday, 0 on weekends
    """

    def __init__(self, calendar: HolidayCalendar):
        self.calendar = calendar

    @staticmethod
    def region_for(employee: Employee) -> str:
        return employee.holiday_region or settings.default_holiday_region

    @staticmethod
    def scheduled_hours(employee: Employee, day: date) -> float:
        """Weekday hours before holidays and employment boundaries are applied."""
        schedule = employee.work_schedule
        if schedule:
            value = schedule.get(WEEKDAYS[day.weekday()])
            return round(float(value or 0), 2)
        if day.weekday() < 5:
            return round((employee.weekly_hours or 0) / 5, 2)
        return 0.0

    def daily_target_hours(self, employee: Employee, day: date) -> float:
        if not employee.is_employed_on(day):
            return 0.0
        if self.calendar.is_holiday(day, self.region_for(employee)):
            return 0.0
        return self.scheduled_hours(employee, day)

    def daily_targets(self, employee: Employee, start: date, end: date) -> Dict[date, float]:
        """Per-day targets for every date in [start, end]; empty when start > end."""
        return {day: self.daily_target_hours(employee, day) for day in iter_days(start, end)}

    def working_days(self, employee: Employee, start: date, end: date) -> int:
        """Number of days in [start, end] with a positive target."""
        return sum(1 for hours in self.daily_targets(employee, start, end).values() if hours > 0)
