"""
Time entry validation and maintenance.

Every create/update/delete re-derives the ledger posting of each affected
day inside the same unit of work, then refreshes that day's snapshots.
"""
import re
from datetime import date, time
from typing import List, Optional, Tuple

from worktime.core.config import settings
from worktime.core.exceptions import ConflictError, NotFoundError, ValidationError
from worktime.core.logging import bind_actor
from worktime.models.absence_request import AbsenceRequest, AbsenceStatus
from worktime.models.time_entry import TimeEntry, WorkLocation
from worktime.services.base import BaseService
from worktime.services.overtime_service import OvertimeService

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_LOCATIONS = {loc.value for loc in WorkLocation}


def parse_time(value: str, field: str = "time") -> time:
    match = _TIME_RE.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM", field=field)
    return time(int(match.group(1)), int(match.group(2)))


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def span_minutes(start: time, end: time) -> Tuple[int, int]:
    """(start, end) in minutes from midnight; an end before the start wraps past midnight."""
    begin, finish = _minutes(start), _minutes(end)
    if finish <= begin:
        finish += 24 * 60
    return begin, finish


def calculate_hours(start: time, end: time, break_minutes: int) -> float:
    """Net hours: wall-clock span minus break, rounded to 2 decimals."""
    begin, finish = span_minutes(start, end)
    return round((finish - begin - break_minutes) / 60, 2)


class TimeEntryService(BaseService):

    def __init__(self, db, clock=None, overtime: Optional[OvertimeService] = None):
        super().__init__(db, clock)
        self.overtime = overtime or OvertimeService(db, self.clock)

    def get_entry(self, entry_id: int) -> TimeEntry:
        entry = self.db.get(TimeEntry, entry_id)
        if entry is None:
            raise NotFoundError("TimeEntry", entry_id)
        return entry

    def list_entries(
        self,
        employee_id: int,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[TimeEntry]:
        self.get_employee(employee_id)
        query = self.db.query(TimeEntry).filter(TimeEntry.employee_id == employee_id)
        if from_date is not None:
            query = query.filter(TimeEntry.date >= from_date)
        if to_date is not None:
            query = query.filter(TimeEntry.date <= to_date)
        return query.order_by(TimeEntry.date, TimeEntry.start_time).all()

    def entries_for_day(self, employee_id: int, day: date, exclude_id: Optional[int] = None) -> List[TimeEntry]:
        query = self.db.query(TimeEntry).filter(TimeEntry.employee_id == employee_id, TimeEntry.date == day)
        if exclude_id is not None:
            query = query.filter(TimeEntry.id != exclude_id)
        return query.all()

    def check_absence_conflict(self, employee_id: int, day: date) -> Optional[AbsenceRequest]:
        return self.db.query(AbsenceRequest).filter(
            AbsenceRequest.employee_id == employee_id,
            AbsenceRequest.status == AbsenceStatus.APPROVED.value,
            AbsenceRequest.start_date <= day,
            AbsenceRequest.end_date >= day,
        ).first()

    def validate(
        self,
        employee,
        day: date,
        start: time,
        end: time,
        break_minutes: int,
        location: str,
        exclude_id: Optional[int] = None
    ) -> float:
        """
        Apply the working time rules to one entry.

        Returns:
            Net hours of the entry

        Raises:
            ValidationError: malformed or rule-breaking entry
            ConflictError: overlap with another entry or an approved absence
        """
        if day > self.clock.today():
            raise ValidationError("Time entries cannot be in the future", field="date")
        if not employee.is_employed_on(day):
            raise ValidationError(f"{day} is outside the employment period", field="date")
        if location not in _LOCATIONS:
            raise ValidationError(f"Invalid location '{location}'", field="location")
        if break_minutes is None or break_minutes < 0:
            raise ValidationError("Break minutes must be zero or positive", field="break_minutes")

        begin, finish = span_minutes(start, end)
        gross_hours = (finish - begin) / 60
        if gross_hours > settings.break_required_after_hours and break_minutes < settings.min_break_minutes:
            raise ValidationError(
                f"A break of at least {settings.min_break_minutes} minutes is required for more than "
                f"{settings.break_required_after_hours:g} hours of work",
                field="break_minutes",
            )
        hours = calculate_hours(start, end, break_minutes)
        if hours <= 0:
            raise ValidationError("Net working time must be positive", field="break_minutes")
        if hours > settings.max_entry_hours:
            raise ValidationError(f"An entry cannot exceed {settings.max_entry_hours:g} hours", field="end_time")

        others = self.entries_for_day(employee.id, day, exclude_id)
        for other in others:
            other_begin, other_finish = span_minutes(other.start_time, other.end_time)
            if begin < other_finish and other_begin < finish:
                raise ConflictError(
                    f"Entry overlaps entry {other.id} "
                    f"({other.start_time.strftime('%H:%M')}-{other.end_time.strftime('%H:%M')})",
                    details={"conflicting_entry_id": other.id},
                )
        daily_total = round(sum(o.hours for o in others) + hours, 2)
        if daily_total > settings.max_daily_work_hours:
            raise ValidationError(
                f"Daily working time of {daily_total:g}h exceeds the maximum of "
                f"{settings.max_daily_work_hours:g}h",
                field="hours",
            )

        absence = self.check_absence_conflict(employee.id, day)
        if absence is not None:
            raise ConflictError(
                f"{day} is covered by approved {absence.type} absence {absence.id}",
                details={"absence_id": absence.id},
            )
        return hours

    def create_entry(
        self,
        employee_id: int,
        day: date,
        start_time: str,
        end_time: str,
        break_minutes: int = 0,
        location: str = WorkLocation.OFFICE.value,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None
    ) -> TimeEntry:
        start, end = parse_time(start_time, "start_time"), parse_time(end_time, "end_time")
        with bind_actor(actor_id):
            with self.unit_of_work(employee_id) as employee:
                hours = self.validate(employee, day, start, end, break_minutes, location)
                entry = TimeEntry(
                    employee_id=employee_id,
                    date=day,
                    start_time=start,
                    end_time=end,
                    break_minutes=break_minutes,
                    hours=hours,
                    location=location,
                    notes=notes,
                )
                self.db.add(entry)
                self.db.flush()
                affected = self.overtime.reconcile_work_day(employee, day, actor_id)
            self._logger.info(f"Time entry {entry.id} created for employee {employee_id} on {day}: {hours}h")
            self.overtime.reconciler.refresh_for_dates(employee_id, affected or [day])
            return entry

    def update_entry(
        self,
        entry_id: int,
        actor_id: Optional[int] = None,
        day: Optional[date] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        break_minutes: Optional[int] = None,
        location: Optional[str] = None,
        notes: Optional[str] = None
    ) -> TimeEntry:
        entry = self.get_entry(entry_id)
        old_day = entry.date
        new_day = day or entry.date
        start = parse_time(start_time, "start_time") if start_time is not None else entry.start_time
        end = parse_time(end_time, "end_time") if end_time is not None else entry.end_time
        break_minutes = entry.break_minutes if break_minutes is None else break_minutes
        location = location or entry.location

        with bind_actor(actor_id):
            with self.unit_of_work(entry.employee_id) as employee:
                hours = self.validate(employee, new_day, start, end, break_minutes, location, exclude_id=entry.id)
                entry.date = new_day
                entry.start_time = start
                entry.end_time = end
                entry.break_minutes = break_minutes
                entry.hours = hours
                entry.location = location
                if notes is not None:
                    entry.notes = notes
                self.db.flush()
                affected = set(self.overtime.reconcile_work_day(employee, new_day, actor_id))
                if old_day != new_day:
                    affected |= set(self.overtime.reconcile_work_day(employee, old_day, actor_id))
            self.overtime.reconciler.refresh_for_dates(entry.employee_id, affected | {old_day, new_day})
            return entry

    def delete_entry(self, entry_id: int, actor_id: Optional[int] = None):
        entry = self.get_entry(entry_id)
        employee_id, day = entry.employee_id, entry.date
        with bind_actor(actor_id):
            with self.unit_of_work(employee_id) as employee:
                self.db.delete(entry)
                self.db.flush()
                affected = self.overtime.reconcile_work_day(employee, day, actor_id)
            self._logger.info(f"Time entry {entry_id} of employee {employee_id} on {day} deleted")
            self.overtime.reconciler.refresh_for_dates(employee_id, affected or [day])
