"""
Target (Soll) hours.

raw target       = sum of daily schedule targets over the effective window
unpaid reduction = daily targets of the days covered by approved unpaid leave
adjusted target  = raw target - unpaid reduction

The effective window of a range is [max(from, hire_date), min(to, today,
termination_date)]; days outside it never count.
"""
import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from worktime.core.clock import Clock
from worktime.models.employee import Employee
from worktime.models.absence_request import AbsenceRequest, AbsenceStatus, AbsenceType
from worktime.services.work_schedule import WorkScheduleResolver

logger = logging.getLogger(__name__)


def effective_window(employee: Employee, start: date, end: date, today: date) -> Optional[Tuple[date, date]]:
    """Clip [start, end] to the employment window and to today; None if nothing is left."""
    lo = max(start, employee.hire_date)
    hi = min(end, today)
    if employee.termination_date is not None:
        hi = min(hi, employee.termination_date)
    if lo > hi:
        return None
    return lo, hi


def sum_hours(values: Iterable[float]) -> float:
    return round(sum(values), 2)


def approved_absences(
    db: Session,
    employee_id: int,
    start: date,
    end: date,
    types: Optional[Iterable[str]] = None
) -> List[AbsenceRequest]:
    """Approved absences of an employee overlapping [start, end]."""
    query = db.query(AbsenceRequest).filter(
        AbsenceRequest.employee_id == employee_id,
        AbsenceRequest.status == AbsenceStatus.APPROVED.value,
        AbsenceRequest.start_date <= end,
        AbsenceRequest.end_date >= start,
    )
    if types is not None:
        query = query.filter(AbsenceRequest.type.in_(list(types)))
    return query.order_by(AbsenceRequest.start_date, AbsenceRequest.id).all()


class TargetHoursCalculator:

    def __init__(self, db: Session, resolver: WorkScheduleResolver, clock: Clock):
        self.db = db
        self.resolver = resolver
        self.clock = clock

    def window(self, employee: Employee, start: date, end: date) -> Optional[Tuple[date, date]]:
        return effective_window(employee, start, end, self.clock.today())

    def raw_daily(self, employee: Employee, start: date, end: date) -> Dict[date, float]:
        window = self.window(employee, start, end)
        if window is None:
            return {}
        return self.resolver.daily_targets(employee, *window)

    def absence_daily(self, employee: Employee, absence: AbsenceRequest, start: date, end: date) -> Dict[date, float]:
        """
        Daily targets of the days one absence covers inside [start, end]'s
        effective window. Days with 0 target are left out: they carry no
        credit and no reduction.
        """
        window = self.window(employee, max(start, absence.start_date), min(end, absence.end_date))
        if window is None:
            return {}
        return {
            day: hours
            for day, hours in self.resolver.daily_targets(employee, *window).items()
            if hours > 0
        }

    def unpaid_daily(self, employee: Employee, start: date, end: date) -> Dict[date, float]:
        reduction: Dict[date, float] = {}
        for absence in approved_absences(self.db, employee.id, start, end, [AbsenceType.UNPAID.value]):
            for day, hours in self.absence_daily(employee, absence, start, end).items():
                reduction[day] = round(reduction.get(day, 0.0) + hours, 2)
        return reduction

    def raw_target(self, employee: Employee, start: date, end: date) -> float:
        return sum_hours(self.raw_daily(employee, start, end).values())

    def unpaid_reduction(self, employee: Employee, start: date, end: date) -> float:
        return sum_hours(self.unpaid_daily(employee, start, end).values())

    def adjusted_target(self, employee: Employee, start: date, end: date) -> float:
        return round(self.raw_target(employee, start, end) - self.unpaid_reduction(employee, start, end), 2)
