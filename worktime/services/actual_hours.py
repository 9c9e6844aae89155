"""
Actual (Ist) hours: worked time + paid absence credits + corrections.
"""
import logging
from datetime import date
from typing import Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from worktime.models.employee import Employee
from worktime.models.time_entry import TimeEntry
from worktime.models.absence_request import PAID_ABSENCE_TYPES
from worktime.models.overtime_transaction import OvertimeTransaction, TransactionType
from worktime.services.target_hours import TargetHoursCalculator, approved_absences, sum_hours

logger = logging.getLogger(__name__)


class ActualHoursAggregator:
    """
    Sums the three sources of actual hours over the same effective window
    the target calculator uses. Same-day worked/absence conflicts are
    counted as they are and reported with a warning; preventing them is
    the job of the entry validation layer.
    """

    def __init__(self, db: Session, targets: TargetHoursCalculator):
        self.db = db
        self.targets = targets

    def worked_daily(self, employee: Employee, start: date, end: date) -> Dict[date, float]:
        window = self.targets.window(employee, start, end)
        if window is None:
            return {}
        rows = (
            self.db.query(TimeEntry.date, func.sum(TimeEntry.hours))
            .filter(
                TimeEntry.employee_id == employee.id,
                TimeEntry.date >= window[0],
                TimeEntry.date <= window[1],
            )
            .group_by(TimeEntry.date)
            .all()
        )
        return {day: round(total or 0.0, 2) for day, total in rows}

    def absence_credit_daily(self, employee: Employee, start: date, end: date) -> Dict[date, float]:
        credits: Dict[date, float] = {}
        for absence in approved_absences(self.db, employee.id, start, end, PAID_ABSENCE_TYPES):
            for day, hours in self.targets.absence_daily(employee, absence, start, end).items():
                credits[day] = round(credits.get(day, 0.0) + hours, 2)
        return credits

    def correction_daily(self, employee: Employee, start: date, end: date) -> Dict[date, float]:
        """Correction postings as recorded in the ledger."""
        window = self.targets.window(employee, start, end)
        if window is None:
            return {}
        rows = (
            self.db.query(OvertimeTransaction.date, func.sum(OvertimeTransaction.hours))
            .filter(
                OvertimeTransaction.employee_id == employee.id,
                OvertimeTransaction.type == TransactionType.CORRECTION.value,
                OvertimeTransaction.date >= window[0],
                OvertimeTransaction.date <= window[1],
            )
            .group_by(OvertimeTransaction.date)
            .all()
        )
        return {day: round(total or 0.0, 2) for day, total in rows}

    def worked_hours(self, employee: Employee, start: date, end: date) -> float:
        return sum_hours(self.worked_daily(employee, start, end).values())

    def absence_credits(self, employee: Employee, start: date, end: date) -> float:
        return sum_hours(self.absence_credit_daily(employee, start, end).values())

    def correction_total(self, employee: Employee, start: date, end: date) -> float:
        return sum_hours(self.correction_daily(employee, start, end).values())

    def actual_hours(self, employee: Employee, start: date, end: date) -> float:
        worked = self.worked_daily(employee, start, end)
        credits = self.absence_credit_daily(employee, start, end)
        self.report_conflicts(employee, worked, credits)
        return round(
            sum_hours(worked.values())
            + sum_hours(credits.values())
            + self.correction_total(employee, start, end),
            2,
        )

    def report_conflicts(self, employee: Employee, worked: Dict[date, float], credits: Dict[date, float]):
        conflicts = sorted(day for day in worked if worked[day] > 0 and credits.get(day, 0) > 0)
        if conflicts:
            logger.warning(
                f"Employee {employee.id} has time entries on paid absence days: "
                f"{', '.join(d.isoformat() for d in conflicts)}"
            )
        return conflicts
