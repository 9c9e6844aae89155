"""
Year-end rollover.

Closes year N-1 for every active employee:
- one ``carryover`` ledger transaction dated Jan 1 of year N, equal to the
  ledger balance at Dec 31 of N-1 (posted even when 0, so the year is
  marked as rolled over);
- the vacation balance of year N, with a capped carryover of unused days
  and a pro-rata entitlement for employees hired during year N.

Idempotent per (employee, year): an existing carryover means the employee
is skipped.
"""
import math
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func

from worktime.core.config import settings
from worktime.core.exceptions import AppException, ValidationError
from worktime.models.employee import Employee, EmployeeStatus
from worktime.models.absence_request import AbsenceRequest, AbsenceStatus, AbsenceType
from worktime.models.overtime_transaction import ReferenceType, TransactionType
from worktime.models.vacation_balance import VacationBalance
from worktime.services.audit import AuditService
from worktime.services.base import BaseService
from worktime.services.batch import SKIPPED, SUCCEEDED, BatchReport, run_for_employees
from worktime.services.ledger import OvertimeLedger

ROLLOVER_ACTION = "year_end_rollover"


def validate_year(year: int) -> int:
    if not isinstance(year, int) or year < 2000 or year > 2100:
        raise ValidationError(f"Invalid year {year}, expected 2000-2100", field="year")
    return year


def prorata_entitlement(hire_date: date, days_per_year: float, year: int) -> float:
    """
    Vacation entitlement for ``year``: full when hired before it, 0 when
    hired after it, otherwise the share of the year from the hire day on,
    rounded to half days.
    """
    if hire_date.year < year:
        return days_per_year
    if hire_date.year > year:
        return 0.0
    days_remaining = (date(year, 12, 31) - hire_date).days + 1
    share = days_remaining / 365 * days_per_year
    return math.floor(share * 2 + 0.5) / 2


class YearEndRolloverEngine(BaseService):

    def __init__(self, db, clock, ledger: OvertimeLedger, reconciler):
        super().__init__(db, clock)
        self.ledger = ledger
        self.reconciler = reconciler
        self.audit = AuditService(db, clock)

    def _active_employees(self) -> List[Employee]:
        return (
            self.db.query(Employee)
            .filter(Employee.status == EmployeeStatus.ACTIVE.value)
            .order_by(Employee.id)
            .all()
        )

    @staticmethod
    def annual_days(employee: Employee) -> float:
        if employee.vacation_days_per_year is not None:
            return employee.vacation_days_per_year
        return settings.vacation.default_days_per_year

    def taken_vacation_days(self, employee_id: int, year: int) -> float:
        taken = (
            self.db.query(func.sum(AbsenceRequest.days_required))
            .filter(
                AbsenceRequest.employee_id == employee_id,
                AbsenceRequest.type == AbsenceType.VACATION.value,
                AbsenceRequest.status == AbsenceStatus.APPROVED.value,
                AbsenceRequest.start_date >= date(year, 1, 1),
                AbsenceRequest.start_date <= date(year, 12, 31),
            )
            .scalar()
        )
        return float(taken or 0.0)

    def remaining_vacation(self, employee: Employee, year: int) -> float:
        """Unused vacation days of ``year``, from its balance row or derived from approvals."""
        balance = (
            self.db.query(VacationBalance)
            .filter(VacationBalance.employee_id == employee.id, VacationBalance.year == year)
            .first()
        )
        if balance is not None:
            return balance.remaining
        entitlement = prorata_entitlement(employee.hire_date, self.annual_days(employee), year)
        return entitlement - self.taken_vacation_days(employee.id, year)

    def vacation_carryover(self, employee: Employee, year: int) -> float:
        remaining = self.remaining_vacation(employee, year - 1)
        return min(max(remaining, 0.0), settings.vacation.carryover_cap_days)

    def preview(self, year: int) -> Dict[str, Any]:
        """What a rollover into ``year`` would do, without writing anything."""
        validate_year(year)
        closing_day = date(year - 1, 12, 31)
        rows = []
        for employee in self._active_employees():
            warnings = []
            if employee.hire_date.year >= year:
                warnings.append(f"Hired in {employee.hire_date.year} - no carryover expected")
            if employee.termination_date is not None and employee.termination_date < date(year, 1, 1):
                warnings.append(f"Terminated on {employee.termination_date.isoformat()}")
            overtime = self.ledger.get_balance_at(employee.id, closing_day)
            if overtime < 0:
                warnings.append(f"Negative overtime balance {overtime:.2f}h will be carried over")
            rows.append({
                "employee_id": employee.id,
                "name": employee.full_name,
                "overtime_carryover": overtime,
                "vacation_carryover": self.vacation_carryover(employee, year),
                "vacation_entitlement": prorata_entitlement(employee.hire_date, self.annual_days(employee), year),
                "already_rolled_over": self.ledger.carryover_for_year(employee.id, year) is not None,
                "warnings": warnings,
            })
        return {"year": year, "employees": rows, "total": len(rows)}

    def rollover_employee(self, employee_id: int, year: int, initiated_by: Optional[int]) -> Tuple[str, Optional[Dict[str, Any]]]:
        opening_day = date(year, 1, 1)
        closing_day = date(year - 1, 12, 31)
        with self.unit_of_work(employee_id) as employee:
            if self.ledger.carryover_for_year(employee_id, year) is not None:
                return SKIPPED, {"reason": f"Carryover for {year} already exists"}

            result: Dict[str, Any] = {"overtime_carryover": None}
            if employee.hire_date <= closing_day:
                self.reconciler.sync_postings(employee, employee.hire_date, closing_day, created_by=initiated_by)
                balance = self.ledger.get_balance_at(employee_id, closing_day)
                tx = self.ledger.append_transaction(
                    employee_id,
                    opening_day,
                    TransactionType.CARRYOVER.value,
                    balance,
                    ReferenceType.YEAR_END.value,
                    year,
                    created_by=initiated_by,
                    description=f"Overtime carryover from {year - 1}",
                )
                result["overtime_carryover"] = tx.hours

            vacation = (
                self.db.query(VacationBalance)
                .filter(VacationBalance.employee_id == employee_id, VacationBalance.year == year)
                .first()
            )
            if vacation is None:
                vacation = VacationBalance(
                    employee_id=employee_id,
                    year=year,
                    entitlement=prorata_entitlement(employee.hire_date, self.annual_days(employee), year),
                    carryover=self.vacation_carryover(employee, year),
                    taken=self.taken_vacation_days(employee_id, year),
                    created_at=self.clock.utcnow_naive(),
                )
                self.db.add(vacation)
                self.db.flush()
            result["vacation_entitlement"] = vacation.entitlement
            result["vacation_carryover"] = vacation.carryover

        # The rollover is committed at this point; a failing refresh does not undo it
        if result["overtime_carryover"] is not None and opening_day <= self.clock.today():
            try:
                self.reconciler.refresh_for_dates(employee_id, [opening_day])
            except AppException as e:
                self._logger.warning(
                    f"Rollover {year} of employee {employee_id} stored, snapshot refresh failed: {e.error_code} {e.message}"
                )
                result["snapshot_refresh_error"] = {"error_code": e.error_code, "message": e.message}
        return SUCCEEDED, result

    def perform_rollover(
        self,
        year: int,
        initiated_by: Optional[int],
        should_cancel: Optional[Callable[[], bool]] = None
    ) -> BatchReport:
        """
        Roll every active employee into ``year``. Per-employee failures are
        collected in the report; they never stop the batch.
        """
        validate_year(year)
        employee_ids = [e.id for e in self._active_employees()]
        self._logger.info(f"Year-end rollover into {year} started for {len(employee_ids)} employee(s)")

        report = run_for_employees(
            self.db,
            self.clock,
            f"{ROLLOVER_ACTION}:{year}",
            employee_ids,
            lambda employee_id: self.rollover_employee(employee_id, year, initiated_by),
            should_cancel=should_cancel,
        )

        summary = report.to_dict()
        self.audit.log_action(
            action=ROLLOVER_ACTION,
            entity_type="system",
            entity_id=year,
            user_id=initiated_by,
            details={
                "year": year,
                "total": summary["total"],
                "succeeded": summary["succeeded"],
                "failed": summary["failed"],
                "skipped": summary["skipped"],
                "cancelled": summary["cancelled"],
            },
        )
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return report

    def history(self, limit: int = 20) -> List[Dict[str, Any]]:
        return [
            {
                "id": entry.id,
                "year": (entry.details or {}).get("year"),
                "executed_at": entry.created_at.isoformat(),
                "executed_by": entry.user_id,
                "summary": entry.details,
            }
            for entry in self.audit.entries(action=ROLLOVER_ACTION, limit=limit)
        ]
