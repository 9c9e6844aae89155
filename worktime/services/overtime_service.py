"""
Overtime Service Layer

Single entry point for HTTP handlers, CLI scripts and report generators.
It wires one set of calculator, ledger and reconciler instances per
session, so reads and writes always go through the same arithmetic.

Architecture:
- Router / script -> OvertimeService (this module) -> components -> models
- Every mutation takes the acting user id explicitly
"""
from datetime import date
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from worktime.core.clock import Clock
from worktime.core.exceptions import NotFoundError
from worktime.core.logging import bind_actor
from worktime.models.employee import Employee, EmployeeStatus
from worktime.models.absence_request import AbsenceRequest
from worktime.models.correction import Correction
from worktime.models.overtime_transaction import OvertimeTransaction, ReferenceType
from worktime.models.period_balance import PeriodBalance
from worktime.services.audit import AuditService
from worktime.services.base import BaseService
from worktime.services.batch import SUCCEEDED, BatchReport, run_for_employees
from worktime.services.balance_reconciler import BalanceReconciler
from worktime.services.corrections import CorrectionManager
from worktime.services.ledger import HistoryCursor, HistoryFilter, OvertimeLedger
from worktime.services.postings import PostingBuilder
from worktime.services.target_hours import TargetHoursCalculator
from worktime.services.actual_hours import ActualHoursAggregator
from worktime.services.work_schedule import HolidayCalendar, WorkScheduleResolver
from worktime.services.year_end_rollover import YearEndRolloverEngine


class OvertimeService(BaseService):

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock)
        self.calendar = HolidayCalendar(db)
        self.resolver = WorkScheduleResolver(self.calendar)
        self.targets = TargetHoursCalculator(db, self.resolver, self.clock)
        self.actuals = ActualHoursAggregator(db, self.targets)
        self.postings = PostingBuilder(self.targets, self.actuals)
        self.ledger = OvertimeLedger(db, self.clock)
        self.reconciler = BalanceReconciler(
            db, self.clock, self.ledger, self.targets, self.actuals, self.postings
        )
        self.corrections = CorrectionManager(db, self.clock, self.ledger, self.reconciler)
        self.rollover = YearEndRolloverEngine(db, self.clock, self.ledger, self.reconciler)
        self.audit = AuditService(db, self.clock)

    # ------------------------------------------------------------- triggers

    def reconcile_work_day(self, employee: Employee, day: date, actor_id: Optional[int] = None) -> List[date]:
        """Re-derive the ledger posting of one worked day. Runs inside the caller's unit of work."""
        postings = self.postings.work_day_postings(employee, day)
        return self.ledger.reconcile_reference(
            employee.id, ReferenceType.WORK_DAY.value, day.isoformat(), postings, created_by=actor_id
        )

    def reconcile_absence(self, employee: Employee, absence_id: int, actor_id: Optional[int] = None) -> List[date]:
        """Re-derive the ledger postings of one absence; a missing absence removes them."""
        absence = self.db.get(AbsenceRequest, absence_id)
        if absence is not None and absence.employee_id != employee.id:
            raise NotFoundError("AbsenceRequest", absence_id)
        postings = self.postings.absence_postings(employee, absence) if absence is not None else None
        return self.ledger.reconcile_reference(
            employee.id, ReferenceType.ABSENCE.value, absence_id, postings, created_by=actor_id
        )

    def on_time_entry_changed(self, employee_id: int, day: date, actor_id: Optional[int] = None) -> List[date]:
        with bind_actor(actor_id):
            with self.unit_of_work(employee_id) as employee:
                affected = self.reconcile_work_day(employee, day, actor_id)
            self.reconciler.refresh_for_dates(employee_id, affected or [day])
            self._logger.info(f"Time entries of employee {employee_id} on {day} reconciled")
            return affected

    def on_absence_status_changed(self, employee_id: int, absence_id: int, actor_id: Optional[int] = None) -> List[date]:
        with bind_actor(actor_id):
            with self.unit_of_work(employee_id) as employee:
                affected = self.reconcile_absence(employee, absence_id, actor_id)
            self.reconciler.refresh_for_dates(employee_id, affected)
            self._logger.info(
                f"Absence {absence_id} of employee {employee_id} reconciled, {len(affected)} ledger date(s) changed"
            )
            return affected

    # ----------------------------------------------------------- maintenance

    def ensure_balances(self, employee_id: int, through: Union[date, str], actor_id: Optional[int] = None) -> Dict[str, Any]:
        with bind_actor(actor_id):
            return self.reconciler.ensure_period_balances(employee_id, through, actor_id=actor_id)

    def force_recalculate(self, employee_id: int, actor_id: Optional[int] = None) -> Dict[str, Any]:
        with bind_actor(actor_id):
            return self.reconciler.force_recalculate(employee_id, actor_id=actor_id)

    def active_employee_ids(self) -> List[int]:
        return [
            row.id for row in
            self.db.query(Employee.id).filter(Employee.status == EmployeeStatus.ACTIVE.value).order_by(Employee.id)
        ]

    def recalculate_all(
        self,
        actor_id: Optional[int] = None,
        should_cancel: Optional[Callable[[], bool]] = None
    ) -> BatchReport:
        """Force-recalculate every active employee, each in its own committed unit."""
        with bind_actor(actor_id):
            report = run_for_employees(
                self.db,
                self.clock,
                "recalculate_all",
                self.active_employee_ids(),
                lambda employee_id: (SUCCEEDED, self.reconciler.force_recalculate(employee_id, actor_id=actor_id)),
                should_cancel=should_cancel,
            )
            self.audit.log_action(
                action="overtime_recalculated_all",
                entity_type="system",
                entity_id=None,
                user_id=actor_id,
                details={k: v for k, v in report.to_dict().items() if k != "items"},
            )
            try:
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            return report

    # ----------------------------------------------------------------- reads

    def get_balance(self, employee_id: int) -> Dict[str, Any]:
        employee = self.get_employee(employee_id)
        today = self.clock.today()
        carryover = self.ledger.carryover_for_year(employee_id, today.year)
        last = next(self.ledger.get_history(employee_id, HistoryFilter(limit=1)), None)
        return {
            "employee_id": employee.id,
            "balance": self.ledger.get_current_balance(employee_id),
            "as_of": today.isoformat(),
            "carryover_from_previous_year": carryover.hours if carryover else 0.0,
            "last_transaction_date": last.date.isoformat() if last else None,
        }

    def get_balance_at(self, employee_id: int, day: date) -> float:
        self.get_employee(employee_id)
        return self.ledger.get_balance_at(employee_id, day)

    def get_year_end_balance(self, employee_id: int, year: int) -> float:
        return self.get_balance_at(employee_id, date(year, 12, 31))

    def get_history(
        self,
        employee_id: int,
        filters: Optional[HistoryFilter] = None,
        cursor: Optional[str] = None
    ) -> Iterator[OvertimeTransaction]:
        self.get_employee(employee_id)
        position = HistoryCursor.decode(cursor) if cursor else None
        return self.ledger.get_history(employee_id, filters, position)

    def get_history_page(
        self,
        employee_id: int,
        filters: Optional[HistoryFilter] = None,
        cursor: Optional[str] = None,
        size: Optional[int] = None
    ) -> Tuple[List[OvertimeTransaction], Optional[str]]:
        self.get_employee(employee_id)
        position = HistoryCursor.decode(cursor) if cursor else None
        rows, next_position = self.ledger.history_page(employee_id, filters, position, size)
        return rows, next_position.encode() if next_position else None

    def get_period_balances(
        self,
        employee_id: int,
        period_type: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[PeriodBalance]:
        return self.reconciler.get_period_balances(employee_id, period_type, from_date, to_date)

    # ----------------------------------------------------------- corrections

    def create_correction(
        self,
        employee_id: int,
        day: date,
        hours: float,
        reason: str,
        correction_type: str,
        actor_id: Optional[int],
        approved_by: Optional[int] = None
    ) -> Correction:
        with bind_actor(actor_id):
            return self.corrections.create_correction(
                employee_id, day, hours, reason, correction_type, actor_id, approved_by=approved_by
            )

    def delete_correction(self, correction_id: int, actor_id: Optional[int]) -> Correction:
        with bind_actor(actor_id):
            return self.corrections.delete_correction(correction_id, actor_id)

    def list_corrections(self, **filters) -> List[Correction]:
        return self.corrections.list_corrections(**filters)

    # -------------------------------------------------------------- year end

    def perform_year_end_rollover(
        self,
        year: int,
        actor_id: Optional[int],
        should_cancel: Optional[Callable[[], bool]] = None
    ) -> BatchReport:
        with bind_actor(actor_id):
            return self.rollover.perform_rollover(year, actor_id, should_cancel=should_cancel)

    def preview_year_end(self, year: int) -> Dict[str, Any]:
        return self.rollover.preview(year)

    def year_end_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self.rollover.history(limit)
