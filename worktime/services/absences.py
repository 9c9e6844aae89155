"""
Absence request workflow: request, approve, reject, delete.

Only approved absences reach the ledger. Every status change re-derives the
absence's postings in the same unit of work.
"""
from datetime import date
from typing import List, Optional

from worktime.core.exceptions import ConflictError, NotFoundError, ValidationError
from worktime.core.logging import bind_actor
from worktime.models.absence_request import AbsenceRequest, AbsenceStatus, AbsenceType
from worktime.models.time_entry import TimeEntry
from worktime.services.base import BaseService
from worktime.services.overtime_service import OvertimeService
from worktime.services.work_schedule import iter_days

_TYPES = {t.value for t in AbsenceType}


class AbsenceService(BaseService):

    def __init__(self, db, clock=None, overtime: Optional[OvertimeService] = None):
        super().__init__(db, clock)
        self.overtime = overtime or OvertimeService(db, self.clock)

    def get_absence(self, absence_id: int) -> AbsenceRequest:
        absence = self.db.get(AbsenceRequest, absence_id)
        if absence is None:
            raise NotFoundError("AbsenceRequest", absence_id)
        return absence

    def list_absences(self, employee_id: Optional[int] = None, status: Optional[str] = None) -> List[AbsenceRequest]:
        if status is not None and status not in {s.value for s in AbsenceStatus}:
            raise ValidationError(f"Unknown absence status '{status}'", field="status")
        query = self.db.query(AbsenceRequest)
        if employee_id is not None:
            query = query.filter(AbsenceRequest.employee_id == employee_id)
        if status is not None:
            query = query.filter(AbsenceRequest.status == status)
        return query.order_by(AbsenceRequest.start_date, AbsenceRequest.id).all()

    def days_required(self, employee, start: date, end: date) -> float:
        """Working days in [start, end]: Monday to Friday, holidays excluded."""
        region = self.overtime.resolver.region_for(employee)
        return float(sum(
            1 for day in iter_days(start, end)
            if day.weekday() < 5 and not self.overtime.calendar.is_holiday(day, region)
        ))

    def _overlapping(self, employee_id: int, start: date, end: date, exclude_id: Optional[int] = None) -> List[AbsenceRequest]:
        query = self.db.query(AbsenceRequest).filter(
            AbsenceRequest.employee_id == employee_id,
            AbsenceRequest.status.in_([AbsenceStatus.PENDING.value, AbsenceStatus.APPROVED.value]),
            AbsenceRequest.start_date <= end,
            AbsenceRequest.end_date >= start,
        )
        if exclude_id is not None:
            query = query.filter(AbsenceRequest.id != exclude_id)
        return query.all()

    def request_absence(
        self,
        employee_id: int,
        absence_type: str,
        start_date: date,
        end_date: date,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None
    ) -> AbsenceRequest:
        if absence_type not in _TYPES:
            raise ValidationError(f"Invalid absence type '{absence_type}'", field="type")
        if end_date < start_date:
            raise ValidationError("End date must not be before start date", field="end_date")

        with bind_actor(actor_id):
            with self.unit_of_work(employee_id) as employee:
                if start_date < employee.hire_date:
                    raise ValidationError("Absence starts before the hire date", field="start_date")
                overlapping = self._overlapping(employee_id, start_date, end_date)
                if overlapping:
                    raise ConflictError(
                        f"Overlaps absence request {overlapping[0].id} ({overlapping[0].status})",
                        details={"absence_ids": [a.id for a in overlapping]},
                    )
                entry_days = sorted({
                    row.date for row in self.db.query(TimeEntry.date).filter(
                        TimeEntry.employee_id == employee_id,
                        TimeEntry.date >= start_date,
                        TimeEntry.date <= end_date,
                    )
                })
                if entry_days:
                    raise ConflictError(
                        f"Time entries exist on {', '.join(d.isoformat() for d in entry_days)}",
                        details={"dates": [d.isoformat() for d in entry_days]},
                    )
                absence = AbsenceRequest(
                    employee_id=employee_id,
                    type=absence_type,
                    start_date=start_date,
                    end_date=end_date,
                    days_required=self.days_required(employee, start_date, end_date),
                    status=AbsenceStatus.PENDING.value,
                    reason=reason,
                )
                self.db.add(absence)
                self.db.flush()
            self._logger.info(
                f"Absence {absence.id} ({absence_type}) requested for employee {employee_id}: {start_date} - {end_date}"
            )
            return absence

    def _set_status(self, absence_id: int, status: str, actor_id: Optional[int], note: Optional[str]) -> AbsenceRequest:
        if actor_id is None:
            raise ValidationError("Approving or rejecting an absence requires the acting user", field="actor_id")
        absence = self.get_absence(absence_id)
        if absence.status == status:
            raise ConflictError(f"Absence {absence_id} is already {status}")

        with bind_actor(actor_id):
            with self.unit_of_work(absence.employee_id) as employee:
                absence.status = status
                absence.approved_by = actor_id
                absence.approved_at = self.clock.utcnow_naive()
                if note is not None:
                    absence.admin_note = note
                self.db.flush()
                affected = self.overtime.reconcile_absence(employee, absence.id, actor_id)
            self._logger.info(f"Absence {absence_id} {status} by {actor_id}, {len(affected)} ledger date(s) changed")
            self.overtime.reconciler.refresh_for_dates(absence.employee_id, affected)
            return absence

    def approve(self, absence_id: int, actor_id: Optional[int], note: Optional[str] = None) -> AbsenceRequest:
        return self._set_status(absence_id, AbsenceStatus.APPROVED.value, actor_id, note)

    def reject(self, absence_id: int, actor_id: Optional[int], note: Optional[str] = None) -> AbsenceRequest:
        return self._set_status(absence_id, AbsenceStatus.REJECTED.value, actor_id, note)

    def delete_absence(self, absence_id: int, actor_id: Optional[int] = None):
        absence = self.get_absence(absence_id)
        employee_id = absence.employee_id
        with bind_actor(actor_id):
            with self.unit_of_work(employee_id) as employee:
                self.db.delete(absence)
                self.db.flush()
                affected = self.overtime.reconcile_absence(employee, absence_id, actor_id)
            self._logger.info(f"Absence {absence_id} of employee {employee_id} deleted")
            self.overtime.reconciler.refresh_for_dates(employee_id, affected)
