"""
Manual overtime corrections.

A correction is an admin adjustment with a mandatory reason. It reaches the
ledger as one ``correction`` transaction referencing the correction row.
Deleting a correction removes that transaction and keeps the row (with
deleted_at / deleted_by) for audit.
"""
import math
from datetime import date
from typing import List, Optional

from worktime.core.config import settings
from worktime.core.exceptions import ConflictError, NotFoundError, ValidationError
from worktime.models.correction import Correction
from worktime.models.overtime_transaction import ReferenceType, TransactionType
from worktime.services.audit import AuditService
from worktime.services.base import BaseService
from worktime.services.ledger import OvertimeLedger


def _snapshot(correction: Correction) -> dict:
    return {
        "id": correction.id,
        "employee_id": correction.employee_id,
        "date": correction.date,
        "hours": correction.hours,
        "reason": correction.reason,
        "correction_type": correction.correction_type,
        "deleted_at": correction.deleted_at,
    }


class CorrectionManager(BaseService):

    def __init__(self, db, clock, ledger: OvertimeLedger, reconciler):
        super().__init__(db, clock)
        self.ledger = ledger
        self.reconciler = reconciler
        self.audit = AuditService(db, clock)

    def validate(self, day: date, hours: float, reason: str, correction_type: str, created_by: Optional[int]):
        """
        Raises:
            ValidationError: with the offending field
        """
        if created_by is None:
            raise ValidationError("Corrections require the acting user", field="created_by")
        min_length = settings.corrections.reason_min_length
        if not reason or len(reason.strip()) < min_length:
            raise ValidationError(f"Reason must be at least {min_length} characters", field="reason")
        if hours is None or not math.isfinite(hours) or round(hours, 2) == 0:
            raise ValidationError("Correction hours must be a non-zero number", field="hours")
        if correction_type not in settings.corrections.allowed_types:
            raise ValidationError(
                f"Invalid correction type '{correction_type}', expected one of "
                f"{', '.join(settings.corrections.allowed_types)}",
                field="correction_type",
            )
        if day > self.clock.today():
            raise ValidationError("Corrections cannot be dated in the future", field="date")

    def create_correction(
        self,
        employee_id: int,
        day: date,
        hours: float,
        reason: str,
        correction_type: str,
        created_by: Optional[int],
        approved_by: Optional[int] = None
    ) -> Correction:
        """
        Record a correction and post it to the ledger.

        Args:
            employee_id: Employee whose balance is corrected
            day: Date the correction is booked on (within employment, not in the future)
            hours: Signed hours, non-zero
            reason: Free text justification
            correction_type: One of the configured correction types
            created_by: Acting user id

        Returns:
            The stored Correction
        """
        self.validate(day, hours, reason, correction_type, created_by)

        with self.unit_of_work(employee_id) as employee:
            if not employee.is_employed_on(day):
                raise ValidationError(
                    f"{day} is outside the employment period of employee {employee_id}", field="date"
                )
            now = self.clock.utcnow_naive()
            correction = Correction(
                employee_id=employee_id,
                date=day,
                hours=round(hours, 2),
                reason=reason.strip(),
                correction_type=correction_type,
                created_by=created_by,
                approved_by=approved_by,
                approved_at=now if approved_by is not None else None,
                created_at=now,
            )
            self.db.add(correction)
            self.db.flush()

            self.ledger.append_transaction(
                employee_id,
                day,
                TransactionType.CORRECTION.value,
                correction.hours,
                ReferenceType.CORRECTION.value,
                correction.id,
                created_by=created_by,
                description=f"{correction_type}: {correction.reason}",
            )
            self.audit.log_action(
                action="correction_created",
                entity_type="overtime_correction",
                entity_id=correction.id,
                user_id=created_by,
                details={"employee_id": employee_id},
                after_state=_snapshot(correction),
            )

        self._logger.info(
            f"Correction {correction.id} created for employee {employee_id}: {correction.hours:+.2f}h on {day}"
        )
        self.reconciler.refresh_for_dates(employee_id, [day])
        return correction

    def get_correction(self, correction_id: int) -> Correction:
        correction = self.db.get(Correction, correction_id)
        if correction is None:
            raise NotFoundError("Correction", correction_id)
        return correction

    def delete_correction(self, correction_id: int, deleted_by: Optional[int]) -> Correction:
        """
        Remove the correction's ledger effect. The row itself is kept,
        marked deleted.

        Raises:
            NotFoundError: unknown correction
            ConflictError: the correction was already deleted
        """
        if deleted_by is None:
            raise ValidationError("Deleting a correction requires the acting user", field="deleted_by")
        correction = self.get_correction(correction_id)
        if correction.is_deleted:
            raise ConflictError(
                f"Correction {correction_id} was already deleted",
                details={"deleted_at": correction.deleted_at.isoformat(), "deleted_by": correction.deleted_by},
            )

        employee_id = correction.employee_id
        with self.unit_of_work(employee_id):
            before = _snapshot(correction)
            correction.deleted_at = self.clock.utcnow_naive()
            correction.deleted_by = deleted_by
            self.db.flush()
            affected = self.ledger.reconcile_reference(
                employee_id, ReferenceType.CORRECTION.value, correction.id, None, created_by=deleted_by
            )
            self.audit.log_action(
                action="correction_deleted",
                entity_type="overtime_correction",
                entity_id=correction.id,
                user_id=deleted_by,
                details={"employee_id": employee_id, "ledger_dates": affected},
                before_state=before,
                after_state=_snapshot(correction),
            )

        self._logger.info(f"Correction {correction_id} of employee {employee_id} deleted by {deleted_by}")
        self.reconciler.refresh_for_dates(employee_id, affected or [correction.date])
        return correction

    def list_corrections(
        self,
        employee_id: Optional[int] = None,
        year: Optional[int] = None,
        month: Optional[int] = None,
        include_deleted: bool = False
    ) -> List[Correction]:
        query = self.db.query(Correction)
        if employee_id is not None:
            query = query.filter(Correction.employee_id == employee_id)
        if year is not None:
            start, end = date(year, 1, 1), date(year, 12, 31)
            if month is not None:
                if not 1 <= month <= 12:
                    raise ValidationError("Month must be between 1 and 12", field="month")
                start = date(year, month, 1)
                end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
                query = query.filter(Correction.date < end)
            else:
                query = query.filter(Correction.date <= end)
            query = query.filter(Correction.date >= start)
        if not include_deleted:
            query = query.filter(Correction.deleted_at.is_(None))
        return query.order_by(Correction.date.desc(), Correction.id.desc()).all()
