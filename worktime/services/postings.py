"""
Derivation of ledger postings from source records.

Per worked day:  one ``earned`` posting = worked hours - raw daily target (omitted when 0)
Per absence:     one credit (or ``unpaid_adjustment``) per covered day with a positive target
Per correction:  one ``correction`` posting with the signed correction hours

Summed over any period these equal actual hours - adjusted target, the
overtime the period snapshots report. Both sides are computed by the same
calculator instances.
"""
from datetime import date
from typing import Dict, List

from worktime.models.employee import Employee
from worktime.models.absence_request import AbsenceRequest
from worktime.models.correction import Correction
from worktime.models.overtime_transaction import ABSENCE_TRANSACTION_TYPES, TransactionType
from worktime.services.ledger import Posting
from worktime.services.target_hours import TargetHoursCalculator
from worktime.services.actual_hours import ActualHoursAggregator


class PostingBuilder:

    def __init__(self, targets: TargetHoursCalculator, actuals: ActualHoursAggregator):
        self.targets = targets
        self.actuals = actuals

    def work_day_postings_range(self, employee: Employee, start: date, end: date) -> Dict[date, List[Posting]]:
        """``earned`` postings for every day of the effective window in [start, end]."""
        raw = self.targets.raw_daily(employee, start, end)
        worked = self.actuals.worked_daily(employee, start, end)
        postings: Dict[date, List[Posting]] = {}
        for day, target in raw.items():
            delta = round(worked.get(day, 0.0) - target, 2)
            if delta != 0:
                postings[day] = [Posting(
                    day,
                    TransactionType.EARNED.value,
                    delta,
                    f"Worked {worked.get(day, 0.0):.2f}h of {target:.2f}h target",
                )]
        return postings

    def work_day_postings(self, employee: Employee, day: date) -> List[Posting]:
        return self.work_day_postings_range(employee, day, day).get(day, [])

    def absence_postings(self, employee: Employee, absence: AbsenceRequest) -> List[Posting]:
        """Postings of an approved absence, one per covered working day so far."""
        if not absence.is_approved:
            return []
        transaction_type = ABSENCE_TRANSACTION_TYPES.get(absence.type)
        if transaction_type is None:
            return []
        days = self.targets.absence_daily(employee, absence, absence.start_date, absence.end_date)
        return [
            Posting(day, transaction_type, hours, f"{absence.type} absence #{absence.id}")
            for day, hours in sorted(days.items())
        ]

    @staticmethod
    def correction_postings(correction: Correction) -> List[Posting]:
        if correction.is_deleted:
            return []
        return [Posting(
            correction.date,
            TransactionType.CORRECTION.value,
            correction.hours,
            f"{correction.correction_type}: {correction.reason}",
        )]
