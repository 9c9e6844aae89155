"""
Balance Reconciler

Keeps the derived views in step with the source records:

1. ledger postings derived from time entries, absences and corrections are
   synced (only references whose rows differ are rewritten);
2. day/week/month snapshots are recomputed from the calculators and only
   changed rows are written;
3. every month snapshot is checked against the ledger: its overtime must
   equal the sum of the month's ledger hours (carryover excluded) within
   the configured tolerance. Mismatching months are stored as
   ``pending_verification`` and reported with an IntegrityError once the
   unit of work has committed. ``force_recalculate`` is the repair.
"""
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from worktime.core.config import settings
from worktime.core.exceptions import IntegrityError, ValidationError
from worktime.models.employee import Employee
from worktime.models.absence_request import AbsenceRequest
from worktime.models.correction import Correction
from worktime.models.overtime_transaction import ReferenceType, TransactionType
from worktime.models.period_balance import PeriodBalance, PeriodType, VerificationStatus
from worktime.services.audit import AuditService
from worktime.services.base import BaseService
from worktime.services.ledger import OvertimeLedger, Posting, ReferenceKey
from worktime.services.postings import PostingBuilder
from worktime.services.target_hours import TargetHoursCalculator
from worktime.services.actual_hours import ActualHoursAggregator
from worktime.services.work_schedule import iter_days

REFERENCE_TYPES = {r.value for r in ReferenceType}
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class Period:
    period_type: str
    key: str
    start: date
    end: date


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year, 12, 31)
    return date(year, month + 1, 1) - timedelta(days=1)


def day_period(day: date) -> Period:
    return Period(PeriodType.DAY.value, day.isoformat(), day, day)


def week_period(day: date) -> Period:
    monday = day - timedelta(days=day.weekday())
    return Period(PeriodType.WEEK.value, day.strftime("%G-W%V"), monday, monday + timedelta(days=6))


def month_period(day: date) -> Period:
    return Period(PeriodType.MONTH.value, day.strftime("%Y-%m"), day.replace(day=1), month_end(day.year, day.month))


def periods_covering(days: Iterable[date]) -> List[Period]:
    """Distinct day, week and month periods containing the given days."""
    seen: Dict[Tuple[str, str], Period] = {}
    for day in days:
        for period in (day_period(day), week_period(day), month_period(day)):
            seen.setdefault((period.period_type, period.key), period)
    return sorted(seen.values(), key=lambda p: (p.start, p.period_type))


def resolve_through(through: Union[date, str]) -> date:
    """Accepts a date, 'YYYY-MM-DD' or 'YYYY-MM' (end of that month)."""
    if isinstance(through, date):
        return through
    match = _MONTH_RE.match(through or "")
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        if 1 <= month <= 12:
            return month_end(year, month)
    try:
        return date.fromisoformat(through)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid period '{through}', expected YYYY-MM or YYYY-MM-DD", field="through")


class BalanceReconciler(BaseService):

    def __init__(
        self,
        db,
        clock,
        ledger: OvertimeLedger,
        targets: TargetHoursCalculator,
        actuals: ActualHoursAggregator,
        postings: PostingBuilder
    ):
        super().__init__(db, clock)
        self.ledger = ledger
        self.targets = targets
        self.actuals = actuals
        self.postings = postings
        self.audit = AuditService(db, clock)

    # ------------------------------------------------------- ledger postings

    def derived_changes(
        self,
        employee: Employee,
        start: date,
        end: date,
        prune: bool = False
    ) -> Dict[ReferenceKey, Optional[List[Posting]]]:
        """
        Expected postings per source reference.

        Work days are derived for [start, end]; absences and corrections in
        full. With ``prune`` every ledger row without a live source (work
        days outside the window, deleted absences or corrections, unknown
        reference types) is scheduled for removal. Carryover rows are kept.
        """
        changes: Dict[ReferenceKey, Optional[List[Posting]]] = {}

        work_day = ReferenceType.WORK_DAY.value
        existing_days = self.ledger.rows_by_reference(
            employee.id, work_day, None if prune else start, None if prune else end
        )
        for key in existing_days:
            changes[key] = None
        for day, postings in self.postings.work_day_postings_range(employee, start, end).items():
            changes[(work_day, day.isoformat())] = postings

        absence_ref = ReferenceType.ABSENCE.value
        for key in self.ledger.rows_by_reference(employee.id, absence_ref):
            changes[key] = None
        absences = self.db.query(AbsenceRequest).filter(AbsenceRequest.employee_id == employee.id).all()
        for absence in absences:
            postings = self.postings.absence_postings(employee, absence)
            if postings or (absence_ref, str(absence.id)) in changes:
                changes[(absence_ref, str(absence.id))] = postings

        correction_ref = ReferenceType.CORRECTION.value
        for key in self.ledger.rows_by_reference(employee.id, correction_ref):
            changes[key] = None
        corrections = self.db.query(Correction).filter(Correction.employee_id == employee.id).all()
        for correction in corrections:
            postings = self.postings.correction_postings(correction)
            if postings or (correction_ref, str(correction.id)) in changes:
                changes[(correction_ref, str(correction.id))] = postings

        if prune:
            for key in self.ledger.rows_by_reference(employee.id):
                if key[0] not in REFERENCE_TYPES:
                    changes[key] = None
        return changes

    def sync_postings(
        self,
        employee: Employee,
        start: date,
        end: date,
        created_by: Optional[int] = None,
        prune: bool = False
    ) -> List[date]:
        changes = self.derived_changes(employee, start, end, prune=prune)
        affected = self.ledger.reconcile_references(employee.id, changes, created_by=created_by)
        if affected:
            self._logger.info(
                f"Ledger postings synced for employee {employee.id}: {len(affected)} date(s) changed, "
                f"earliest {affected[0]}"
            )
        return affected

    # ------------------------------------------------------------- snapshots

    def compute_snapshots(self, employee: Employee, periods: List[Period]) -> Dict[Tuple[str, str], Dict[str, Any]]:
        """
        Snapshot values for each period, clipped to the effective window.
        Periods entirely outside the window are left out.
        """
        if not periods:
            return {}
        lo = min(p.start for p in periods)
        hi = max(p.end for p in periods)
        window = self.targets.window(employee, lo, hi)
        if window is None:
            return {}

        raw = self.targets.raw_daily(employee, *window)
        unpaid = self.targets.unpaid_daily(employee, *window)
        worked = self.actuals.worked_daily(employee, *window)
        credits = self.actuals.absence_credit_daily(employee, *window)
        corrections = self.actuals.correction_daily(employee, *window)
        self.actuals.report_conflicts(employee, worked, credits)

        carryovers: Dict[int, float] = {}
        snapshots = {}
        for period in periods:
            start, end = max(period.start, window[0]), min(period.end, window[1])
            if start > end:
                continue
            days = list(iter_days(start, end))
            raw_target = round(sum(raw.get(d, 0.0) for d in days), 2)
            unpaid_reduction = round(sum(unpaid.get(d, 0.0) for d in days), 2)
            worked_hours = round(sum(worked.get(d, 0.0) for d in days), 2)
            credit_hours = round(sum(credits.get(d, 0.0) for d in days), 2)
            correction_hours = round(sum(corrections.get(d, 0.0) for d in days), 2)
            target = round(raw_target - unpaid_reduction, 2)
            actual = round(worked_hours + credit_hours + correction_hours, 2)

            carryover = None
            if period.period_type == PeriodType.MONTH.value:
                year = period.start.year
                if year not in carryovers:
                    tx = self.ledger.carryover_for_year(employee.id, year)
                    carryovers[year] = tx.hours if tx else 0.0
                carryover = carryovers[year]

            snapshots[(period.period_type, period.key)] = {
                "period_start": period.start,
                "period_end": period.end,
                "target_hours": target,
                "raw_target_hours": raw_target,
                "actual_hours": actual,
                "overtime": round(actual - target, 2),
                "worked_hours": worked_hours,
                "absence_credit_hours": credit_hours,
                "correction_hours": correction_hours,
                "unpaid_reduction_hours": unpaid_reduction,
                "carryover_from_previous_year": carryover,
            }
        return snapshots

    def check_integrity(self, employee: Employee, snapshots: Dict[Tuple[str, str], Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Month snapshots whose overtime differs from the month's ledger delta."""
        months = {
            key: values for key, values in snapshots.items() if key[0] == PeriodType.MONTH.value
        }
        if not months:
            return []
        lo = min(v["period_start"] for v in months.values())
        hi = max(v["period_end"] for v in months.values())
        ledger_daily = self.ledger.daily_hours(
            employee.id, lo, hi, exclude_types=[TransactionType.CARRYOVER.value]
        )
        per_month: Dict[str, float] = defaultdict(float)
        for day, hours in ledger_daily.items():
            per_month[day.strftime("%Y-%m")] += hours

        tolerance = settings.ledger.balance_tolerance_hours
        mismatches = []
        for (_, key), values in sorted(months.items()):
            ledger_delta = round(per_month.get(key, 0.0), 2)
            difference = round(values["overtime"] - ledger_delta, 2)
            if abs(difference) > tolerance:
                mismatches.append({
                    "period_key": key,
                    "snapshot_overtime": values["overtime"],
                    "ledger_delta": ledger_delta,
                    "difference": difference,
                })
        return mismatches

    def _store(
        self,
        employee_id: int,
        snapshots: Dict[Tuple[str, str], Dict[str, Any]],
        pending_months: Iterable[str]
    ) -> int:
        pending = set(pending_months)
        existing = {
            (row.period_type, row.period_key): row
            for row in self.db.query(PeriodBalance).filter(PeriodBalance.employee_id == employee_id).all()
        }
        written = 0
        now = self.clock.utcnow_naive()
        for (period_type, period_key), values in snapshots.items():
            status = (
                VerificationStatus.PENDING.value
                if period_type == PeriodType.MONTH.value and period_key in pending
                else VerificationStatus.VERIFIED.value
            )
            row = existing.get((period_type, period_key))
            if row is not None and row.values() == values and row.verification_status == status:
                continue
            if row is None:
                row = PeriodBalance(employee_id=employee_id, period_type=period_type, period_key=period_key)
                self.db.add(row)
            for name, value in values.items():
                setattr(row, name, value)
            row.verification_status = status
            row.updated_at = now
            written += 1
        self.db.flush()
        return written

    def _refresh(self, employee: Employee, periods: List[Period]) -> Tuple[int, List[Dict[str, Any]]]:
        snapshots = self.compute_snapshots(employee, periods)
        mismatches = self.check_integrity(employee, snapshots)
        written = self._store(employee.id, snapshots, [m["period_key"] for m in mismatches])
        return written, mismatches

    def _sync_periods(self, employee: Employee, periods: List[Period], created_by: Optional[int]) -> List[date]:
        """Sync postings over the whole span the snapshots of ``periods`` cover."""
        window = self.targets.window(employee, min(p.start for p in periods), max(p.end for p in periods))
        if window is None:
            return []
        return self.sync_postings(employee, window[0], window[1], created_by=created_by)

    def _carryover_months(self, employee_id: int, days: Iterable[date]) -> List[Period]:
        """Stored month snapshots of the years whose opening day is among ``days``."""
        years = {d.year for d in days if (d.month, d.day) == (1, 1)}
        if not years:
            return []
        rows = self.db.query(PeriodBalance.period_start).filter(
            PeriodBalance.employee_id == employee_id,
            PeriodBalance.period_type == PeriodType.MONTH.value,
        )
        return [month_period(row.period_start) for row in rows if row.period_start.year in years]

    def _raise_mismatches(self, employee_id: int, mismatches: List[Dict[str, Any]]):
        if mismatches:
            self._logger.error(
                f"Balance integrity mismatch for employee {employee_id}: "
                + ", ".join(f"{m['period_key']} snapshot={m['snapshot_overtime']} ledger={m['ledger_delta']}" for m in mismatches)
            )
            raise IntegrityError(employee_id, mismatches)

    # ----------------------------------------------------------- operations

    def ensure_period_balances(
        self,
        employee_id: int,
        through: Union[date, str],
        actor_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Bring day/week/month snapshots up to date for every period from the
        hire date through ``through`` (clipped to today). Snapshots cover
        whole periods, so postings are synced through the end of the last
        period (again clipped to today). Idempotent: unchanged periods are
        not rewritten.

        Raises:
            IntegrityError: after committing, if any month disagrees with the ledger
        """
        through_day = min(resolve_through(through), self.clock.today())
        written, mismatches, periods = 0, [], []
        with self.unit_of_work(employee_id) as employee:
            window = self.targets.window(employee, employee.hire_date, through_day)
            if window is not None:
                periods = periods_covering(iter_days(*window))
                affected = self._sync_periods(employee, periods, actor_id)
                stale = [p for p in self._carryover_months(employee_id, affected) if p not in periods]
                written, mismatches = self._refresh(employee, periods + stale)

        self._logger.info(
            f"Ensured balances for employee {employee_id} through {through_day}: "
            f"{len(periods)} period(s), {written} written"
        )
        self._raise_mismatches(employee_id, mismatches)
        return {
            "employee_id": employee_id,
            "through": through_day.isoformat(),
            "periods": len(periods),
            "written": written,
        }

    def refresh_for_dates(self, employee_id: int, dates: Iterable[date], created_by: Optional[int] = None) -> int:
        """
        Recompute the snapshots of the day/week/month periods containing
        ``dates``. Postings inside those periods are synced first, so days
        that passed without entries are booked before the month is checked.

        A Jan 1 among ``dates`` is where a re-derived carryover lands; every
        stored month of that year repeats the carryover and is refreshed too.
        """
        dates = sorted(set(dates))
        if not dates:
            return 0
        written, mismatches = 0, []
        with self.unit_of_work(employee_id) as employee:
            days = [d for d in dates if self.targets.window(employee, d, d) is not None]
            if days:
                periods = periods_covering(days)
                periods += [p for p in self._carryover_months(employee_id, days) if p not in periods]
                self._sync_periods(employee, periods, created_by)
                written, mismatches = self._refresh(employee, periods)
        self._raise_mismatches(employee_id, mismatches)
        return written

    def force_recalculate(self, employee_id: int, actor_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Full repair: rebuild every derived posting from source data, remove
        orphaned ledger rows, replay the whole chain, then drop and
        regenerate all snapshots.
        """
        today = self.clock.today()
        mismatches, periods, written = [], [], 0
        with self.unit_of_work(employee_id) as employee:
            before = self.ledger.get_current_balance(employee_id)
            affected = self.sync_postings(employee, employee.hire_date, today, created_by=actor_id, prune=True)
            self.ledger.recompute_balances(employee_id)

            deleted = (
                self.db.query(PeriodBalance)
                .filter(PeriodBalance.employee_id == employee_id)
                .delete(synchronize_session=False)
            )
            self.db.flush()
            self.db.expire_all()

            window = self.targets.window(employee, employee.hire_date, today)
            if window is not None:
                periods = periods_covering(iter_days(*window))
                written, mismatches = self._refresh(employee, periods)

            after = self.ledger.get_current_balance(employee_id)
            self.audit.log_action(
                action="overtime_recalculated",
                entity_type="employee",
                entity_id=employee_id,
                user_id=actor_id,
                details={
                    "ledger_dates_changed": len(affected),
                    "snapshots_dropped": deleted,
                    "snapshots_written": written,
                },
                before_state={"balance": before},
                after_state={"balance": after},
            )

        self._logger.info(
            f"Force recalculated employee {employee_id}: balance {before} -> {after}, "
            f"{len(affected)} ledger date(s) changed, {written} snapshot(s) written"
        )
        self._raise_mismatches(employee_id, mismatches)
        return {
            "employee_id": employee_id,
            "balance_before": before,
            "balance_after": after,
            "ledger_dates_changed": len(affected),
            "snapshots_written": written,
        }

    # ------------------------------------------------------------------ reads

    def get_period_balances(
        self,
        employee_id: int,
        period_type: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[PeriodBalance]:
        """Stored snapshots, oldest first. Pending rows are returned as they are."""
        if period_type not in {p.value for p in PeriodType}:
            raise ValidationError(f"Unknown period type '{period_type}'", field="period_type")
        self.get_employee(employee_id)
        query = self.db.query(PeriodBalance).filter(
            PeriodBalance.employee_id == employee_id,
            PeriodBalance.period_type == period_type,
        )
        if from_date is not None:
            query = query.filter(PeriodBalance.period_end >= from_date)
        if to_date is not None:
            query = query.filter(PeriodBalance.period_start <= to_date)
        return query.order_by(PeriodBalance.period_start).all()
