"""
Overtime Ledger

Append-only, per-employee log of signed-hour transactions. Its running
balance is the authoritative overtime balance; period snapshots are derived
from it and never the other way round.

Chain rules:
- Order is (date, sort_rank, created_at, id). Carryover rows sort first on
  their day.
- balance_after = balance_before + hours, and each row's balance_before is
  its predecessor's balance_after.
- A carryover row opens its year: balance_before is 0 and its hours are the
  closing balance of the previous year, re-derived on every replay.
- (employee_id, date, type, reference_type, reference_id) is unique.

Every mutation runs inside the employee's unit of work, so balances are
always consistent once committed.
"""
import base64
import binascii
import json
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Set, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError as SQLIntegrityError

from worktime.core.config import settings
from worktime.core.exceptions import ConflictError, ValidationError
from worktime.models.overtime_transaction import (
    OvertimeTransaction,
    ReferenceType,
    TransactionType,
    sort_rank_for,
)
from worktime.services.base import BaseService

TRANSACTION_TYPES = {t.value for t in TransactionType}

ReferenceKey = Tuple[str, str]


class Posting(NamedTuple):
    """One ledger row to be written for a source record."""
    date: date
    type: str
    hours: float
    description: Optional[str] = None


@dataclass
class HistoryFilter:
    year: Optional[int] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    types: Optional[List[str]] = None
    limit: Optional[int] = None


class HistoryCursor:
    """Opaque keyset position in the newest-first history order."""

    def __init__(self, day: date, sort_rank: int, created_at: datetime, tx_id: int):
        self.day = day
        self.sort_rank = sort_rank
        self.created_at = created_at
        self.tx_id = tx_id

    @classmethod
    def after(cls, tx: OvertimeTransaction) -> "HistoryCursor":
        return cls(tx.date, tx.sort_rank, tx.created_at, tx.id)

    def encode(self) -> str:
        raw = json.dumps([self.day.isoformat(), self.sort_rank, self.created_at.isoformat(), self.tx_id])
        return base64.urlsafe_b64encode(raw.encode()).decode()

    @classmethod
    def decode(cls, token: str) -> "HistoryCursor":
        try:
            day, rank, created_at, tx_id = json.loads(base64.urlsafe_b64decode(token.encode()))
            return cls(date.fromisoformat(day), int(rank), datetime.fromisoformat(created_at), int(tx_id))
        except (ValueError, TypeError, binascii.Error) as e:
            raise ValidationError(f"Invalid history cursor: {e}", field="cursor")


def _posting_key(day: date, transaction_type: str, hours: float) -> Tuple[date, str, float]:
    return day, transaction_type, round(hours, 2)


class OvertimeLedger(BaseService):

    # ------------------------------------------------------------------ reads

    def _chain(self, employee_id: int):
        return self.db.query(OvertimeTransaction).filter(OvertimeTransaction.employee_id == employee_id)

    @staticmethod
    def _ordered(query, descending: bool = False):
        columns = (
            OvertimeTransaction.date,
            OvertimeTransaction.sort_rank,
            OvertimeTransaction.created_at,
            OvertimeTransaction.id,
        )
        return query.order_by(*[c.desc() if descending else c.asc() for c in columns])

    def transactions(self, employee_id: int) -> List[OvertimeTransaction]:
        """Whole chain in chain order."""
        return self._ordered(self._chain(employee_id)).all()

    def get_current_balance(self, employee_id: int) -> float:
        last = self._ordered(self._chain(employee_id), descending=True).first()
        return last.balance_after if last else 0.0

    def get_balance_at(self, employee_id: int, day: date) -> float:
        """Balance after the last transaction dated on or before ``day``."""
        last = self._ordered(
            self._chain(employee_id).filter(OvertimeTransaction.date <= day), descending=True
        ).first()
        return last.balance_after if last else 0.0

    def find(self, employee_id: int, day: date, transaction_type: str, reference_type: str, reference_id: str) -> Optional[OvertimeTransaction]:
        return self._chain(employee_id).filter(
            OvertimeTransaction.date == day,
            OvertimeTransaction.type == transaction_type,
            OvertimeTransaction.reference_type == reference_type,
            OvertimeTransaction.reference_id == str(reference_id),
        ).first()

    def carryover_for_year(self, employee_id: int, year: int) -> Optional[OvertimeTransaction]:
        return self._chain(employee_id).filter(
            OvertimeTransaction.type == TransactionType.CARRYOVER.value,
            OvertimeTransaction.reference_type == ReferenceType.YEAR_END.value,
            OvertimeTransaction.reference_id == str(year),
        ).first()

    def rows_by_reference(
        self,
        employee_id: int,
        reference_type: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> Dict[ReferenceKey, List[OvertimeTransaction]]:
        query = self._chain(employee_id)
        if reference_type is not None:
            query = query.filter(OvertimeTransaction.reference_type == reference_type)
        if start is not None:
            query = query.filter(OvertimeTransaction.date >= start)
        if end is not None:
            query = query.filter(OvertimeTransaction.date <= end)
        grouped: Dict[ReferenceKey, List[OvertimeTransaction]] = defaultdict(list)
        for tx in self._ordered(query):
            grouped[(tx.reference_type, tx.reference_id)].append(tx)
        return dict(grouped)

    def daily_hours(
        self,
        employee_id: int,
        start: date,
        end: date,
        exclude_types: Iterable[str] = ()
    ) -> Dict[date, float]:
        """Sum of transaction hours per date in [start, end]."""
        query = (
            self.db.query(OvertimeTransaction.date, func.sum(OvertimeTransaction.hours))
            .filter(
                OvertimeTransaction.employee_id == employee_id,
                OvertimeTransaction.date >= start,
                OvertimeTransaction.date <= end,
            )
        )
        exclude = list(exclude_types)
        if exclude:
            query = query.filter(OvertimeTransaction.type.notin_(exclude))
        return {day: round(total or 0.0, 2) for day, total in query.group_by(OvertimeTransaction.date).all()}

    def history_page(
        self,
        employee_id: int,
        filters: Optional[HistoryFilter] = None,
        cursor: Optional[HistoryCursor] = None,
        size: Optional[int] = None
    ) -> Tuple[List[OvertimeTransaction], Optional[HistoryCursor]]:
        """
        One page of history, newest first.

        Returns:
            (rows, cursor of the next page or None when exhausted)
        """
        filters = filters or HistoryFilter()
        size = size or settings.ledger.history_page_size
        query = self._chain(employee_id)

        if filters.year is not None:
            query = query.filter(
                OvertimeTransaction.date >= date(filters.year, 1, 1),
                OvertimeTransaction.date <= date(filters.year, 12, 31),
            )
        if filters.from_date is not None:
            query = query.filter(OvertimeTransaction.date >= filters.from_date)
        if filters.to_date is not None:
            query = query.filter(OvertimeTransaction.date <= filters.to_date)
        if filters.types:
            unknown = set(filters.types) - TRANSACTION_TYPES
            if unknown:
                raise ValidationError(f"Unknown transaction type(s): {', '.join(sorted(unknown))}", field="types")
            query = query.filter(OvertimeTransaction.type.in_(filters.types))

        if cursor is not None:
            tx = OvertimeTransaction
            query = query.filter(or_(
                tx.date < cursor.day,
                and_(tx.date == cursor.day, or_(
                    tx.sort_rank < cursor.sort_rank,
                    and_(tx.sort_rank == cursor.sort_rank, or_(
                        tx.created_at < cursor.created_at,
                        and_(tx.created_at == cursor.created_at, tx.id < cursor.tx_id),
                    )),
                )),
            ))

        rows = self._ordered(query, descending=True).limit(size).all()
        next_cursor = HistoryCursor.after(rows[-1]) if len(rows) == size else None
        return rows, next_cursor

    def get_history(
        self,
        employee_id: int,
        filters: Optional[HistoryFilter] = None,
        cursor: Optional[HistoryCursor] = None
    ) -> Iterator[OvertimeTransaction]:
        """
        Lazily yields transactions newest first, fetching one page at a time.
        Restart from any yielded row with ``HistoryCursor.after(row)``.
        """
        filters = filters or HistoryFilter()
        remaining = filters.limit
        page_size = settings.ledger.history_page_size
        while True:
            size = page_size if remaining is None else min(page_size, remaining)
            if size <= 0:
                return
            rows, cursor = self.history_page(employee_id, filters, cursor, size)
            yield from rows
            if remaining is not None:
                remaining -= len(rows)
            if cursor is None:
                return

    # ----------------------------------------------------------------- writes

    def _flush(self):
        try:
            self.db.flush()
        except SQLIntegrityError as e:
            raise ConflictError(
                "Ledger transaction violates the (employee, date, type, reference) uniqueness",
                details={"error": str(e.orig)},
            ) from e

    def append_transaction(
        self,
        employee_id: int,
        day: date,
        transaction_type: str,
        hours: float,
        reference_type: str,
        reference_id,
        created_by: Optional[int] = None,
        description: Optional[str] = None
    ) -> OvertimeTransaction:
        """
        Append one transaction, chaining it after its predecessor. Later
        transactions, if any, are replayed.

        Raises:
            ValidationError: unknown transaction type
            ConflictError: the natural key already exists
        """
        if transaction_type not in TRANSACTION_TYPES:
            raise ValidationError(f"Unknown transaction type '{transaction_type}'", field="type")
        reference_id = str(reference_id)

        with self.unit_of_work(employee_id):
            if self.find(employee_id, day, transaction_type, reference_type, reference_id):
                raise ConflictError(
                    f"Transaction {transaction_type} for {reference_type}:{reference_id} on {day} already exists",
                    details={
                        "employee_id": employee_id,
                        "date": day.isoformat(),
                        "type": transaction_type,
                        "reference_type": reference_type,
                        "reference_id": reference_id,
                    },
                )

            rank = sort_rank_for(transaction_type)
            predecessor = self._ordered(
                self._chain(employee_id).filter(or_(
                    OvertimeTransaction.date < day,
                    and_(OvertimeTransaction.date == day, OvertimeTransaction.sort_rank <= rank),
                )),
                descending=True,
            ).first()

            if transaction_type == TransactionType.CARRYOVER.value:
                balance_before = 0.0
            else:
                balance_before = predecessor.balance_after if predecessor else 0.0
            hours = round(hours, 2)

            tx = OvertimeTransaction(
                employee_id=employee_id,
                date=day,
                type=transaction_type,
                sort_rank=rank,
                hours=hours,
                balance_before=balance_before,
                balance_after=round(balance_before + hours, 2),
                reference_type=reference_type,
                reference_id=reference_id,
                description=description,
                created_at=self.clock.utcnow_naive(),
                created_by=created_by,
            )
            self.db.add(tx)
            self._flush()
            self._logger.debug(f"Appended {tx!r}")

            has_successors = self.db.query(
                self._chain(employee_id).filter(
                    OvertimeTransaction.id != tx.id,
                    or_(
                        OvertimeTransaction.date > day,
                        and_(OvertimeTransaction.date == day, OvertimeTransaction.sort_rank > rank),
                    ),
                ).exists()
            ).scalar()
            if has_successors:
                self.recompute_balances(employee_id, from_date=day)
        return tx

    def recompute_balances(self, employee_id: int, from_date: Optional[date] = None) -> int:
        """
        Replay the chain from ``from_date`` (or from the start) and rewrite
        every balance. Atomic: either all rows are rewritten or none.

        Returns:
            Number of rows whose balances changed
        """
        with self.unit_of_work(employee_id):
            running = 0.0
            query = self._chain(employee_id)
            if from_date is not None:
                predecessor = self._ordered(
                    self._chain(employee_id).filter(OvertimeTransaction.date < from_date), descending=True
                ).first()
                running = predecessor.balance_after if predecessor else 0.0
                query = query.filter(OvertimeTransaction.date >= from_date)

            changed = 0
            rows = self._ordered(query).all()
            for tx in rows:
                if tx.type == TransactionType.CARRYOVER.value:
                    carried = round(running, 2)
                    if tx.hours != carried:
                        self._logger.info(
                            f"Carryover {tx.reference_id} for employee {employee_id} re-derived: {tx.hours} -> {carried}"
                        )
                        tx.hours = carried
                    before = 0.0
                else:
                    before = round(running, 2)
                after = round(before + tx.hours, 2)
                if tx.balance_before != before or tx.balance_after != after:
                    tx.balance_before = before
                    tx.balance_after = after
                    changed += 1
                running = after

            self._flush()
        self._logger.debug(
            f"Replayed {len(rows)} transaction(s) for employee {employee_id} from {from_date or 'start'}, {changed} changed"
        )
        return changed

    def _replace_reference(
        self,
        employee_id: int,
        reference_type: str,
        reference_id: str,
        postings: List[Posting],
        created_by: Optional[int]
    ) -> Set[date]:
        existing = self._chain(employee_id).filter(
            OvertimeTransaction.reference_type == reference_type,
            OvertimeTransaction.reference_id == reference_id,
        ).all()

        wanted = Counter(_posting_key(p.date, p.type, p.hours) for p in postings)
        current = Counter(_posting_key(tx.date, tx.type, tx.hours) for tx in existing)
        if wanted == current:
            return set()

        seen = Counter((p.date, p.type) for p in postings)
        duplicates = [f"{d.isoformat()}/{t}" for (d, t), n in seen.items() if n > 1]
        if duplicates:
            raise ConflictError(
                f"Duplicate postings for {reference_type}:{reference_id}: {', '.join(duplicates)}"
            )
        unknown = {p.type for p in postings} - TRANSACTION_TYPES
        if unknown:
            raise ValidationError(f"Unknown transaction type(s): {', '.join(sorted(unknown))}", field="type")

        affected = {tx.date for tx in existing} | {p.date for p in postings}
        for tx in existing:
            self.db.delete(tx)
        if existing:
            # Deletes must reach the database before re-inserting the same natural keys
            self._flush()

        for posting in sorted(postings, key=lambda p: (p.date, sort_rank_for(p.type))):
            self.db.add(OvertimeTransaction(
                employee_id=employee_id,
                date=posting.date,
                type=posting.type,
                sort_rank=sort_rank_for(posting.type),
                hours=round(posting.hours, 2),
                balance_before=0.0,
                balance_after=0.0,
                reference_type=reference_type,
                reference_id=reference_id,
                description=posting.description,
                created_at=self.clock.utcnow_naive(),
                created_by=created_by,
            ))
        self._flush()
        self._logger.debug(
            f"Reference {reference_type}:{reference_id} of employee {employee_id}: "
            f"{len(existing)} row(s) replaced by {len(postings)}"
        )
        return affected

    def reconcile_references(
        self,
        employee_id: int,
        changes: Dict[ReferenceKey, Optional[List[Posting]]],
        created_by: Optional[int] = None
    ) -> List[date]:
        """
        Replace the transactions of several references and replay once from
        the earliest affected date. References whose rows already match are
        not touched.

        Returns:
            Sorted dates whose ledger rows changed, including the date of
            any carryover the replay re-derived
        """
        with self.unit_of_work(employee_id):
            affected: Set[date] = set()
            for (reference_type, reference_id), postings in changes.items():
                affected |= self._replace_reference(
                    employee_id, reference_type, str(reference_id), list(postings or []), created_by
                )
            if affected:
                start = min(affected)
                carryovers = {
                    tx.id: (tx, tx.hours)
                    for tx in self._chain(employee_id).filter(
                        OvertimeTransaction.type == TransactionType.CARRYOVER.value,
                        OvertimeTransaction.date >= start,
                    )
                }
                self.recompute_balances(employee_id, from_date=start)
                affected |= {tx.date for tx, hours in carryovers.values() if tx.hours != hours}
        return sorted(affected)

    def reconcile_reference(
        self,
        employee_id: int,
        reference_type: str,
        reference_id,
        postings: Optional[List[Posting]],
        created_by: Optional[int] = None
    ) -> List[date]:
        """
        Single mutation path for a changed source record: drop the
        reference's transactions, insert ``postings`` (None or [] removes
        the reference from the ledger) and replay from the earliest
        affected date.
        """
        return self.reconcile_references(
            employee_id, {(reference_type, str(reference_id)): postings}, created_by=created_by
        )
