"""
Overtime ledger rows.

One row per signed-hour event. Rows are appended or, when their source
record goes away, deleted and the chain replayed; they are never edited
except for the balance columns rewritten by a replay.
"""
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, ForeignKey, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from worktime.database import Base
import enum


class TransactionType(str, enum.Enum):
    EARNED = "earned"
    VACATION_CREDIT = "vacation_credit"
    SICK_CREDIT = "sick_credit"
    OVERTIME_COMP_CREDIT = "overtime_comp_credit"
    SPECIAL_CREDIT = "special_credit"
    UNPAID_ADJUSTMENT = "unpaid_adjustment"
    CORRECTION = "correction"
    CARRYOVER = "carryover"


class ReferenceType(str, enum.Enum):
    WORK_DAY = "work_day"        # reference_id: ISO date of the worked day
    ABSENCE = "absence"          # reference_id: absence request id
    CORRECTION = "correction"    # reference_id: correction id
    YEAR_END = "year_end"        # reference_id: target year


# Absence type -> ledger type of its per-day posting
ABSENCE_TRANSACTION_TYPES = {
    "vacation": TransactionType.VACATION_CREDIT.value,
    "sick": TransactionType.SICK_CREDIT.value,
    "overtime_comp": TransactionType.OVERTIME_COMP_CREDIT.value,
    "special": TransactionType.SPECIAL_CREDIT.value,
    "unpaid": TransactionType.UNPAID_ADJUSTMENT.value,
}


def sort_rank_for(transaction_type: str) -> int:
    """Carryover opens its day, every other type follows."""
    return 0 if transaction_type == TransactionType.CARRYOVER.value else 1


class OvertimeTransaction(Base):
    __tablename__ = "overtime_transactions"
    __table_args__ = (
        UniqueConstraint(
            "employee_id", "date", "type", "reference_type", "reference_id",
            name="uq_overtime_tx_natural_key",
        ),
        Index("ix_overtime_tx_chain", "employee_id", "date", "sort_rank", "created_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    type = Column(String, nullable=False)
    sort_rank = Column(Integer, nullable=False, default=1)
    hours = Column(Float, nullable=False)
    balance_before = Column(Float, nullable=False)
    balance_after = Column(Float, nullable=False)
    reference_type = Column(String, nullable=False)
    reference_id = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    created_by = Column(Integer, nullable=True)

    employee = relationship("Employee")

    def __repr__(self):
        return (
            f"<OvertimeTransaction {self.id} emp={self.employee_id} {self.date} {self.type} "
            f"{self.hours:+.2f} ({self.balance_before:.2f} -> {self.balance_after:.2f})>"
        )

    @property
    def natural_key(self):
        return (self.employee_id, self.date, self.type, self.reference_type, self.reference_id)
