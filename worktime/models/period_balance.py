from sqlalchemy import Column, Integer, String, Float, Date, DateTime, ForeignKey, UniqueConstraint
from worktime.database import Base
import enum


class PeriodType(str, enum.Enum):
    DAY = "day"      # period_key YYYY-MM-DD
    WEEK = "week"    # period_key ISO week, YYYY-Www
    MONTH = "month"  # period_key YYYY-MM


class VerificationStatus(str, enum.Enum):
    VERIFIED = "verified"
    PENDING = "pending_verification"


class PeriodBalance(Base):
    """
    Cached day/week/month snapshot. Derived only; regenerated from the
    calculators and the ledger, never edited by hand.
    """
    __tablename__ = "period_balances"
    __table_args__ = (
        UniqueConstraint("employee_id", "period_type", "period_key", name="uq_period_balance_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    period_type = Column(String, nullable=False)
    period_key = Column(String, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)

    target_hours = Column(Float, nullable=False, default=0.0)
    raw_target_hours = Column(Float, nullable=False, default=0.0)
    actual_hours = Column(Float, nullable=False, default=0.0)
    overtime = Column(Float, nullable=False, default=0.0)

    worked_hours = Column(Float, nullable=False, default=0.0)
    absence_credit_hours = Column(Float, nullable=False, default=0.0)
    correction_hours = Column(Float, nullable=False, default=0.0)
    unpaid_reduction_hours = Column(Float, nullable=False, default=0.0)

    # Month snapshots only
    carryover_from_previous_year = Column(Float, nullable=True)

    verification_status = Column(String, nullable=False, default=VerificationStatus.VERIFIED.value)
    updated_at = Column(DateTime, nullable=True)

    # Columns compared to decide whether a recomputed snapshot differs from the stored one
    VALUE_FIELDS = (
        "period_start", "period_end", "target_hours", "raw_target_hours", "actual_hours",
        "overtime", "worked_hours", "absence_credit_hours", "correction_hours",
        "unpaid_reduction_hours", "carryover_from_previous_year",
    )

    def values(self) -> dict:
        return {name: getattr(self, name) for name in self.VALUE_FIELDS}
