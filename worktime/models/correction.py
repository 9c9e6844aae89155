from sqlalchemy import Column, Integer, String, Float, Date, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from worktime.database import Base
import enum


class CorrectionType(str, enum.Enum):
    SYSTEM_ERROR = "system_error"
    ABSENCE_CREDIT = "absence_credit"
    MIGRATION = "migration"
    MANUAL = "manual"


class Correction(Base):
    """
    Admin adjustment of an overtime balance. Deleting a correction only
    removes its ledger effect; the row stays for audit with deleted_at set.
    """
    __tablename__ = "overtime_corrections"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    hours = Column(Float, nullable=False)
    reason = Column(Text, nullable=False)
    correction_type = Column(String, nullable=False, default=CorrectionType.MANUAL.value)
    created_by = Column(Integer, nullable=False)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(Integer, nullable=True)

    employee = relationship("Employee")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
