from sqlalchemy import Column, Integer, String, Date, Float, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from worktime.database import Base
import enum


class AbsenceType(str, enum.Enum):
    VACATION = "vacation"
    SICK = "sick"
    UNPAID = "unpaid"
    OVERTIME_COMP = "overtime_comp"
    SPECIAL = "special"


class AbsenceStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Absence types credited as worked time (everything except unpaid leave)
PAID_ABSENCE_TYPES = (
    AbsenceType.VACATION.value,
    AbsenceType.SICK.value,
    AbsenceType.OVERTIME_COMP.value,
    AbsenceType.SPECIAL.value,
)


class AbsenceRequest(Base):
    __tablename__ = "absence_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    days_required = Column(Float, nullable=False, default=0.0)
    status = Column(String, default=AbsenceStatus.PENDING.value, nullable=False, index=True)
    reason = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    employee = relationship("Employee", back_populates="absence_requests")

    @property
    def is_approved(self) -> bool:
        return self.status == AbsenceStatus.APPROVED.value
