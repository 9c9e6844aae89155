"""
Employee master data as far as the overtime engine needs it.
Accounts, roles and authentication live outside this service.
"""
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from worktime.database import Base

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class EmployeeStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=True)

    weekly_hours = Column(Float, nullable=False, default=40.0)
    # Optional per-weekday hours, e.g. {"monday": 8, "wednesday": 6}. Missing weekdays are 0.
    work_schedule = Column(JSON, nullable=True)

    hire_date = Column(Date, nullable=False)
    termination_date = Column(Date, nullable=True)
    status = Column(String, default=EmployeeStatus.ACTIVE.value, nullable=False, index=True)

    vacation_days_per_year = Column(Float, nullable=True)
    # Region whose regional holidays apply (federal holidays always apply)
    holiday_region = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    time_entries = relationship("TimeEntry", back_populates="employee", cascade="all, delete-orphan")
    absence_requests = relationship("AbsenceRequest", back_populates="employee", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Employee {self.id} {self.first_name} {self.last_name}>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.ACTIVE.value

    def is_employed_on(self, day) -> bool:
        if day < self.hire_date:
            return False
        if self.termination_date is not None and day > self.termination_date:
            return False
        return True
