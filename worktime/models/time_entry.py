from sqlalchemy import Column, Integer, String, Float, Date, Time, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from worktime.database import Base


class WorkLocation(str, enum.Enum):
    OFFICE = "office"
    HOMEOFFICE = "homeoffice"
    FIELD = "field"


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    break_minutes = Column(Integer, nullable=False, default=0)
    hours = Column(Float, nullable=False)  # net hours: wall-clock span minus break
    location = Column(String, nullable=False, default=WorkLocation.OFFICE.value)
    activity = Column(String, nullable=True)
    project = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("Employee", back_populates="time_entries")
