from pydantic import BaseModel, ConfigDict, field_serializer
from datetime import date, datetime, time
from typing import Optional

# The update model has a field called "date"; annotate it through an alias
OptionalDate = Optional[date]


# --- Time entries ---

class TimeEntryCreate(BaseModel):
    employee_id: int
    date: date
    start_time: str
    end_time: str
    break_minutes: int = 0
    location: str = "office"
    notes: Optional[str] = None


class TimeEntryUpdate(BaseModel):
    date: OptionalDate = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    break_minutes: Optional[int] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class TimeEntryResponse(BaseModel):
    id: int
    employee_id: int
    date: date
    start_time: time
    end_time: time
    break_minutes: int
    hours: float
    location: str
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("start_time", "end_time")
    def serialize_clock_time(self, value: time) -> str:
        return value.strftime("%H:%M")


# --- Absences ---

class AbsenceCreate(BaseModel):
    employee_id: int
    type: str
    start_date: date
    end_date: date
    reason: Optional[str] = None


class AbsenceDecision(BaseModel):
    note: Optional[str] = None


class AbsenceResponse(BaseModel):
    id: int
    employee_id: int
    type: str
    start_date: date
    end_date: date
    days_required: float
    status: str
    reason: Optional[str] = None
    admin_note: Optional[str] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
