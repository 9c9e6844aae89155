"""
Request-scoped collaborators for the routers.

The acting user is taken from the actor header and passed explicitly to
every mutating service call; authentication happens upstream.
"""
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from worktime.core.clock import Clock, SystemClock
from worktime.core.exceptions import ValidationError
from worktime.database import get_db
from worktime.services.absences import AbsenceService
from worktime.services.overtime_service import OvertimeService
from worktime.services.time_entries import TimeEntryService

_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock


def get_actor_id(x_actor_id: Optional[str] = Header(default=None)) -> Optional[int]:
    if x_actor_id is None or x_actor_id == "":
        return None
    try:
        return int(x_actor_id)
    except ValueError:
        raise ValidationError(f"Invalid actor id '{x_actor_id}'", field="X-Actor-Id")


def require_actor_id(actor_id: Optional[int] = Depends(get_actor_id)) -> int:
    if actor_id is None:
        raise ValidationError("The X-Actor-Id header is required for this operation", field="X-Actor-Id")
    return actor_id


def get_overtime_service(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> OvertimeService:
    return OvertimeService(db, clock)


def get_time_entry_service(overtime: OvertimeService = Depends(get_overtime_service)) -> TimeEntryService:
    return TimeEntryService(overtime.db, overtime.clock, overtime=overtime)


def get_absence_service(overtime: OvertimeService = Depends(get_overtime_service)) -> AbsenceService:
    return AbsenceService(overtime.db, overtime.clock, overtime=overtime)
