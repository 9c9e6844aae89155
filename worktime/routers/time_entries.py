from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from worktime.core.schemas import ApiResponse
from worktime.dependencies import get_actor_id, get_time_entry_service
from worktime.schemas.time_records import TimeEntryCreate, TimeEntryResponse, TimeEntryUpdate
from worktime.services.time_entries import TimeEntryService

router = APIRouter(
    prefix="/time-entries",
    tags=["time-entries"]
)


def _dump(entry) -> dict:
    return TimeEntryResponse.model_validate(entry).model_dump(mode="json")


@router.post("", status_code=201)
def create_time_entry(
    payload: TimeEntryCreate,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: TimeEntryService = Depends(get_time_entry_service),
):
    entry = service.create_entry(
        payload.employee_id,
        payload.date,
        payload.start_time,
        payload.end_time,
        break_minutes=payload.break_minutes,
        location=payload.location,
        notes=payload.notes,
        actor_id=actor_id,
    )
    return ApiResponse.ok(_dump(entry)).to_dict()


@router.get("")
def list_time_entries(
    employee_id: int,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    service: TimeEntryService = Depends(get_time_entry_service),
):
    entries = service.list_entries(employee_id, from_date, to_date)
    return ApiResponse.ok([_dump(e) for e in entries]).to_dict()


@router.put("/{entry_id}")
def update_time_entry(
    entry_id: int,
    payload: TimeEntryUpdate,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: TimeEntryService = Depends(get_time_entry_service),
):
    entry = service.update_entry(entry_id, actor_id=actor_id, day=payload.date, **payload.model_dump(exclude={"date"}))
    return ApiResponse.ok(_dump(entry)).to_dict()


@router.delete("/{entry_id}")
def delete_time_entry(
    entry_id: int,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: TimeEntryService = Depends(get_time_entry_service),
):
    service.delete_entry(entry_id, actor_id)
    return ApiResponse.ok({"id": entry_id, "deleted": True}).to_dict()
