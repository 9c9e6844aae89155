from typing import Optional

from fastapi import APIRouter, Depends

from worktime.core.schemas import ApiResponse
from worktime.dependencies import get_absence_service, get_actor_id, require_actor_id
from worktime.schemas.time_records import AbsenceCreate, AbsenceDecision, AbsenceResponse
from worktime.services.absences import AbsenceService

router = APIRouter(
    prefix="/absences",
    tags=["absences"]
)


def _dump(absence) -> dict:
    return AbsenceResponse.model_validate(absence).model_dump(mode="json")


@router.post("", status_code=201)
def request_absence(
    payload: AbsenceCreate,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: AbsenceService = Depends(get_absence_service),
):
    absence = service.request_absence(
        payload.employee_id,
        payload.type,
        payload.start_date,
        payload.end_date,
        reason=payload.reason,
        actor_id=actor_id,
    )
    return ApiResponse.ok(_dump(absence)).to_dict()


@router.get("")
def list_absences(
    employee_id: Optional[int] = None,
    status: Optional[str] = None,
    service: AbsenceService = Depends(get_absence_service),
):
    return ApiResponse.ok([_dump(a) for a in service.list_absences(employee_id, status)]).to_dict()


@router.put("/{absence_id}/approve")
def approve_absence(
    absence_id: int,
    payload: Optional[AbsenceDecision] = None,
    actor_id: int = Depends(require_actor_id),
    service: AbsenceService = Depends(get_absence_service),
):
    absence = service.approve(absence_id, actor_id, note=payload.note if payload else None)
    return ApiResponse.ok(_dump(absence)).to_dict()


@router.put("/{absence_id}/reject")
def reject_absence(
    absence_id: int,
    payload: Optional[AbsenceDecision] = None,
    actor_id: int = Depends(require_actor_id),
    service: AbsenceService = Depends(get_absence_service),
):
    absence = service.reject(absence_id, actor_id, note=payload.note if payload else None)
    return ApiResponse.ok(_dump(absence)).to_dict()


@router.delete("/{absence_id}")
def delete_absence(
    absence_id: int,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: AbsenceService = Depends(get_absence_service),
):
    service.delete_absence(absence_id, actor_id)
    return ApiResponse.ok({"id": absence_id, "deleted": True}).to_dict()
