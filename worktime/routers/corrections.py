from typing import Optional

from fastapi import APIRouter, Depends

from worktime.core.schemas import ApiResponse
from worktime.dependencies import get_overtime_service, require_actor_id
from worktime.schemas.overtime import CorrectionCreate, CorrectionResponse
from worktime.services.overtime_service import OvertimeService

router = APIRouter(
    prefix="/corrections",
    tags=["corrections"]
)


def _dump(correction) -> dict:
    return CorrectionResponse.model_validate(correction).model_dump(mode="json")


@router.post("", status_code=201)
def create_correction(
    payload: CorrectionCreate,
    actor_id: int = Depends(require_actor_id),
    service: OvertimeService = Depends(get_overtime_service),
):
    correction = service.create_correction(
        payload.employee_id,
        payload.date,
        payload.hours,
        payload.reason,
        payload.correction_type,
        actor_id,
        approved_by=payload.approved_by,
    )
    return ApiResponse.ok(_dump(correction)).to_dict()


@router.delete("/{correction_id}")
def delete_correction(
    correction_id: int,
    actor_id: int = Depends(require_actor_id),
    service: OvertimeService = Depends(get_overtime_service),
):
    return ApiResponse.ok(_dump(service.delete_correction(correction_id, actor_id))).to_dict()


@router.get("")
def list_corrections(
    employee_id: Optional[int] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    include_deleted: bool = False,
    service: OvertimeService = Depends(get_overtime_service),
):
    corrections = service.list_corrections(
        employee_id=employee_id, year=year, month=month, include_deleted=include_deleted
    )
    return ApiResponse.ok([_dump(c) for c in corrections]).to_dict()
