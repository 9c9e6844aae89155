from fastapi import APIRouter, Depends, Query, Request

from worktime.core.config import settings
from worktime.core.limiter import limiter
from worktime.core.schemas import ApiResponse
from worktime.dependencies import get_overtime_service, require_actor_id
from worktime.schemas.overtime import BatchReportResponse
from worktime.services.overtime_service import OvertimeService

router = APIRouter(
    prefix="/year-end",
    tags=["year-end"]
)


@router.get("/history")
def rollover_history(
    limit: int = Query(default=20, ge=1, le=100),
    service: OvertimeService = Depends(get_overtime_service),
):
    return ApiResponse.ok(service.year_end_history(limit)).to_dict()


@router.get("/{year}/preview")
def rollover_preview(year: int, service: OvertimeService = Depends(get_overtime_service)):
    return ApiResponse.ok(service.preview_year_end(year)).to_dict()


@router.post("/{year}")
@limiter.limit(settings.batch_rate_limit)
def perform_rollover(
    request: Request,
    year: int,
    actor_id: int = Depends(require_actor_id),
    service: OvertimeService = Depends(get_overtime_service),
):
    report = service.perform_year_end_rollover(year, actor_id)
    report.raise_for_failures()
    return ApiResponse.ok(BatchReportResponse(**report.to_dict()).model_dump()).to_dict()
