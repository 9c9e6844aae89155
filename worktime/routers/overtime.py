from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from worktime.core.config import settings
from worktime.core.limiter import limiter
from worktime.core.schemas import ApiResponse
from worktime.dependencies import get_actor_id, get_overtime_service
from worktime.schemas.overtime import (
    BalanceResponse,
    BatchReportResponse,
    EnsureBalancesRequest,
    HistoryPage,
    PeriodBalanceResponse,
    TimeEntryChanged,
    TransactionResponse,
)
from worktime.services.ledger import HistoryFilter
from worktime.services.overtime_service import OvertimeService

router = APIRouter(
    prefix="/overtime",
    tags=["overtime"]
)


@router.post("/{employee_id}/time-entries/changed")
def time_entry_changed(
    employee_id: int,
    payload: TimeEntryChanged,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: OvertimeService = Depends(get_overtime_service),
):
    affected = service.on_time_entry_changed(employee_id, payload.date, actor_id)
    return ApiResponse.ok({"changed_dates": [d.isoformat() for d in affected]}).to_dict()


@router.post("/{employee_id}/absences/{absence_id}/changed")
def absence_changed(
    employee_id: int,
    absence_id: int,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: OvertimeService = Depends(get_overtime_service),
):
    affected = service.on_absence_status_changed(employee_id, absence_id, actor_id)
    return ApiResponse.ok({"changed_dates": [d.isoformat() for d in affected]}).to_dict()


@router.post("/{employee_id}/ensure")
def ensure_balances(
    employee_id: int,
    payload: Optional[EnsureBalancesRequest] = None,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: OvertimeService = Depends(get_overtime_service),
):
    through = (payload.through if payload else None) or service.clock.today()
    return ApiResponse.ok(service.ensure_balances(employee_id, through, actor_id)).to_dict()


@router.post("/recalculate-all")
@limiter.limit(settings.batch_rate_limit)
def recalculate_all(
    request: Request,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: OvertimeService = Depends(get_overtime_service),
):
    report = service.recalculate_all(actor_id)
    report.raise_for_failures()
    return ApiResponse.ok(BatchReportResponse(**report.to_dict()).model_dump()).to_dict()


@router.post("/{employee_id}/recalculate")
def force_recalculate(
    employee_id: int,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: OvertimeService = Depends(get_overtime_service),
):
    return ApiResponse.ok(service.force_recalculate(employee_id, actor_id)).to_dict()


@router.get("/{employee_id}/balance")
def get_balance(employee_id: int, service: OvertimeService = Depends(get_overtime_service)):
    return ApiResponse.ok(BalanceResponse(**service.get_balance(employee_id)).model_dump(mode="json")).to_dict()


@router.get("/{employee_id}/history")
def get_history(
    employee_id: int,
    year: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    types: Optional[List[str]] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[str] = None,
    service: OvertimeService = Depends(get_overtime_service),
):
    filters = HistoryFilter(year=year, from_date=from_date, to_date=to_date, types=types)
    rows, next_cursor = service.get_history_page(employee_id, filters, cursor, limit)
    page = HistoryPage(
        items=[TransactionResponse.model_validate(row) for row in rows],
        next_cursor=next_cursor,
    )
    return ApiResponse.ok(page.model_dump(mode="json")).to_dict()


@router.get("/{employee_id}/periods")
def get_periods(
    employee_id: int,
    period_type: str = Query(default="month"),
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    service: OvertimeService = Depends(get_overtime_service),
):
    rows = service.get_period_balances(employee_id, period_type, from_date, to_date)
    data = [PeriodBalanceResponse.model_validate(row).model_dump(mode="json") for row in rows]
    pending = [row["period_key"] for row in data if row["verification_status"] != "verified"]
    return ApiResponse.ok(data, metadata={"pending_verification": pending}).to_dict()
