from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


class TimeEntryChanged(BaseModel):
    date: date


class EnsureBalancesRequest(BaseModel):
    # date, 'YYYY-MM-DD' or 'YYYY-MM'; defaults to today
    through: Optional[str] = None


class TransactionResponse(BaseModel):
    id: int
    employee_id: int
    date: date
    type: str
    hours: float
    balance_before: float
    balance_after: float
    reference_type: str
    reference_id: str
    description: Optional[str] = None
    created_at: datetime
    created_by: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class HistoryPage(BaseModel):
    items: List[TransactionResponse]
    next_cursor: Optional[str] = None


class BalanceResponse(BaseModel):
    employee_id: int
    balance: float
    as_of: date
    carryover_from_previous_year: float
    last_transaction_date: Optional[date] = None


class PeriodBalanceResponse(BaseModel):
    period_type: str
    period_key: str
    period_start: date
    period_end: date
    target_hours: float
    raw_target_hours: float
    actual_hours: float
    overtime: float
    worked_hours: float
    absence_credit_hours: float
    correction_hours: float
    unpaid_reduction_hours: float
    carryover_from_previous_year: Optional[float] = None
    verification_status: str
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CorrectionCreate(BaseModel):
    employee_id: int
    date: date
    hours: float
    reason: str
    correction_type: str = "manual"
    approved_by: Optional[int] = None


class CorrectionResponse(BaseModel):
    id: int
    employee_id: int
    date: date
    hours: float
    reason: str
    correction_type: str
    created_by: int
    approved_by: Optional[int] = None
    created_at: datetime
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class BatchReportResponse(BaseModel):
    operation: str
    started_at: str
    completed_at: Optional[str] = None
    cancelled: bool
    total: int
    succeeded: int
    failed: int
    skipped: int
    items: List[Dict[str, Any]] = Field(default_factory=list)


# Resolve forward references for Pydantic V2
TransactionResponse.model_rebuild()
HistoryPage.model_rebuild()
PeriodBalanceResponse.model_rebuild()
CorrectionResponse.model_rebuild()
