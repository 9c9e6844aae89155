from typing import Any, Dict, List, Optional


class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class ValidationError(AppException):
    """Malformed date, time, hours or reason. Not to be confused with pydantic's ValidationError."""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details={"field": field} if field else None
        )
        self.field = field


class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} {entity_id} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"entity": entity, "id": str(entity_id)}
        )
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(AppException):
    """Duplicate ledger natural key, overlapping time entries, absence conflicts."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=409,
            error_code="CONFLICT",
            details=details
        )


class IntegrityError(AppException):
    """
    A month snapshot disagrees with the ledger delta of the same month.
    Named after the domain concept; sqlalchemy.exc.IntegrityError is imported under an alias where needed.
    """
    def __init__(self, employee_id: int, mismatches: List[Dict[str, Any]]):
        periods = ", ".join(m["period_key"] for m in mismatches)
        super().__init__(
            message=f"Snapshot/ledger mismatch for employee {employee_id} in {periods}",
            status_code=409,
            error_code="BALANCE_INTEGRITY_MISMATCH",
            details={"employee_id": employee_id, "mismatches": mismatches}
        )
        self.employee_id = employee_id
        self.mismatches = mismatches


class PartialBatchFailure(AppException):
    def __init__(self, report: Any):
        super().__init__(
            message=f"{report.operation}: {len(report.failures)} of {report.total} employee(s) failed",
            status_code=207,
            error_code="PARTIAL_BATCH_FAILURE",
            details=report.to_dict()
        )
        self.report = report
