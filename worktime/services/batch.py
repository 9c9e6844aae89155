"""
Per-employee batch execution.

Each employee runs in its own unit of work and is committed on its own, so
a failure (or a cancellation between employees) never touches employees
already processed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from worktime.core.clock import Clock
from worktime.core.exceptions import AppException, PartialBatchFailure

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class BatchItemResult:
    employee_id: int
    status: str
    data: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"employee_id": self.employee_id, "status": self.status}
        if self.data is not None:
            result["data"] = self.data
        if self.error_code is not None:
            result["error_code"] = self.error_code
            result["error_message"] = self.error_message
        return result


@dataclass
class BatchReport:
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    cancelled: bool = False
    items: List[BatchItemResult] = field(default_factory=list)

    @property
    def successes(self) -> List[BatchItemResult]:
        return [i for i in self.items if i.status == SUCCEEDED]

    @property
    def failures(self) -> List[BatchItemResult]:
        return [i for i in self.items if i.status == FAILED]

    @property
    def skipped(self) -> List[BatchItemResult]:
        return [i for i in self.items if i.status == SKIPPED]

    @property
    def total(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled": self.cancelled,
            "total": self.total,
            "succeeded": len(self.successes),
            "failed": len(self.failures),
            "skipped": len(self.skipped),
            "items": [i.to_dict() for i in self.items],
        }

    def raise_for_failures(self):
        if self.failures:
            raise PartialBatchFailure(self)


# A per-employee step returns (status, data); status is SUCCEEDED or SKIPPED
EmployeeStep = Callable[[int], Tuple[str, Optional[Dict[str, Any]]]]


def run_for_employees(
    db: Session,
    clock: Clock,
    operation: str,
    employee_ids: Iterable[int],
    step: EmployeeStep,
    should_cancel: Optional[Callable[[], bool]] = None
) -> BatchReport:
    """
    Run ``step`` for each employee, collecting every outcome. Never aborts
    on a failing employee; ``should_cancel`` is checked before each one.
    """
    report = BatchReport(operation=operation, started_at=clock.utcnow_naive())
    for employee_id in employee_ids:
        if should_cancel is not None and should_cancel():
            report.cancelled = True
            logger.warning(f"{operation} cancelled after {report.total} employee(s)")
            break
        try:
            status, data = step(employee_id)
            report.items.append(BatchItemResult(employee_id, status, data))
        except AppException as e:
            db.rollback()
            logger.warning(f"{operation} failed for employee {employee_id}: {e.error_code} {e.message}")
            report.items.append(BatchItemResult(employee_id, FAILED, e.details, e.error_code, e.message))
        except Exception as e:
            db.rollback()
            logger.warning(f"{operation} failed for employee {employee_id}: {e}", exc_info=True)
            report.items.append(BatchItemResult(employee_id, FAILED, None, "UNHANDLED_EXCEPTION", str(e)))
    report.completed_at = clock.utcnow_naive()
    logger.info(
        f"{operation} finished: {len(report.successes)} succeeded, {len(report.failures)} failed, "
        f"{len(report.skipped)} skipped{' (cancelled)' if report.cancelled else ''}"
    )
    return report
