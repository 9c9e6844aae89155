# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    employee, time_entry, absence_request, holiday,
    overtime_transaction, period_balance, correction,
    vacation_balance, audit_log
)

# Explicit class exports for cleaner imports
from .employee import Employee
from .time_entry import TimeEntry
from .absence_request import AbsenceRequest
from .holiday import Holiday
from .overtime_transaction import OvertimeTransaction
from .period_balance import PeriodBalance
from .correction import Correction
from .vacation_balance import VacationBalance
from .audit_log import AuditLog

__all__ = [
    "Employee",
    "TimeEntry",
    "AbsenceRequest",
    "Holiday",
    "OvertimeTransaction",
    "PeriodBalance",
    "Correction",
    "VacationBalance",
    "AuditLog",
]
