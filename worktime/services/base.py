"""
Common service plumbing: session, clock, logger and the per-employee unit of work.

Services flush; only the outermost unit of work commits. A unit of work
serializes writers for one employee (in-process lock plus a row lock on the
employee) and wraps its writes in a SAVEPOINT, so a failure part-way through
a replay leaves the previous committed chain in place.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from worktime.core.clock import Clock, SystemClock
from worktime.core.exceptions import NotFoundError
from worktime.core.locks import employee_locks
from worktime.models.employee import Employee

# session.info key holding the nesting depth of open units of work
_UOW_DEPTH = "worktime.uow_depth"


class BaseService:

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self._logger = logging.getLogger(self.__class__.__module__)

    def get_employee(self, employee_id: int) -> Employee:
        employee = self.db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    @contextmanager
    def unit_of_work(self, employee_id: int) -> Iterator[Employee]:
        """
        Atomic, serialized write scope for one employee.

        Nested units (e.g. a correction that triggers a replay) join the
        outer one; only the outermost commits.

        Raises:
            NotFoundError: if the employee does not exist
        """
        with employee_locks.hold(employee_id):
            depth = self.db.info.get(_UOW_DEPTH, 0)
            self.db.info[_UOW_DEPTH] = depth + 1
            try:
                employee = (
                    self.db.query(Employee)
                    .filter(Employee.id == employee_id)
                    .with_for_update()
                    .first()
                )
                if employee is None:
                    raise NotFoundError("Employee", employee_id)

                with self.db.begin_nested():
                    yield employee

                if depth == 0:
                    try:
                        self.db.commit()
                    except Exception:
                        self.db.rollback()
                        raise
            finally:
                self.db.info[_UOW_DEPTH] = depth
