"""
Per-employee write serialization.

Ledger chaining is order-sensitive, so all mutations for one employee run
one at a time. Different employees never block each other. The in-process
lock is complemented by ``SELECT ... FOR UPDATE`` on the employee row, which
covers multi-process deployments on PostgreSQL.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class EmployeeLockRegistry:

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.RLock] = {}

    def lock_for(self, employee_id: int) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(employee_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[employee_id] = lock
            return lock

    @contextmanager
    def hold(self, employee_id: int) -> Iterator[None]:
        lock = self.lock_for(employee_id)
        with lock:
            yield


employee_locks = EmployeeLockRegistry()
