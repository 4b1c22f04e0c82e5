from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import date
from typing import ContextManager, Dict, Iterable, List, Optional, Sequence

from .models import Allocation, Employee, EmployeeId

COUNTED_STATUSES = ("active", "planned")


class EmployeeDirectory(ABC):
    """Read-only source of employee records."""

    @abstractmethod
    def get_employee(self, employee_id: EmployeeId) -> Optional[Employee]:
        ...

    @abstractmethod
    def get_employees_by_ids(self, employee_ids: Iterable[EmployeeId]) -> List[Employee]:
        ...

    @abstractmethod
    def list_employees(self) -> List[Employee]:
        ...


class AllocationStore(ABC):
    """Allocation persistence consumed by the orchestrator.

    Implementations must make ``employee_lock`` exclusive per employee so a
    capacity check followed by a write cannot interleave with another write
    for the same employee.
    """

    @abstractmethod
    def get_active_allocations(
        self, employee_id: EmployeeId, start: date, end: Optional[date]
    ) -> List[Allocation]:
        ...

    @abstractmethod
    def get_allocation(self, allocation_id: str) -> Optional[Allocation]:
        ...

    @abstractmethod
    def upsert_allocation(self, allocation: Allocation) -> Allocation:
        ...

    @abstractmethod
    def employee_lock(self, employee_id: EmployeeId) -> ContextManager:
        ...


class InMemoryEmployeeDirectory(EmployeeDirectory):
    def __init__(self, employees: Sequence[Employee] = ()) -> None:
        self._employees: Dict[EmployeeId, Employee] = {}
        for employee in employees:
            self._employees[employee.id] = employee

    def get_employee(self, employee_id: EmployeeId) -> Optional[Employee]:
        return self._employees.get(employee_id)

    def get_employees_by_ids(self, employee_ids: Iterable[EmployeeId]) -> List[Employee]:
        """Known employees in the order requested; unknown ids are skipped."""
        return [self._employees[eid] for eid in employee_ids if eid in self._employees]

    def list_employees(self) -> List[Employee]:
        return list(self._employees.values())


class InMemoryAllocationStore(AllocationStore):
    """Thread-safe allocation registry with one lock per employee."""

    def __init__(self, allocations: Sequence[Allocation] = ()) -> None:
        self._allocations: Dict[str, Allocation] = {}
        self._lock = threading.Lock()
        self._employee_locks: Dict[EmployeeId, threading.Lock] = {}
        for allocation in allocations:
            self._allocations[allocation.id] = allocation

    def employee_lock(self, employee_id: EmployeeId) -> threading.Lock:
        with self._lock:
            lock = self._employee_locks.get(employee_id)
            if lock is None:
                lock = threading.Lock()
                self._employee_locks[employee_id] = lock
            return lock

    def get_active_allocations(
        self, employee_id: EmployeeId, start: date, end: Optional[date]
    ) -> List[Allocation]:
        """Active and planned allocations for ``employee_id`` overlapping ``[start, end]``."""
        with self._lock:
            snapshot = list(self._allocations.values())
        return [
            alloc
            for alloc in snapshot
            if alloc.employee_id == employee_id
            and alloc.status in COUNTED_STATUSES
            and alloc.overlaps(start, end)
        ]

    def get_allocation(self, allocation_id: str) -> Optional[Allocation]:
        with self._lock:
            return self._allocations.get(allocation_id)

    def upsert_allocation(self, allocation: Allocation) -> Allocation:
        with self._lock:
            self._allocations[allocation.id] = allocation
        return allocation

    def list_allocations(self, employee_id: Optional[EmployeeId] = None) -> List[Allocation]:
        with self._lock:
            allocations = list(self._allocations.values())
        if employee_id is None:
            return allocations
        return [alloc for alloc in allocations if alloc.employee_id == employee_id]
