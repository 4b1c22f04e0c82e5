from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from dateutil.relativedelta import relativedelta

from .conflicts import CapacityConflictError, check_existing, evaluate, summarize_conflicts
from .ledger import availability_pct, week_end_for, week_start_for, weekly_buckets
from .matching import rank_key, score_employee
from .models import (
    DEFAULT_CONFIG,
    Allocation,
    Candidate,
    ConflictResult,
    Effort,
    Employee,
    EmployeeId,
    EngineConfig,
    MatchResult,
    SkillRequirement,
    TeamConstraints,
    TeamMatch,
    WeeklyBucket,
)
from .optimizer import optimize_team as run_optimizer
from .stores import AllocationStore, EmployeeDirectory
from .validation import (
    ValidationError,
    validate_allocation,
    validate_date_range,
    validate_effort,
    validate_requirements,
)

logger = logging.getLogger(__name__)

PROPOSED_ALLOCATION_ID = "__proposed__"


class AllocationOrchestrator:
    """Entry point tying the directory and allocation store to the engine.

    Read operations work on snapshots pulled from the store. Writes run the
    capacity check and the upsert while holding the store's lock for that
    employee.

    When ``skill_catalog`` is given, requirements naming a skill outside it
    are rejected before any scoring.
    """

    def __init__(
        self,
        directory: EmployeeDirectory,
        store: AllocationStore,
        config: EngineConfig = DEFAULT_CONFIG,
        skill_catalog: Optional[Iterable[str]] = None,
    ) -> None:
        self.directory = directory
        self.store = store
        self.config = config
        self.skill_catalog = set(skill_catalog) if skill_catalog is not None else None

    def _employee(self, employee_id: EmployeeId) -> Employee:
        employee = self.directory.get_employee(employee_id)
        if employee is None:
            raise ValidationError("employee_id", f"unknown employee {employee_id!r}")
        return employee

    def _employees(self, candidate_ids: Optional[Sequence[EmployeeId]]) -> List[Employee]:
        if candidate_ids is None:
            return [employee for employee in self.directory.list_employees() if employee.active]
        employees = self.directory.get_employees_by_ids(candidate_ids)
        found = {employee.id for employee in employees}
        unknown = [eid for eid in candidate_ids if eid not in found]
        if unknown:
            raise ValidationError("candidate_ids", f"unknown employee(s): {', '.join(unknown)}")
        return employees

    def _horizon(self, start: date, end: Optional[date]) -> date:
        if end is not None:
            return end
        return start + relativedelta(weeks=self.config.open_ended_horizon_weeks, days=-1)

    def _allocations_in_weeks(self, employee: Employee, start: date, end: date) -> List[Allocation]:
        """Stored allocations overlapping any day of the weeks touching ``[start, end]``."""
        first_week = week_start_for(start, self.config)
        last_week_end = week_end_for(week_start_for(end, self.config))
        return self.store.get_active_allocations(employee.id, first_week, last_week_end)

    def _availability(self, employee: Employee, start: Optional[date], end: Optional[date]) -> Optional[float]:
        if start is None or end is None:
            return None
        allocations = self._allocations_in_weeks(employee, start, end)
        return availability_pct(employee, allocations, start, end, config=self.config)

    def _evaluate(self, employee: Employee, proposed: Allocation, strict: bool) -> ConflictResult:
        horizon = self._horizon(proposed.start, proposed.end)
        existing = self._allocations_in_weeks(employee, proposed.start, horizon)
        result = evaluate(employee, proposed, existing, strict=strict, config=self.config, horizon=horizon)
        if not result.allowed:
            logger.warning("%s", result.error)
        elif result.has_conflict:
            for message in result.messages:
                logger.warning("%s", message)
        return result

    def validate_assignment(
        self,
        employee_id: EmployeeId,
        start: date,
        end: Optional[date],
        effort: Effort,
        strict: bool = False,
        project_id: Optional[str] = None,
        exclude_allocation_id: Optional[str] = None,
    ) -> ConflictResult:
        """Check a prospective assignment without writing anything.

        ``exclude_allocation_id`` names an existing allocation being replaced so
        its own hours are not counted twice.
        """
        employee = self._employee(employee_id)
        validate_date_range(start, end)
        validate_effort(effort)
        proposed = Allocation(
            id=exclude_allocation_id or PROPOSED_ALLOCATION_ID,
            employee_id=employee.id,
            project_id=project_id or "proposed",
            start=start,
            end=end,
            hours_per_week=effort.hours_per_week,
            percentage=effort.percentage,
        )
        return self._evaluate(employee, proposed, strict)

    def get_utilization(self, employee_id: EmployeeId, start: date, end: date) -> List[WeeklyBucket]:
        employee = self._employee(employee_id)
        validate_date_range(start, end)
        allocations = self._allocations_in_weeks(employee, start, end)
        return weekly_buckets(employee, allocations, start, end, config=self.config)

    def check_over_allocations(
        self,
        employee_ids: Optional[Sequence[EmployeeId]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[ConflictResult]:
        """Severity of allocations already stored, one result per employee.

        ``employee_ids`` defaults to every active employee. ``start`` is
        required; ``end`` defaults to the open-ended horizon from ``start``.
        """
        validate_date_range(start, end)
        horizon = self._horizon(start, end)
        results = []
        for employee in self._employees(employee_ids):
            allocations = self._allocations_in_weeks(employee, start, horizon)
            result = check_existing(employee, allocations, start, horizon, config=self.config)
            for message in result.messages:
                logger.warning("%s", message)
            results.append(result)
        return results

    def get_over_allocation_summary(
        self,
        employee_ids: Optional[Sequence[EmployeeId]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict[str, object]:
        return summarize_conflicts(self.check_over_allocations(employee_ids, start, end))

    def match_employees_to_requirements(
        self,
        requirements: Sequence[SkillRequirement],
        candidate_ids: Optional[Sequence[EmployeeId]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[MatchResult]:
        """Score candidates against ``requirements``, best first.

        Availability joins the score only when a ``start``/``end`` window is given.
        """
        validate_requirements(requirements, self.skill_catalog)
        if start is not None or end is not None:
            validate_date_range(start, end)
        scored = []
        for employee in self._employees(candidate_ids):
            result = score_employee(
                employee,
                requirements,
                config=self.config,
                availability_pct=self._availability(employee, start, end),
            )
            scored.append((result, employee.hourly_rate))
        scored.sort(key=lambda pair: rank_key(pair[0], pair[1]))
        return [result for result, _ in scored]

    def optimize_team(
        self,
        requirements: Sequence[SkillRequirement],
        constraints: Optional[TeamConstraints] = None,
        candidate_ids: Optional[Sequence[EmployeeId]] = None,
    ) -> TeamMatch:
        validate_requirements(requirements, self.skill_catalog)
        constraints = constraints or TeamConstraints()
        pool = []
        for employee in self._employees(candidate_ids):
            availability = self._availability(employee, constraints.start, constraints.end)
            pool.append(Candidate(employee=employee, availability_pct=100.0 if availability is None else availability))
        return run_optimizer(requirements, pool, constraints, config=self.config)

    def create_allocation(self, allocation: Allocation, strict: bool = False) -> ConflictResult:
        """Evaluate and store a new allocation.

        Raises ``CapacityConflictError`` when ``strict`` and the allocation
        would push the employee over capacity; nothing is written in that case.
        """
        validate_allocation(allocation)
        employee = self._employee(allocation.employee_id)
        with self.store.employee_lock(employee.id):
            if self.store.get_allocation(allocation.id) is not None:
                raise ValidationError("id", f"allocation {allocation.id!r} already exists")
            result = self._evaluate(employee, allocation, strict)
            if not result.allowed:
                raise CapacityConflictError(result)
            self.store.upsert_allocation(allocation)
        logger.info("Created allocation %s for %s (%s)", allocation.id, employee.id, result.severity)
        return result

    def update_allocation(self, allocation: Allocation, strict: bool = False) -> ConflictResult:
        validate_allocation(allocation)
        employee = self._employee(allocation.employee_id)
        with self.store.employee_lock(employee.id):
            if self.store.get_allocation(allocation.id) is None:
                raise ValidationError("id", f"unknown allocation {allocation.id!r}")
            result = self._evaluate(employee, allocation, strict)
            if not result.allowed:
                raise CapacityConflictError(result)
            self.store.upsert_allocation(allocation)
        logger.info("Updated allocation %s for %s (%s)", allocation.id, employee.id, result.severity)
        return result

    def cancel_allocation(self, allocation_id: str) -> Allocation:
        current = self.store.get_allocation(allocation_id)
        if current is None:
            raise ValidationError("allocation_id", f"unknown allocation {allocation_id!r}")
        with self.store.employee_lock(current.employee_id):
            # re-read under the lock so a concurrent update is not overwritten
            current = self.store.get_allocation(allocation_id)
            if current is None:
                raise ValidationError("allocation_id", f"unknown allocation {allocation_id!r}")
            cancelled = replace(current, status="cancelled")
            self.store.upsert_allocation(cancelled)
        logger.info("Cancelled allocation %s", allocation_id)
        return cancelled
