from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from dateutil.relativedelta import relativedelta

from .ledger import (
    EPSILON,
    allocation_hours_in_week,
    capacity_for,
    counts_toward_capacity,
    iter_weeks,
    weekly_buckets,
)
from .models import (
    DEFAULT_CONFIG,
    SEVERITY_CRITICAL,
    SEVERITY_DANGER,
    SEVERITY_NONE,
    SEVERITY_ORDER,
    SEVERITY_WARNING,
    Allocation,
    ConflictResult,
    Employee,
    EngineConfig,
    WeekConflict,
    WeeklyBucket,
)
from .validation import validate_allocation

logger = logging.getLogger(__name__)


class CapacityConflictError(RuntimeError):
    """Raised by strict write paths when a proposal is over capacity."""

    def __init__(self, result: ConflictResult) -> None:
        super().__init__(result.error or f"capacity conflict ({result.severity})")
        self.result = result


def classify_severity(overage_pct: float, config: EngineConfig = DEFAULT_CONFIG) -> str:
    """Severity for a load ``overage_pct`` percent above capacity (0 means exactly full)."""
    utilization = 100.0 + overage_pct
    if utilization <= config.warning_threshold_pct + EPSILON:
        return SEVERITY_NONE
    if utilization <= config.danger_threshold_pct + EPSILON:
        return SEVERITY_WARNING
    if utilization <= config.critical_threshold_pct + EPSILON:
        return SEVERITY_DANGER
    return SEVERITY_CRITICAL


def max_severity(severities: Iterable[str]) -> str:
    return max(severities, key=lambda value: SEVERITY_ORDER.get(value, 0), default=SEVERITY_NONE)


def _evaluation_end(proposed: Allocation, horizon: Optional[date], config: EngineConfig) -> date:
    if proposed.end is not None:
        return proposed.end
    if horizon is not None:
        return horizon
    return proposed.start + relativedelta(weeks=config.open_ended_horizon_weeks, days=-1)


def _format_projects(labels: Sequence[str]) -> str:
    unique: List[str] = []
    for label in labels:
        if label and label not in unique:
            unique.append(label)
    return ", ".join(unique) if unique else "none"


def evaluate(
    employee: Employee,
    proposed: Allocation,
    existing: Sequence[Allocation],
    *,
    strict: bool = False,
    config: EngineConfig = DEFAULT_CONFIG,
    horizon: Optional[date] = None,
) -> ConflictResult:
    """Classify the weekly load ``proposed`` would produce on top of ``existing``.

    An existing allocation sharing the proposal's id is treated as the record
    being updated and left out of the existing load. In strict mode any
    severity above ``none`` makes the result disallowed, with ``error`` naming
    the first conflicting week and the peak utilization.

    ``horizon`` only bounds an open-ended proposal. Existing allocations count
    for every week they cover, so a week the proposal touches is judged on the
    same load ``weekly_buckets`` reports for it.
    """
    validate_allocation(proposed)
    others = [alloc for alloc in existing if alloc.id != proposed.id]
    capacity = capacity_for(employee, config)
    end = _evaluation_end(proposed, horizon, config)
    proposed_counts = counts_toward_capacity(proposed, employee, config)

    weeks: List[WeekConflict] = []
    contributors: Dict[str, Allocation] = {}
    project_labels: Dict[date, List[str]] = {}
    for week_start in iter_weeks(proposed.start, end, config):
        proposed_hours = 0.0
        if proposed_counts:
            proposed_hours = allocation_hours_in_week(proposed, employee, week_start, config=config, horizon=end)
        if proposed_hours <= EPSILON:
            continue
        existing_hours = 0.0
        week_ids: List[str] = []
        labels: List[str] = []
        for alloc in others:
            if not counts_toward_capacity(alloc, employee, config):
                continue
            hours = allocation_hours_in_week(alloc, employee, week_start, config=config)
            if hours <= EPSILON:
                continue
            existing_hours += hours
            week_ids.append(alloc.id)
            labels.append(alloc.project_label)
        total = existing_hours + proposed_hours
        severity = classify_severity(total / capacity * 100.0 - 100.0, config)
        weeks.append(
            WeekConflict(
                week_start=week_start,
                existing_hours=existing_hours,
                proposed_hours=proposed_hours,
                capacity_hours=capacity,
                severity=severity,
                allocation_ids=tuple(week_ids),
            )
        )
        if severity != SEVERITY_NONE:
            for alloc in others:
                if alloc.id in week_ids:
                    contributors.setdefault(alloc.id, alloc)
            project_labels[week_start] = labels + [proposed.project_label]

    severity = max_severity(week.severity for week in weeks)
    peak_utilization = max((week.utilization_pct for week in weeks), default=0.0)
    over_hours = max((week.overage_hours for week in weeks), default=0.0)
    conflicting = [week for week in weeks if week.severity != SEVERITY_NONE]

    messages: List[str] = []
    for week in conflicting:
        messages.append(
            f"{employee.name or employee.id} would be over-allocated by {week.overage_hours:.1f}h "
            f"in week of {week.week_start.isoformat()} ({week.utilization_pct:.1f}% utilization); "
            f"affected projects: {_format_projects(project_labels.get(week.week_start, []))}"
        )
    suggestions: List[str] = []
    if conflicting:
        suggestions = [
            f"Consider reducing allocation by {over_hours:.1f} hours",
            "Review project priorities and deadlines",
            "Consider redistributing work to other team members",
        ]

    allowed = True
    error: Optional[str] = None
    if strict and conflicting:
        allowed = False
        first = conflicting[0]
        error = (
            f"Allocation rejected for {employee.name or employee.id}: capacity exceeded in week of "
            f"{first.week_start.isoformat()}; maximum utilization {peak_utilization:.1f}%"
        )
    logger.debug(
        "Evaluated %s for %s across %d weeks: %s (peak %.1f%%)",
        proposed.id,
        employee.id,
        len(weeks),
        severity,
        peak_utilization,
    )
    return ConflictResult(
        employee_id=employee.id,
        severity=severity,
        over_allocation_hours=over_hours,
        over_allocation_pct=max(0.0, peak_utilization - 100.0),
        peak_utilization_pct=peak_utilization,
        allowed=allowed,
        weeks=tuple(weeks),
        contributing_allocations=tuple(contributors.values()),
        messages=tuple(messages),
        suggestions=tuple(suggestions),
        error=error,
    )


def summarize_conflicts(results: Sequence[ConflictResult]) -> Dict[str, object]:
    """Aggregate severities across employees for alerting views."""
    by_severity = {name: 0 for name in SEVERITY_ORDER}
    for result in results:
        by_severity[result.severity] = by_severity.get(result.severity, 0) + 1
    over_allocated = [result for result in results if result.has_conflict]
    worst = max(over_allocated, key=lambda r: r.peak_utilization_pct, default=None)
    return {
        "total_employees": len(results),
        "over_allocated_count": len(over_allocated),
        "critical_count": by_severity.get(SEVERITY_CRITICAL, 0),
        "by_severity": by_severity,
        "has_over_allocations": bool(over_allocated),
        "worst_employee_id": worst.employee_id if worst else None,
        "worst_utilization_pct": round(worst.peak_utilization_pct, 1) if worst else None,
    }


def over_allocation_from_buckets(
    employee: Employee,
    buckets: Sequence[WeeklyBucket],
    config: EngineConfig = DEFAULT_CONFIG,
) -> ConflictResult:
    """Severity of load already booked, one entry per bucket."""
    weeks: List[WeekConflict] = []
    for bucket in buckets:
        severity = SEVERITY_NONE
        if bucket.allocated_hours > bucket.capacity_hours + EPSILON:
            severity = classify_severity(bucket.utilization_pct - 100.0, config)
        weeks.append(
            WeekConflict(
                week_start=bucket.week_start,
                existing_hours=bucket.allocated_hours,
                proposed_hours=0.0,
                capacity_hours=bucket.capacity_hours,
                severity=severity,
                allocation_ids=tuple(allocation_id for allocation_id, _, _ in bucket.contributions),
            )
        )

    conflicting = [week for week in weeks if week.severity != SEVERITY_NONE]
    peak_utilization = max((week.utilization_pct for week in weeks), default=0.0)
    over_hours = max((week.overage_hours for week in weeks), default=0.0)
    messages = [
        f"{employee.name or employee.id} is over-allocated by {week.overage_hours:.1f} hours "
        f"in week of {week.week_start.isoformat()} ({week.utilization_pct:.1f}% utilization)"
        for week in conflicting
    ]
    suggestions: List[str] = []
    if conflicting:
        suggestions = [
            f"Consider reducing allocation by {over_hours:.1f} hours",
            "Review project priorities and deadlines",
            "Consider redistributing work to other team members",
        ]
    return ConflictResult(
        employee_id=employee.id,
        severity=max_severity(week.severity for week in weeks),
        over_allocation_hours=over_hours,
        over_allocation_pct=max(0.0, peak_utilization - 100.0),
        peak_utilization_pct=peak_utilization,
        allowed=True,
        weeks=tuple(weeks),
        messages=tuple(messages),
        suggestions=tuple(suggestions),
    )


def check_existing(
    employee: Employee,
    allocations: Sequence[Allocation],
    start: date,
    end: date,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> ConflictResult:
    """Over-allocation already on the books for ``employee`` between ``start`` and ``end``."""
    buckets = weekly_buckets(employee, allocations, start, end, config=config)
    result = over_allocation_from_buckets(employee, buckets, config)
    conflicting_ids = {allocation_id for week in result.conflicting_weeks for allocation_id in week.allocation_ids}
    if not conflicting_ids:
        return result
    contributors = tuple(alloc for alloc in allocations if alloc.id in conflicting_ids)
    return replace(result, contributing_allocations=contributors)
