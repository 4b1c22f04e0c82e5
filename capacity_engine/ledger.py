from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from .models import DEFAULT_CONFIG, Allocation, Employee, EngineConfig, WeeklyBucket

EPSILON = 1e-6
_WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)


def capacity_for(employee: Employee, config: EngineConfig = DEFAULT_CONFIG) -> float:
    capacity = employee.weekly_capacity_hours
    if not capacity or capacity <= 0:
        return config.default_capacity_hours
    return float(capacity)


def week_start_for(day: date, config: EngineConfig = DEFAULT_CONFIG) -> date:
    return day + relativedelta(weekday=_WEEKDAYS[config.week_start_day](-1))


def week_end_for(week_start: date) -> date:
    return week_start + timedelta(days=6)


def iter_weeks(start: date, end: date, config: EngineConfig = DEFAULT_CONFIG) -> List[date]:
    """Week boundaries for every week touching ``[start, end]``."""
    weeks: List[date] = []
    current = week_start_for(start, config)
    while current <= end:
        weeks.append(current)
        current += relativedelta(weeks=1)
    return weeks


def _working_days(start: date, end: date, config: EngineConfig) -> int:
    if start > end:
        return 0
    days = 0
    current = start
    while current <= end:
        if current.weekday() in config.working_weekdays:
            days += 1
        current += timedelta(days=1)
    return days


def counts_toward_capacity(
    allocation: Allocation,
    employee: Employee,
    config: EngineConfig = DEFAULT_CONFIG,
) -> bool:
    return allocation.employee_id == employee.id and allocation.status in config.counted_statuses()


def allocation_hours_in_week(
    allocation: Allocation,
    employee: Employee,
    week_start: date,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
    horizon: Optional[date] = None,
) -> float:
    """Hours ``allocation`` contributes to the week, prorated by overlapping working days."""
    week_end = week_end_for(week_start)
    alloc_end = allocation.end if allocation.end is not None else horizon
    overlap_start = max(allocation.start, week_start)
    overlap_end = min(alloc_end, week_end) if alloc_end is not None else week_end
    if overlap_start > overlap_end:
        return 0.0
    days_per_week = len(config.working_weekdays)
    if days_per_week == 0:
        return 0.0
    overlap_days = _working_days(overlap_start, overlap_end, config)
    if overlap_days == 0:
        return 0.0
    weekly = allocation.weekly_hours(capacity_for(employee, config))
    if overlap_days >= days_per_week:
        return weekly
    return weekly * overlap_days / days_per_week


def _week_contributions(
    employee: Employee,
    allocations: Iterable[Allocation],
    week_start: date,
    config: EngineConfig,
    horizon: Optional[date],
) -> List[tuple]:
    contributions = []
    for allocation in allocations:
        if not counts_toward_capacity(allocation, employee, config):
            continue
        hours = allocation_hours_in_week(allocation, employee, week_start, config=config, horizon=horizon)
        if hours > EPSILON:
            contributions.append((allocation.id, allocation.project_id, hours))
    return contributions


def weekly_load(
    employee: Employee,
    allocations: Iterable[Allocation],
    week_start: date,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
    horizon: Optional[date] = None,
) -> float:
    """Total hours allocated to ``employee`` in the week containing ``week_start``.

    Allocations belonging to other employees or with a status that does not
    count toward capacity are ignored. Open-ended allocations run up to
    ``horizon`` (unbounded when ``horizon`` is None).
    """
    aligned = week_start_for(week_start, config)
    return sum(hours for _, _, hours in _week_contributions(employee, allocations, aligned, config, horizon))


def weekly_buckets(
    employee: Employee,
    allocations: Sequence[Allocation],
    start: date,
    end: date,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
    horizon: Optional[date] = None,
) -> List[WeeklyBucket]:
    if end < start:
        raise ValueError("end date must not be earlier than start date")
    capacity = capacity_for(employee, config)
    buckets: List[WeeklyBucket] = []
    for week_start in iter_weeks(start, end, config):
        contributions = _week_contributions(employee, allocations, week_start, config, horizon)
        buckets.append(
            WeeklyBucket(
                employee_id=employee.id,
                week_start=week_start,
                week_end=week_end_for(week_start),
                allocated_hours=sum(hours for _, _, hours in contributions),
                capacity_hours=capacity,
                contributions=tuple(contributions),
            )
        )
    return buckets


def availability_pct(
    employee: Employee,
    allocations: Sequence[Allocation],
    start: date,
    end: date,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> float:
    """Free capacity over the window: 100 minus mean weekly utilization, floored at 0."""
    buckets = weekly_buckets(employee, allocations, start, end, config=config)
    if not buckets:
        return 100.0
    mean_utilization = sum(bucket.utilization_pct for bucket in buckets) / len(buckets)
    return max(0.0, 100.0 - mean_utilization)
