"""Input checks run before any capacity or matching computation."""

from __future__ import annotations

import math
from datetime import date
from typing import Iterable, Optional, Sequence

from .models import (
    ALLOCATION_STATUSES,
    PRIORITY_LEVELS,
    PROFICIENCY_LEVELS,
    Allocation,
    Effort,
    Employee,
    SkillRequirement,
)


class ValidationError(ValueError):
    """Malformed engine input; ``field`` names the offending attribute."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def normalize_level(value: object, field: str = "level") -> str:
    """Map a proficiency name (any case) or its 1-4 weight onto the canonical name."""
    if _is_number(value):
        index = int(value)  # type: ignore[arg-type]
        if index != value or not 1 <= index <= len(PROFICIENCY_LEVELS):
            raise ValidationError(field, f"proficiency weight must be 1-{len(PROFICIENCY_LEVELS)}, got {value}")
        return PROFICIENCY_LEVELS[index - 1]
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return normalize_level(int(stripped), field)
        for level in PROFICIENCY_LEVELS:
            if level.lower() == stripped.lower():
                return level
    raise ValidationError(field, f"unknown proficiency level {value!r}")


def normalize_priority(value: object, field: str = "priority") -> str:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in PRIORITY_LEVELS:
            return lowered
    raise ValidationError(field, f"unknown priority {value!r}")


def validate_date_range(start: Optional[date], end: Optional[date], field: str = "end") -> None:
    if start is None:
        raise ValidationError("start", "start date is required")
    if end is not None and end < start:
        raise ValidationError(field, f"end date {end.isoformat()} is before start date {start.isoformat()}")


def validate_effort(effort: Effort) -> None:
    hours, pct = effort.hours_per_week, effort.percentage
    if (hours is None) == (pct is None):
        raise ValidationError("effort", "exactly one of hours_per_week or percentage is required")
    if hours is not None:
        if not _is_number(hours) or hours <= 0:
            raise ValidationError("hours_per_week", f"must be a positive number, got {hours}")
    if pct is not None:
        if not _is_number(pct) or pct <= 0:
            raise ValidationError("percentage", f"must be a positive number, got {pct}")


def validate_employee(employee: Employee) -> None:
    if not employee.id:
        raise ValidationError("employee.id", "employee id is required")
    capacity = employee.weekly_capacity_hours
    if not _is_number(capacity) or capacity <= 0:
        raise ValidationError("weekly_capacity_hours", f"must be positive for {employee.id}, got {capacity}")
    if not _is_number(employee.hourly_rate) or employee.hourly_rate < 0:
        raise ValidationError("hourly_rate", f"must be non-negative for {employee.id}")
    for skill_id, skill in employee.skills.items():
        normalize_level(skill.level, f"skills[{skill_id}].level")


def validate_allocation(allocation: Allocation) -> None:
    if not allocation.employee_id:
        raise ValidationError("employee_id", "allocation must reference an employee")
    if allocation.status not in ALLOCATION_STATUSES:
        raise ValidationError("status", f"unknown allocation status {allocation.status!r}")
    validate_date_range(allocation.start, allocation.end)
    validate_effort(Effort(allocation.hours_per_week, allocation.percentage))


def validate_requirements(
    requirements: Sequence[SkillRequirement],
    known_skills: Optional[Iterable[str]] = None,
) -> None:
    """Check levels, priorities and hours; ``known_skills`` enables the unknown-id check."""
    catalog = set(known_skills) if known_skills is not None else None
    for idx, req in enumerate(requirements):
        prefix = f"requirements[{idx}]"
        if not req.skill_id:
            raise ValidationError(f"{prefix}.skill_id", "skill id is required")
        if catalog is not None and req.skill_id not in catalog:
            raise ValidationError(f"{prefix}.skill_id", f"unknown skill id {req.skill_id!r}")
        normalize_level(req.min_level, f"{prefix}.min_level")
        normalize_priority(req.priority, f"{prefix}.priority")
        if not _is_number(req.estimated_hours) or req.estimated_hours < 0:
            raise ValidationError(f"{prefix}.estimated_hours", f"must be non-negative, got {req.estimated_hours}")
