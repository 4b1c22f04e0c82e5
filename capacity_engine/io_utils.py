from __future__ import annotations

import json
import math
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd
from dateutil import parser as dateparser

from .models import (
    PRIORITY_LEVELS,
    PROFICIENCY_LEVELS,
    Allocation,
    Employee,
    EmployeeSkill,
    EngineConfig,
    SkillRequirement,
    WeeklyBucket,
)
from .validation import ValidationError, normalize_level, normalize_priority, validate_allocation, validate_employee

_ALLOCATION_REQUIRED_COLUMNS = {"id", "employee_id", "project_id", "start_date"}
_REQUIREMENT_REQUIRED_COLUMNS = {"skill_id", "min_level"}
_LOGGING_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_STRATEGIES = {"greedy", "ortools"}
_SCORE_SIGNALS = {"coverage", "performance", "availability"}

UTILIZATION_COLUMNS = [
    "employee_id",
    "week_start",
    "week_end",
    "allocated_hours",
    "capacity_hours",
    "utilization_pct",
    "available_hours",
]


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in sorted(required) if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _is_missing(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def _parse_bool(value: object, field_name: str, default: bool) -> bool:
    if _is_missing(value):
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}' in '{field_name}'")


def _parse_optional_date(value: object, field_name: str) -> Optional[date]:
    if _is_missing(value):
        return None
    if isinstance(value, date):
        return value
    try:
        return dateparser.isoparse(str(value).strip()).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_optional_float(value: object, field_name: str) -> Optional[float]:
    if _is_missing(value):
        return None
    try:
        return float(value)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid number in '{field_name}': {value}") from exc


def _parse_optional_str(value: object) -> Optional[str]:
    if _is_missing(value):
        return None
    return str(value).strip()


def parse_date(value: str, field_name: str = "date") -> date:
    parsed = _parse_optional_date(value, field_name)
    if parsed is None:
        raise ValueError(f"{field_name} is required")
    return parsed


def _parse_skills(raw: object, employee_id: str) -> Dict[str, EmployeeSkill]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        entries = []
        for skill_id, value in raw.items():
            entry = dict(value) if isinstance(value, dict) else {"level": value}
            entry["skill_id"] = skill_id
            entries.append(entry)
    elif isinstance(raw, list):
        entries = raw
    else:
        raise ValueError(f"skills must be an object or array for {employee_id}")
    skills: Dict[str, EmployeeSkill] = {}
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("skill_id"):
            raise ValueError(f"skill entries need a skill_id for {employee_id}")
        skill_id = str(entry["skill_id"]).strip()
        try:
            level = normalize_level(entry.get("level"), f"skills[{skill_id}].level")
        except ValidationError as exc:
            raise ValueError(f"{employee_id}: {exc}") from exc
        skills[skill_id] = EmployeeSkill(
            level=level,
            years_experience=float(entry.get("years_experience", 0) or 0),
            certified=_parse_bool(entry.get("certified"), "certified", False),
        )
    return skills


def load_employees(path: str | Path) -> List[Employee]:
    """Read a JSON array of employee objects."""
    data = json.loads(Path(path).read_text())
    if not isinstance(data, list):
        raise ValueError("employees file must be a JSON array")
    employees: List[Employee] = []
    seen = set()
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("employee entries must be objects")
        employee_id = entry.get("id")
        if not employee_id or not isinstance(employee_id, str):
            raise ValueError("employee id is required")
        if employee_id in seen:
            raise ValueError(f"duplicate employee id '{employee_id}'")
        seen.add(employee_id)
        capacity = _parse_optional_float(entry.get("weekly_capacity_hours"), "weekly_capacity_hours")
        employee = Employee(
            id=employee_id,
            name=str(entry.get("name") or employee_id),
            weekly_capacity_hours=40.0 if capacity is None else capacity,
            skills=_parse_skills(entry.get("skills"), employee_id),
            hourly_rate=_parse_optional_float(entry.get("hourly_rate"), "hourly_rate") or 0.0,
            department=str(entry.get("department", "") or ""),
            location=str(entry.get("location", "") or ""),
            performance_score=_parse_optional_float(entry.get("performance_score"), "performance_score"),
            active=_parse_bool(entry.get("active"), "active", True),
        )
        try:
            validate_employee(employee)
        except ValidationError as exc:
            raise ValueError(f"invalid employee '{employee_id}': {exc}") from exc
        employees.append(employee)
    if not employees:
        raise ValueError("employees file is empty")
    return employees


def load_allocations(path: str | Path) -> List[Allocation]:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    _require_columns(df, _ALLOCATION_REQUIRED_COLUMNS, "allocations.csv")
    allocations: List[Allocation] = []
    for row_number, row in enumerate(df.to_dict(orient="records"), start=2):
        try:
            allocation = Allocation(
                id=str(row["id"]).strip(),
                employee_id=str(row["employee_id"]).strip(),
                project_id=str(row["project_id"]).strip(),
                start=parse_date(row["start_date"], "start_date"),
                end=_parse_optional_date(row.get("end_date"), "end_date"),
                hours_per_week=_parse_optional_float(row.get("hours_per_week"), "hours_per_week"),
                percentage=_parse_optional_float(row.get("percentage"), "percentage"),
                status=_parse_optional_str(row.get("status")) or "active",
                project_name=_parse_optional_str(row.get("project_name")) or "",
            )
            validate_allocation(allocation)
        except ValueError as exc:
            raise ValueError(f"allocations.csv row {row_number}: {exc}") from exc
        allocations.append(allocation)
    return allocations


def load_requirements(path: str | Path) -> List[SkillRequirement]:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    if df.empty:
        raise ValueError("requirements file is empty")
    _require_columns(df, _REQUIREMENT_REQUIRED_COLUMNS, "requirements.csv")
    requirements: List[SkillRequirement] = []
    for row_number, row in enumerate(df.to_dict(orient="records"), start=2):
        try:
            hours = _parse_optional_float(row.get("estimated_hours"), "estimated_hours") or 0.0
            if hours < 0:
                raise ValueError(f"estimated_hours must be non-negative, got {hours}")
            requirements.append(
                SkillRequirement(
                    skill_id=str(row["skill_id"]).strip(),
                    min_level=normalize_level(row["min_level"], "min_level"),
                    mandatory=_parse_bool(row.get("mandatory"), "mandatory", True),
                    priority=normalize_priority(_parse_optional_str(row.get("priority")) or "medium"),
                    estimated_hours=hours,
                    owner_id=_parse_optional_str(row.get("owner_id")),
                    skill_name=_parse_optional_str(row.get("skill_name")) or "",
                )
            )
        except ValueError as exc:
            raise ValueError(f"requirements.csv row {row_number}: {exc}") from exc
    return requirements


def _number(data: dict, key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _positive_int(data: dict, key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{key} must be a positive integer")
    return value


def _percent(data: dict, key: str, default: float) -> float:
    value = _number(data, key, default)
    if not (0 <= value <= 100):
        raise ValueError(f"{key} must be in [0, 100]")
    return value


def _weights(data: dict, key: str, allowed: Sequence[str], defaults: Dict[str, int]) -> Dict[str, int]:
    raw = data.get(key)
    if raw is None:
        return dict(defaults)
    if not isinstance(raw, dict):
        raise ValueError(f"{key} must be an object")
    unknown = sorted(set(raw) - set(allowed))
    if unknown:
        raise ValueError(f"{key} has unknown keys: {', '.join(unknown)}")
    merged = dict(defaults)
    for name, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"{key}[{name}] must be a positive integer")
        merged[name] = value
    return merged


def load_config(path: str | Path) -> EngineConfig:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")
    defaults = EngineConfig()

    capacity = _number(data, "default_capacity_hours", defaults.default_capacity_hours)
    if capacity <= 0:
        raise ValueError("default_capacity_hours must be positive")

    warning = _number(data, "warning_threshold_pct", defaults.warning_threshold_pct)
    danger = _number(data, "danger_threshold_pct", defaults.danger_threshold_pct)
    critical = _number(data, "critical_threshold_pct", defaults.critical_threshold_pct)
    if not (0 < warning <= danger <= critical):
        raise ValueError("thresholds must satisfy 0 < warning <= danger <= critical")

    score_weights = data.get("score_weights", defaults.score_weights)
    if not isinstance(score_weights, dict):
        raise ValueError("score_weights must be an object")
    unknown = sorted(set(score_weights) - _SCORE_SIGNALS)
    if unknown:
        raise ValueError(f"score_weights has unknown keys: {', '.join(unknown)}")
    cleaned_weights: Dict[str, float] = {}
    for name, value in score_weights.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"score_weights[{name}] must be a non-negative number")
        cleaned_weights[name] = float(value)
    if cleaned_weights.get("coverage", 0) <= 0:
        raise ValueError("score_weights[coverage] must be positive")

    include_planned = data.get("include_planned", defaults.include_planned)
    if not isinstance(include_planned, bool):
        raise ValueError("include_planned must be a boolean")

    week_start_day = data.get("week_start_day", defaults.week_start_day)
    if isinstance(week_start_day, bool) or not isinstance(week_start_day, int) or not 0 <= week_start_day <= 6:
        raise ValueError("week_start_day must be an integer in [0, 6]")

    working_weekdays = data.get("working_weekdays", list(defaults.working_weekdays))
    if (
        not isinstance(working_weekdays, list)
        or not working_weekdays
        or any(isinstance(d, bool) or not isinstance(d, int) or not 0 <= d <= 6 for d in working_weekdays)
        or len(set(working_weekdays)) != len(working_weekdays)
    ):
        raise ValueError("working_weekdays must be a non-empty list of distinct integers in [0, 6]")

    cost_risk_ratio = _number(data, "cost_risk_ratio", defaults.cost_risk_ratio)
    if cost_risk_ratio <= 0:
        raise ValueError("cost_risk_ratio must be positive")

    strategy = data.get("optimizer_strategy", defaults.optimizer_strategy)
    if strategy not in _STRATEGIES:
        raise ValueError(f"optimizer_strategy must be one of: {', '.join(sorted(_STRATEGIES))}")

    time_limit = _number(data, "solver_time_limit_seconds", defaults.solver_time_limit_seconds)
    if time_limit <= 0:
        raise ValueError("solver_time_limit_seconds must be positive")

    logging_level = str(data.get("logging_level", defaults.logging_level)).upper()
    if logging_level not in _LOGGING_LEVELS:
        raise ValueError(f"logging_level must be one of: {', '.join(sorted(_LOGGING_LEVELS))}")

    return EngineConfig(
        default_capacity_hours=capacity,
        warning_threshold_pct=warning,
        danger_threshold_pct=danger,
        critical_threshold_pct=critical,
        score_weights=cleaned_weights,
        proficiency_weights=_weights(data, "proficiency_weights", PROFICIENCY_LEVELS, defaults.proficiency_weights),
        priority_weights=_weights(data, "priority_weights", PRIORITY_LEVELS, defaults.priority_weights),
        include_planned=include_planned,
        week_start_day=week_start_day,
        working_weekdays=tuple(sorted(working_weekdays)),
        open_ended_horizon_weeks=_positive_int(data, "open_ended_horizon_weeks", defaults.open_ended_horizon_weeks),
        coverage_risk_threshold=_percent(data, "coverage_risk_threshold", defaults.coverage_risk_threshold),
        availability_risk_threshold=_percent(
            data, "availability_risk_threshold", defaults.availability_risk_threshold
        ),
        cost_risk_ratio=cost_risk_ratio,
        scheduling_recommendation_threshold=_percent(
            data, "scheduling_recommendation_threshold", defaults.scheduling_recommendation_threshold
        ),
        default_max_team_size=_positive_int(data, "default_max_team_size", defaults.default_max_team_size),
        optimizer_strategy=strategy,
        solver_time_limit_seconds=time_limit,
        logging_level=logging_level,
    )


def buckets_to_frame(buckets: Sequence[WeeklyBucket]) -> pd.DataFrame:
    rows = [
        {
            "employee_id": bucket.employee_id,
            "week_start": bucket.week_start.isoformat(),
            "week_end": bucket.week_end.isoformat(),
            "allocated_hours": round(bucket.allocated_hours, 2),
            "capacity_hours": round(bucket.capacity_hours, 2),
            "utilization_pct": round(bucket.utilization_pct, 1),
            "available_hours": round(bucket.available_hours, 2),
        }
        for bucket in buckets
    ]
    return pd.DataFrame(rows, columns=UTILIZATION_COLUMNS)


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    ensure_directory(Path(path).parent)
    df.to_csv(path, index=False)
