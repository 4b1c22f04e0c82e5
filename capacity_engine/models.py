from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Mapping, Optional, Tuple


SkillId = str
EmployeeId = str

PROFICIENCY_LEVELS: Tuple[str, ...] = ("Beginner", "Intermediate", "Advanced", "Expert")
PROFICIENCY_WEIGHTS: Dict[str, int] = {"Beginner": 1, "Intermediate": 2, "Advanced": 3, "Expert": 4}
PRIORITY_LEVELS: Tuple[str, ...] = ("critical", "high", "medium", "low")
PRIORITY_WEIGHTS: Dict[str, int] = {"critical": 4, "high": 3, "medium": 2, "low": 1}
ALLOCATION_STATUSES: Tuple[str, ...] = ("active", "planned", "completed", "cancelled")

SEVERITY_NONE = "none"
SEVERITY_WARNING = "warning"
SEVERITY_DANGER = "danger"
SEVERITY_CRITICAL = "critical"
SEVERITY_ORDER: Dict[str, int] = {
    SEVERITY_NONE: 0,
    SEVERITY_WARNING: 1,
    SEVERITY_DANGER: 2,
    SEVERITY_CRITICAL: 3,
}

DEFAULT_CAPACITY_HOURS = 40.0


@dataclass(frozen=True)
class EmployeeSkill:
    level: str
    years_experience: float = 0.0
    certified: bool = False


@dataclass(frozen=True)
class Employee:
    """Directory representation of an employee."""

    id: EmployeeId
    name: str
    weekly_capacity_hours: float = DEFAULT_CAPACITY_HOURS
    skills: Mapping[SkillId, EmployeeSkill] = field(default_factory=dict)
    hourly_rate: float = 0.0
    department: str = ""
    location: str = ""
    performance_score: Optional[float] = None
    active: bool = True

    def skill_level(self, skill_id: SkillId) -> Optional[str]:
        skill = self.skills.get(skill_id)
        return skill.level if skill else None


@dataclass(frozen=True)
class SkillRequirement:
    skill_id: SkillId
    min_level: str
    mandatory: bool = True
    priority: str = "medium"
    estimated_hours: float = 0.0
    owner_id: Optional[EmployeeId] = None
    skill_name: str = ""

    @property
    def label(self) -> str:
        return self.skill_name or self.skill_id


@dataclass(frozen=True)
class Allocation:
    """A closed date interval of effort on a project; ``end=None`` is open-ended."""

    id: str
    employee_id: EmployeeId
    project_id: str
    start: date
    end: Optional[date]
    hours_per_week: Optional[float] = None
    percentage: Optional[float] = None
    status: str = "active"
    project_name: str = ""

    def weekly_hours(self, capacity_hours: float) -> float:
        """Hours per week, converting a percentage with the capacity given now."""
        if self.hours_per_week is not None:
            return float(self.hours_per_week)
        if self.percentage is not None:
            return float(self.percentage) / 100.0 * capacity_hours
        return 0.0

    def overlaps(self, start: date, end: Optional[date]) -> bool:
        if end is not None and self.start > end:
            return False
        if self.end is not None and self.end < start:
            return False
        return True

    @property
    def project_label(self) -> str:
        return self.project_name or self.project_id


@dataclass(frozen=True)
class Effort:
    """Proposed effort, expressed as exactly one of hours/week or percentage."""

    hours_per_week: Optional[float] = None
    percentage: Optional[float] = None


@dataclass(frozen=True)
class WeeklyBucket:
    employee_id: EmployeeId
    week_start: date
    week_end: date
    allocated_hours: float
    capacity_hours: float
    contributions: Tuple[Tuple[str, str, float], ...] = ()

    @property
    def utilization_pct(self) -> float:
        if self.capacity_hours <= 0:
            return 0.0
        return self.allocated_hours / self.capacity_hours * 100.0

    @property
    def available_hours(self) -> float:
        return max(0.0, self.capacity_hours - self.allocated_hours)

    def to_dict(self) -> Dict[str, object]:
        return {
            "employee_id": self.employee_id,
            "week_start": self.week_start.isoformat(),
            "week_end": self.week_end.isoformat(),
            "allocated_hours": round(self.allocated_hours, 2),
            "capacity_hours": round(self.capacity_hours, 2),
            "utilization_pct": round(self.utilization_pct, 1),
            "allocations": [
                {"allocation_id": alloc_id, "project_id": project_id, "hours": round(hours, 2)}
                for alloc_id, project_id, hours in self.contributions
            ],
        }


@dataclass(frozen=True)
class WeekConflict:
    week_start: date
    existing_hours: float
    proposed_hours: float
    capacity_hours: float
    severity: str
    allocation_ids: Tuple[str, ...] = ()

    @property
    def total_hours(self) -> float:
        return self.existing_hours + self.proposed_hours

    @property
    def utilization_pct(self) -> float:
        if self.capacity_hours <= 0:
            return 0.0
        return self.total_hours / self.capacity_hours * 100.0

    @property
    def overage_hours(self) -> float:
        return max(0.0, self.total_hours - self.capacity_hours)


@dataclass(frozen=True)
class ConflictResult:
    employee_id: EmployeeId
    severity: str
    over_allocation_hours: float
    over_allocation_pct: float
    peak_utilization_pct: float
    allowed: bool
    weeks: Tuple[WeekConflict, ...] = ()
    contributing_allocations: Tuple[Allocation, ...] = ()
    messages: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def has_conflict(self) -> bool:
        return self.severity != SEVERITY_NONE

    @property
    def conflicting_weeks(self) -> List[WeekConflict]:
        return [week for week in self.weeks if week.severity != SEVERITY_NONE]

    def to_dict(self) -> Dict[str, object]:
        return {
            "employee_id": self.employee_id,
            "severity": self.severity,
            "allowed": self.allowed,
            "over_allocation_hours": round(self.over_allocation_hours, 2),
            "over_allocation_pct": round(self.over_allocation_pct, 1),
            "peak_utilization_pct": round(self.peak_utilization_pct, 1),
            "weeks": [
                {
                    "week_start": week.week_start.isoformat(),
                    "existing_hours": round(week.existing_hours, 2),
                    "proposed_hours": round(week.proposed_hours, 2),
                    "capacity_hours": round(week.capacity_hours, 2),
                    "utilization_pct": round(week.utilization_pct, 1),
                    "severity": week.severity,
                }
                for week in self.weeks
            ],
            "contributing_allocations": [alloc.id for alloc in self.contributing_allocations],
            "messages": list(self.messages),
            "suggestions": list(self.suggestions),
            "error": self.error,
        }


@dataclass(frozen=True)
class SkillMatch:
    skill_id: SkillId
    required_level: str
    held_level: Optional[str]
    gap: int
    covered: bool
    mandatory: bool
    priority: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "skill_id": self.skill_id,
            "required_level": self.required_level,
            "held_level": self.held_level,
            "gap": self.gap,
            "covered": self.covered,
            "mandatory": self.mandatory,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class MatchResult:
    employee_id: EmployeeId
    score: float
    coverage_score: float
    availability_score: Optional[float]
    performance_score: Optional[float]
    skill_matches: Tuple[SkillMatch, ...]
    gaps: Tuple[SkillMatch, ...]
    missing_mandatory: Tuple[SkillId, ...] = ()

    @property
    def meets_mandatory(self) -> bool:
        return not self.missing_mandatory

    def to_dict(self) -> Dict[str, object]:
        return {
            "employee_id": self.employee_id,
            "score": round(self.score, 1),
            "coverage_score": round(self.coverage_score, 1),
            "availability_score": None if self.availability_score is None else round(self.availability_score, 1),
            "performance_score": self.performance_score,
            "skill_matches": [match.to_dict() for match in self.skill_matches],
            "gaps": [gap.to_dict() for gap in self.gaps],
            "missing_mandatory": list(self.missing_mandatory),
        }


@dataclass(frozen=True)
class Candidate:
    """An employee offered to the optimizer with availability for the window."""

    employee: Employee
    availability_pct: float = 100.0


@dataclass(frozen=True)
class TeamConstraints:
    max_team_size: Optional[int] = None
    budget_ceiling: Optional[float] = None
    start: Optional[date] = None
    end: Optional[date] = None
    min_availability_pct: float = 0.0
    department: Optional[str] = None

    def window_weeks(self) -> Optional[float]:
        if self.start is None or self.end is None:
            return None
        return ((self.end - self.start).days + 1) / 7.0


@dataclass(frozen=True)
class RiskFactor:
    type: str
    severity: str
    description: str
    mitigation: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.type,
            "severity": self.severity,
            "description": self.description,
            "mitigation": self.mitigation,
        }


@dataclass(frozen=True)
class SkillGap:
    skill_id: SkillId
    required_level: str
    held_level: str
    gap: int
    held_by: EmployeeId

    def to_dict(self) -> Dict[str, object]:
        return {
            "skill_id": self.skill_id,
            "required_level": self.required_level,
            "held_level": self.held_level,
            "gap": self.gap,
            "held_by": self.held_by,
        }


@dataclass(frozen=True)
class TeamMember:
    employee: Employee
    match: MatchResult
    availability_pct: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "employee_id": self.employee.id,
            "name": self.employee.name,
            "department": self.employee.department,
            "location": self.employee.location,
            "hourly_rate": self.employee.hourly_rate,
            "availability_pct": round(self.availability_pct, 1),
            "match": self.match.to_dict(),
        }


@dataclass
class TeamMatch:
    status: str
    members: List[TeamMember] = field(default_factory=list)
    match_score: float = 0.0
    coverage_score: float = 0.0
    availability_score: float = 0.0
    cost_score: Optional[float] = None
    estimated_cost: float = 0.0
    estimated_timeline_weeks: Optional[int] = None
    missing_skills: List[SkillRequirement] = field(default_factory=list)
    skill_gaps: List[SkillGap] = field(default_factory=list)
    risk_factors: List[RiskFactor] = field(default_factory=list)
    recommendations: List[object] = field(default_factory=list)
    strategy: str = "greedy"

    @property
    def member_ids(self) -> List[EmployeeId]:
        return [member.employee.id for member in self.members]

    def risk(self, risk_type: str) -> Optional[RiskFactor]:
        return next((risk for risk in self.risk_factors if risk.type == risk_type), None)

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status,
            "strategy": self.strategy,
            "match_score": round(self.match_score, 1),
            "coverage_score": round(self.coverage_score, 1),
            "availability_score": round(self.availability_score, 1),
            "cost_score": None if self.cost_score is None else round(self.cost_score, 1),
            "estimated_cost": round(self.estimated_cost, 2),
            "estimated_timeline_weeks": self.estimated_timeline_weeks,
            "team": [member.to_dict() for member in self.members],
            "missing_skills": [req.skill_id for req in self.missing_skills],
            "skill_gaps": [gap.to_dict() for gap in self.skill_gaps],
            "risk_factors": [risk.to_dict() for risk in self.risk_factors],
            "recommendations": [rec.to_dict() for rec in self.recommendations],  # type: ignore[attr-defined]
        }


@dataclass(frozen=True)
class EngineConfig:
    default_capacity_hours: float = DEFAULT_CAPACITY_HOURS
    warning_threshold_pct: float = 100.0
    danger_threshold_pct: float = 120.0
    critical_threshold_pct: float = 150.0
    score_weights: Dict[str, float] = field(
        default_factory=lambda: {"coverage": 0.5, "performance": 0.5, "availability": 0.0}
    )
    proficiency_weights: Dict[str, int] = field(default_factory=lambda: dict(PROFICIENCY_WEIGHTS))
    priority_weights: Dict[str, int] = field(default_factory=lambda: dict(PRIORITY_WEIGHTS))
    include_planned: bool = True
    week_start_day: int = 0
    working_weekdays: Tuple[int, ...] = (0, 1, 2, 3, 4)
    open_ended_horizon_weeks: int = 12
    coverage_risk_threshold: float = 80.0
    availability_risk_threshold: float = 70.0
    cost_risk_ratio: float = 0.9
    scheduling_recommendation_threshold: float = 80.0
    default_max_team_size: int = 8
    optimizer_strategy: str = "greedy"
    solver_time_limit_seconds: float = 10.0
    logging_level: str = "INFO"

    def counted_statuses(self) -> Tuple[str, ...]:
        return ("active", "planned") if self.include_planned else ("active",)

    def proficiency_weight(self, level: Optional[str]) -> int:
        if level is None:
            return 0
        return int(self.proficiency_weights.get(level, 0))

    def priority_weight(self, priority: str) -> int:
        return int(self.priority_weights.get(priority, 0))

    def score_weight(self, key: str) -> float:
        return float(self.score_weights.get(key, 0.0))


DEFAULT_CONFIG = EngineConfig()
