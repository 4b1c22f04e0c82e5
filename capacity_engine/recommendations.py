"""
Recommendations for team matching results.

Turns the gaps left by a team selection into actionable suggestions, in
this order:
- Hiring needs (skills nobody on the team holds)
- Training needs (team members below the required proficiency)
- Scheduling adjustments (team availability too low for the plan)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .models import DEFAULT_CONFIG, EngineConfig, SkillGap, SkillRequirement, TeamConstraints, TeamMember


@dataclass
class HiringRecommendation:
    """Recommendation to hire additional resources."""
    required_skills: List[str]
    count: int
    reason: str
    severity: str  # "critical", "high", "medium", "low"
    external: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": "hiring",
            "required_skills": list(self.required_skills),
            "count": self.count,
            "reason": self.reason,
            "severity": self.severity,
            "external": self.external,
        }


@dataclass
class TrainingRecommendation:
    """Recommendation to train an existing team member."""
    employee_id: str
    skill_id: str
    current_level: str
    target_level: str
    reason: str
    priority: str  # "high", "medium", "low"

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": "training",
            "employee_id": self.employee_id,
            "skill_id": self.skill_id,
            "current_level": self.current_level,
            "target_level": self.target_level,
            "reason": self.reason,
            "priority": self.priority,
        }


@dataclass
class SchedulingRecommendation:
    """Recommendation to adjust the timeline or rebalance allocations."""
    reason: str
    suggestion: str
    affected_employees: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": "scheduling",
            "reason": self.reason,
            "suggestion": self.suggestion,
            "affected_employees": list(self.affected_employees),
        }


_SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


class RecommendationEngine:
    """Analyzes a team selection and generates ordered recommendations."""

    def __init__(
        self,
        missing_skills: Sequence[SkillRequirement],
        skill_gaps: Sequence[SkillGap],
        members: Sequence[TeamMember],
        availability_score: float,
        constraints: TeamConstraints,
        *,
        candidate_count: int,
        estimated_timeline_weeks: Optional[int] = None,
        config: EngineConfig = DEFAULT_CONFIG,
    ):
        self.missing_skills = list(missing_skills)
        self.skill_gaps = list(skill_gaps)
        self.members = list(members)
        self.availability_score = availability_score
        self.constraints = constraints
        self.candidate_count = candidate_count
        self.estimated_timeline_weeks = estimated_timeline_weeks
        self.config = config

        self.hiring_recommendations: List[HiringRecommendation] = []
        self.training_recommendations: List[TrainingRecommendation] = []
        self.scheduling_recommendations: List[SchedulingRecommendation] = []

    def analyze(self) -> List[object]:
        """Run full analysis and return hiring, training, then scheduling recommendations."""
        self._analyze_missing_skills()
        self._analyze_skill_gaps()
        self._analyze_availability()
        self._prioritize_recommendations()
        return [
            *self.hiring_recommendations,
            *self.training_recommendations,
            *self.scheduling_recommendations,
        ]

    def _hires_needed(self, requirements: Sequence[SkillRequirement]) -> int:
        window_weeks = self.constraints.window_weeks()
        hours = sum(req.estimated_hours for req in requirements)
        if not window_weeks or hours <= 0:
            return 1
        capacity = self.config.default_capacity_hours * window_weeks
        return max(1, math.ceil(hours / capacity))

    def _analyze_missing_skills(self):
        if not self.missing_skills:
            return
        external = self.candidate_count == 0
        mandatory = [req for req in self.missing_skills if req.mandatory]
        optional = [req for req in self.missing_skills if not req.mandatory]
        for group, severity in ((mandatory, "critical"), (optional, "medium")):
            if not group:
                continue
            labels = [req.label for req in group]
            if external:
                reason = f"No internal candidates available; hire externally for: {', '.join(labels)}"
            else:
                kind = "mandatory" if group is mandatory else "optional"
                reason = f"Consider hiring specialists for {kind} skills: {', '.join(labels)}"
            self.hiring_recommendations.append(HiringRecommendation(
                required_skills=[req.skill_id for req in group],
                count=self._hires_needed(group),
                reason=reason,
                severity=severity,
                external=external,
            ))

    def _analyze_skill_gaps(self):
        for gap in self.skill_gaps:
            self.training_recommendations.append(TrainingRecommendation(
                employee_id=gap.held_by,
                skill_id=gap.skill_id,
                current_level=gap.held_level,
                target_level=gap.required_level,
                reason=(
                    f"Provide training to bridge the {gap.skill_id} gap "
                    f"({gap.held_level} -> {gap.required_level})"
                ),
                priority="high" if gap.gap >= 2 else "medium",
            ))

    def _analyze_availability(self):
        if not self.members:
            return
        threshold = self.config.scheduling_recommendation_threshold
        if self.availability_score < threshold:
            constrained = [
                member.employee.id for member in self.members if member.availability_pct < threshold
            ]
            self.scheduling_recommendations.append(SchedulingRecommendation(
                reason=f"Team availability is {self.availability_score:.0f}%",
                suggestion="Consider extending timeline to accommodate team availability",
                affected_employees=constrained,
            ))
        window_weeks = self.constraints.window_weeks()
        if (
            window_weeks is not None
            and self.estimated_timeline_weeks is not None
            and self.estimated_timeline_weeks > window_weeks
        ):
            self.scheduling_recommendations.append(SchedulingRecommendation(
                reason=(
                    f"Estimated timeline of {self.estimated_timeline_weeks} weeks exceeds "
                    f"the {window_weeks:.1f}-week window"
                ),
                suggestion="Move the deadline or add team members to shorten the timeline",
            ))

    def _prioritize_recommendations(self):
        self.hiring_recommendations.sort(key=lambda h: _SEVERITY_ORDER.get(h.severity, 999))
        self.training_recommendations.sort(key=lambda t: _PRIORITY_ORDER.get(t.priority, 999))

    def summary(self) -> Dict[str, object]:
        return {
            "total_hiring_needs": len(self.hiring_recommendations),
            "critical_hires": sum(1 for h in self.hiring_recommendations if h.severity == "critical"),
            "training_opportunities": len(self.training_recommendations),
            "scheduling_adjustments": len(self.scheduling_recommendations),
        }
