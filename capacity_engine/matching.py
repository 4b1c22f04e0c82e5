from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from .models import DEFAULT_CONFIG, Employee, EngineConfig, MatchResult, SkillMatch, SkillRequirement
from .validation import normalize_level, normalize_priority


def held_weight(employee: Employee, skill_id: str, config: EngineConfig = DEFAULT_CONFIG) -> int:
    level = employee.skill_level(skill_id)
    if level is None:
        return 0
    return config.proficiency_weight(normalize_level(level, f"skills[{skill_id}].level"))


def match_requirement(
    employee: Employee,
    requirement: SkillRequirement,
    config: EngineConfig = DEFAULT_CONFIG,
) -> SkillMatch:
    required_level = normalize_level(requirement.min_level, "min_level")
    raw_level = employee.skill_level(requirement.skill_id)
    held_level = normalize_level(raw_level, f"skills[{requirement.skill_id}].level") if raw_level else None
    required = config.proficiency_weight(required_level)
    held = config.proficiency_weight(held_level)
    return SkillMatch(
        skill_id=requirement.skill_id,
        required_level=required_level,
        held_level=held_level,
        gap=max(0, required - held),
        covered=held >= required,
        mandatory=requirement.mandatory,
        priority=normalize_priority(requirement.priority),
    )


def coverage_score(matches: Sequence[SkillMatch], config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Priority-weighted share of covered requirements, 0-100."""
    total = sum(config.priority_weight(match.priority) for match in matches)
    if total <= 0:
        return 0.0
    covered = sum(config.priority_weight(match.priority) for match in matches if match.covered)
    return 100.0 * covered / total


def blend_score(
    coverage: float,
    performance: Optional[float],
    availability: Optional[float],
    config: EngineConfig = DEFAULT_CONFIG,
) -> float:
    """Weighted mean of the signals that are present; absent signals drop out."""
    signals: Dict[str, Optional[float]] = {
        "coverage": coverage,
        "performance": performance,
        "availability": availability,
    }
    weighted = 0.0
    total_weight = 0.0
    for key, value in signals.items():
        weight = config.score_weight(key)
        if value is None or weight <= 0:
            continue
        weighted += weight * float(value)
        total_weight += weight
    if total_weight <= 0:
        return coverage
    return min(100.0, max(0.0, weighted / total_weight))


def sort_gaps(matches: Sequence[SkillMatch], config: EngineConfig = DEFAULT_CONFIG) -> List[SkillMatch]:
    uncovered = [match for match in matches if not match.covered]
    return sorted(uncovered, key=lambda m: (config.priority_weight(m.priority), m.gap), reverse=True)


def score_employee(
    employee: Employee,
    requirements: Sequence[SkillRequirement],
    *,
    config: EngineConfig = DEFAULT_CONFIG,
    availability_pct: Optional[float] = None,
) -> MatchResult:
    """Score ``employee`` against ``requirements``.

    Coverage is priority-weighted: failing a critical requirement costs four
    times as much as failing a low one. The overall score blends coverage with
    the employee's performance score and, when given, availability, using
    ``config.score_weights``. Gaps are ordered by priority then gap size,
    largest first.
    """
    matches = [match_requirement(employee, req, config) for req in requirements]
    coverage = coverage_score(matches, config)
    score = blend_score(coverage, employee.performance_score, availability_pct, config)
    missing_mandatory = tuple(match.skill_id for match in matches if match.mandatory and not match.covered)
    return MatchResult(
        employee_id=employee.id,
        score=score,
        coverage_score=coverage,
        availability_score=availability_pct,
        performance_score=employee.performance_score,
        skill_matches=tuple(matches),
        gaps=tuple(sort_gaps(matches, config)),
        missing_mandatory=missing_mandatory,
    )


def rank_key(result: MatchResult, hourly_rate: float) -> Tuple[float, float, float]:
    """Score desc, availability desc, hourly rate asc; pair with a stable sort."""
    availability = result.availability_score if result.availability_score is not None else 100.0
    return (-result.score, -availability, hourly_rate)
