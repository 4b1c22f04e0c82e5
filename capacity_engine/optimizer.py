from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .ledger import EPSILON, capacity_for
from .matching import blend_score, rank_key, score_employee
from .models import (
    DEFAULT_CONFIG,
    Candidate,
    Employee,
    EngineConfig,
    MatchResult,
    RiskFactor,
    SkillGap,
    SkillRequirement,
    TeamConstraints,
    TeamMatch,
    TeamMember,
)
from .recommendations import RecommendationEngine
from .validation import ValidationError, normalize_level, validate_requirements

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_PARTIAL = "partial"
STATUS_INSUFFICIENT_DATA = "insufficient_data"
STRATEGIES = ("greedy", "ortools")


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    result: MatchResult
    input_index: int

    @property
    def employee(self) -> Employee:
        return self.candidate.employee


def rank_candidates(
    requirements: Sequence[SkillRequirement],
    pool: Sequence[Candidate],
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[ScoredCandidate]:
    """Score every candidate and order by score, availability, then cheaper rate.

    ``sorted`` is stable, so candidates tied on all three keep input order.
    """
    scored = [
        ScoredCandidate(
            candidate=candidate,
            result=score_employee(
                candidate.employee, requirements, config=config, availability_pct=candidate.availability_pct
            ),
            input_index=idx,
        )
        for idx, candidate in enumerate(pool)
    ]
    return sorted(scored, key=lambda item: rank_key(item.result, item.employee.hourly_rate))


def estimate_cost(requirements: Sequence[SkillRequirement], members: Sequence[Employee]) -> float:
    """Hours at the owner's rate when the owner is on the team, else at the mean member rate."""
    if not members:
        return 0.0
    rates = {member.id: member.hourly_rate for member in members}
    mean_rate = sum(rates.values()) / len(rates)
    total = 0.0
    for req in requirements:
        rate = rates.get(req.owner_id, mean_rate) if req.owner_id else mean_rate
        total += req.estimated_hours * rate
    return total


def estimate_timeline_weeks(
    requirements: Sequence[SkillRequirement],
    members: Sequence[Candidate],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Optional[int]:
    total_hours = sum(req.estimated_hours for req in requirements)
    if total_hours <= 0:
        return 0
    weekly_hours = sum(
        capacity_for(member.employee, config) * max(0.0, member.availability_pct) / 100.0 for member in members
    )
    if weekly_hours <= EPSILON:
        return None
    return math.ceil(total_hours / weekly_hours)


def _required_weights(requirements: Sequence[SkillRequirement], config: EngineConfig) -> List[int]:
    return [config.proficiency_weight(normalize_level(req.min_level, "min_level")) for req in requirements]


def _candidate_weights(item: ScoredCandidate, config: EngineConfig) -> List[int]:
    return [config.proficiency_weight(match.held_level) for match in item.result.skill_matches]


def _improves(held: Sequence[int], best: Sequence[int], required: Sequence[int]) -> bool:
    return any(b < r and h > b for h, b, r in zip(held, best, required))


def _mandatory_covered(
    requirements: Sequence[SkillRequirement], best: Sequence[int], required: Sequence[int]
) -> bool:
    return all(b >= r for req, b, r in zip(requirements, best, required) if req.mandatory)


def select_greedy(
    ranked: Sequence[ScoredCandidate],
    requirements: Sequence[SkillRequirement],
    constraints: TeamConstraints,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Tuple[List[ScoredCandidate], List[ScoredCandidate]]:
    """Walk the ranking and keep candidates that close or narrow an open requirement.

    Returns the selection and the candidates skipped because they would have
    pushed the estimated cost over the budget ceiling.
    """
    max_size = constraints.max_team_size or config.default_max_team_size
    required = _required_weights(requirements, config)
    best = [0] * len(requirements)
    selected: List[ScoredCandidate] = []
    budget_excluded: List[ScoredCandidate] = []
    for pos, item in enumerate(ranked):
        if len(selected) >= max_size:
            break
        held = _candidate_weights(item, config)
        if not _improves(held, best, required):
            continue
        if constraints.budget_ceiling is not None:
            projected = estimate_cost(requirements, [s.employee for s in selected] + [item.employee])
            if projected > constraints.budget_ceiling + EPSILON:
                budget_excluded.append(item)
                continue
        selected.append(item)
        best = [max(b, h) for b, h in zip(best, held)]
        logger.debug("Selected %s (score %.1f)", item.employee.id, item.result.score)
        remaining = ranked[pos + 1:]
        if _mandatory_covered(requirements, best, required) and not any(
            _improves(_candidate_weights(other, config), best, required) for other in remaining
        ):
            break
    return selected, budget_excluded


def _eligible(pool: Sequence[Candidate], constraints: TeamConstraints) -> List[Candidate]:
    eligible = []
    for candidate in pool:
        if not candidate.employee.active:
            continue
        if candidate.availability_pct < constraints.min_availability_pct:
            continue
        if constraints.department and candidate.employee.department != constraints.department:
            continue
        eligible.append(candidate)
    return eligible


def _validate_constraints(constraints: TeamConstraints) -> None:
    if constraints.max_team_size is not None and constraints.max_team_size < 1:
        raise ValidationError("max_team_size", f"must be at least 1, got {constraints.max_team_size}")
    if constraints.budget_ceiling is not None and constraints.budget_ceiling < 0:
        raise ValidationError("budget_ceiling", f"must be non-negative, got {constraints.budget_ceiling}")
    if constraints.start and constraints.end and constraints.end < constraints.start:
        raise ValidationError("end", "constraint window end is before its start")


def _team_skill_state(
    requirements: Sequence[SkillRequirement],
    members: Sequence[TeamMember],
    config: EngineConfig,
) -> Tuple[List[SkillRequirement], List[SkillRequirement], List[SkillGap]]:
    uncovered: List[SkillRequirement] = []
    missing: List[SkillRequirement] = []
    gaps: List[SkillGap] = []
    for idx, req in enumerate(requirements):
        best: Optional[Tuple[int, TeamMember]] = None
        for member in members:
            weight = config.proficiency_weight(member.match.skill_matches[idx].held_level)
            if best is None or weight > best[0]:
                best = (weight, member)
        required_level = normalize_level(req.min_level, "min_level")
        required = config.proficiency_weight(required_level)
        if best is not None and best[0] >= required:
            continue
        uncovered.append(req)
        if best is None or best[0] == 0:
            missing.append(req)
        else:
            weight, holder = best
            gaps.append(SkillGap(
                skill_id=req.skill_id,
                required_level=required_level,
                held_level=holder.match.skill_matches[idx].held_level or "",
                gap=required - weight,
                held_by=holder.employee.id,
            ))
    return uncovered, missing, gaps


def _risk_factors(
    coverage: float,
    availability: float,
    estimated_cost: float,
    uncovered: Sequence[SkillRequirement],
    members: Sequence[TeamMember],
    budget_excluded: Sequence[ScoredCandidate],
    timeline_weeks: Optional[int],
    constraints: TeamConstraints,
    config: EngineConfig,
) -> List[RiskFactor]:
    risks: List[RiskFactor] = []
    mandatory_uncovered = [req.label for req in uncovered if req.mandatory]
    if coverage < config.coverage_risk_threshold:
        risks.append(RiskFactor(
            type="skill_gap",
            severity="high",
            description=f"{100 - coverage:.0f}% of required skills are not adequately covered",
            mitigation="Consider hiring contractors or providing training",
        ))
    elif mandatory_uncovered:
        risks.append(RiskFactor(
            type="skill_gap",
            severity="high",
            description=f"Mandatory skills not covered: {', '.join(mandatory_uncovered)}",
            mitigation="Hire or train for the mandatory skills before staffing the project",
        ))
    if members and availability < config.availability_risk_threshold:
        risks.append(RiskFactor(
            type="availability",
            severity="medium",
            description="Team members have limited availability",
            mitigation="Adjust project timeline or add more resources",
        ))
    budget = constraints.budget_ceiling
    if budget is not None and estimated_cost > budget * config.cost_risk_ratio:
        risks.append(RiskFactor(
            type="cost",
            severity="high",
            description="Project cost approaches or exceeds budget limit",
            mitigation="Optimize team composition or reduce scope",
        ))
    elif budget is not None and budget_excluded and uncovered:
        risks.append(RiskFactor(
            type="cost",
            severity="medium",
            description=f"Budget ceiling excluded {len(budget_excluded)} candidate(s) who would improve coverage",
            mitigation="Raise the budget or accept reduced coverage",
        ))
    window_weeks = constraints.window_weeks()
    if window_weeks is not None and timeline_weeks is not None and timeline_weeks > window_weeks:
        risks.append(RiskFactor(
            type="deadline",
            severity="high",
            description=f"Estimated {timeline_weeks} weeks exceeds the {window_weeks:.1f}-week window",
            mitigation="Extend the deadline or add team members",
        ))
    return risks


def _insufficient_data(
    requirements: Sequence[SkillRequirement],
    constraints: TeamConstraints,
    config: EngineConfig,
    strategy: str,
) -> TeamMatch:
    reason = "no skill requirements were provided" if not requirements else "no eligible candidates"
    logger.warning("Team optimization has insufficient data: %s", reason)
    risks = [RiskFactor(
        type="skill_gap",
        severity="high",
        description=f"100% of required skills are not adequately covered ({reason})",
        mitigation="Consider hiring contractors or providing training",
    )]
    engine = RecommendationEngine(
        missing_skills=requirements,
        skill_gaps=[],
        members=[],
        availability_score=0.0,
        constraints=constraints,
        candidate_count=0,
        config=config,
    )
    return TeamMatch(
        status=STATUS_INSUFFICIENT_DATA,
        missing_skills=list(requirements),
        risk_factors=risks,
        recommendations=engine.analyze(),
        strategy=strategy,
    )


def optimize_team(
    requirements: Sequence[SkillRequirement],
    candidate_pool: Sequence[Candidate],
    constraints: Optional[TeamConstraints] = None,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
) -> TeamMatch:
    """Select a team covering ``requirements`` from ``candidate_pool``.

    Never raises for thin inputs: an empty pool or requirement list yields an
    ``insufficient_data`` result with zero coverage. Malformed requirements or
    constraints raise ``ValidationError``.
    """
    constraints = constraints or TeamConstraints()
    validate_requirements(requirements)
    _validate_constraints(constraints)
    strategy = config.optimizer_strategy
    if strategy not in STRATEGIES:
        raise ValidationError("optimizer_strategy", f"unknown strategy {strategy!r}")

    eligible = _eligible(candidate_pool, constraints)
    if not requirements or not eligible:
        return _insufficient_data(requirements, constraints, config, strategy)

    ranked = rank_candidates(requirements, eligible, config)
    budget_excluded: List[ScoredCandidate] = []
    selected: Optional[List[ScoredCandidate]] = None
    if strategy == "ortools":
        from .solver_ortools import select_team_cpsat

        selected = select_team_cpsat(ranked, requirements, constraints, config)
        if selected is None:
            logger.warning("CP-SAT found no team selection; falling back to greedy")
            strategy = "greedy"
    if selected is None:
        selected, budget_excluded = select_greedy(ranked, requirements, constraints, config)

    members = [
        TeamMember(employee=item.employee, match=item.result, availability_pct=item.candidate.availability_pct)
        for item in selected
    ]
    uncovered, missing, gaps = _team_skill_state(requirements, members, config)
    coverage = 100.0 * (len(requirements) - len(uncovered)) / len(requirements)
    availability = sum(m.availability_pct for m in members) / len(members) if members else 0.0
    performances = [m.employee.performance_score for m in members if m.employee.performance_score is not None]
    performance = sum(performances) / len(performances) if performances else None
    match_score = blend_score(coverage, performance, availability if members else None, config)
    estimated_cost = estimate_cost(requirements, [m.employee for m in members])
    cost_score = None
    if constraints.budget_ceiling:
        cost_score = max(0.0, 100.0 - estimated_cost / constraints.budget_ceiling * 100.0)
    timeline = estimate_timeline_weeks(requirements, [item.candidate for item in selected], config)

    risks = _risk_factors(
        coverage, availability, estimated_cost, uncovered, members, budget_excluded, timeline, constraints, config
    )
    engine = RecommendationEngine(
        missing_skills=missing,
        skill_gaps=gaps,
        members=members,
        availability_score=availability,
        constraints=constraints,
        candidate_count=len(eligible),
        estimated_timeline_weeks=timeline,
        config=config,
    )
    status = STATUS_OK if members and not any(req.mandatory for req in uncovered) else STATUS_PARTIAL
    logger.info(
        "Selected %d of %d candidates: coverage %.1f%%, availability %.1f%%, cost %.2f",
        len(members),
        len(eligible),
        coverage,
        availability,
        estimated_cost,
    )
    return TeamMatch(
        status=status,
        members=members,
        match_score=match_score,
        coverage_score=coverage,
        availability_score=availability,
        cost_score=cost_score,
        estimated_cost=estimated_cost,
        estimated_timeline_weeks=timeline,
        missing_skills=missing,
        skill_gaps=gaps,
        risk_factors=risks,
        recommendations=engine.analyze(),
        strategy=strategy,
    )
