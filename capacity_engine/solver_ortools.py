"""
OR-Tools CP-SAT team selection.

Picks a team from the ranked candidates by solving a small 0/1 model:
- One boolean per candidate (selected or not)
- One boolean per requirement (covered or not), only true when some selected
  candidate holds the required proficiency
- Team size bounded by the constraint (or the configured default)
- Budget ceiling as a linear bound on hours at the mean member rate

Objective, in strict priority order:
1. Maximize priority-weighted requirement coverage
2. Prefer smaller teams
3. Prefer higher-scoring candidates

Owner-specific rates are not modeled, so the chosen team is re-costed with
the optimizer's estimator and rejected if it lands over budget. Callers fall
back to the greedy selection whenever this returns None.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from ortools.sat.python import cp_model

from .ledger import EPSILON
from .models import DEFAULT_CONFIG, EngineConfig, SkillRequirement, TeamConstraints
from .validation import normalize_level, normalize_priority

if TYPE_CHECKING:
    from .optimizer import ScoredCandidate

logger = logging.getLogger(__name__)

# Rates and budgets are scaled to integer cents for the linear budget row.
MONEY_SCALE = 100


class TeamSelectionModel:
    """CP-SAT model selecting at most ``max_size`` candidates."""

    def __init__(
        self,
        ranked: Sequence["ScoredCandidate"],
        requirements: Sequence[SkillRequirement],
        constraints: TeamConstraints,
        config: EngineConfig = DEFAULT_CONFIG,
    ):
        self.ranked = list(ranked)
        self.requirements = list(requirements)
        self.constraints = constraints
        self.config = config
        self.max_size = min(constraints.max_team_size or config.default_max_team_size, len(self.ranked))

        self.model = cp_model.CpModel()
        self.select_vars: Dict[int, cp_model.IntVar] = {}  # candidate index -> BoolVar
        self.cover_vars: Dict[int, cp_model.IntVar] = {}  # requirement index -> BoolVar

    def _covers(self, cand_idx: int, req_idx: int) -> bool:
        match = self.ranked[cand_idx].result.skill_matches[req_idx]
        return match.covered

    def build(self):
        for i, item in enumerate(self.ranked):
            self.select_vars[i] = self.model.NewBoolVar(f"select_{item.employee.id}")
        for r, req in enumerate(self.requirements):
            self.cover_vars[r] = self.model.NewBoolVar(f"cover_{r}_{req.skill_id}")

        self._add_coverage_constraints()
        self._add_size_constraints()
        self._add_budget_constraint()
        self._set_objective()

    def _add_coverage_constraints(self):
        for r in self.cover_vars:
            holders = [self.select_vars[i] for i in self.select_vars if self._covers(i, r)]
            if holders:
                self.model.Add(self.cover_vars[r] <= sum(holders))
            else:
                self.model.Add(self.cover_vars[r] == 0)

    def _add_size_constraints(self):
        selected = sum(self.select_vars.values())
        self.model.Add(selected <= self.max_size)
        self.model.Add(selected >= 1)

    def _add_budget_constraint(self):
        budget = self.constraints.budget_ceiling
        if budget is None:
            return
        total_hours = sum(req.estimated_hours for req in self.requirements)
        if total_hours <= 0:
            return
        # total_hours * mean(rate) <= budget  <=>  total_hours * sum(rate_i x_i) <= budget * sum(x_i)
        hours = int(round(total_hours * MONEY_SCALE))
        lhs = sum(
            int(round(item.employee.hourly_rate * MONEY_SCALE)) * hours * self.select_vars[i]
            for i, item in enumerate(self.ranked)
        )
        rhs = sum(int(round(budget * MONEY_SCALE)) * MONEY_SCALE * x for x in self.select_vars.values())
        self.model.Add(lhs <= rhs)

    def _set_objective(self):
        n = len(self.ranked)
        scores = {i: int(round(item.result.score)) for i, item in enumerate(self.ranked)}
        size_weight = 100 * n + 1
        coverage_weight = size_weight * (n + 1)
        objective_terms = []
        for r, req in enumerate(self.requirements):
            priority = self.config.priority_weight(normalize_priority(req.priority))
            objective_terms.append(self.cover_vars[r] * coverage_weight * max(1, priority))
        for i, x in self.select_vars.items():
            objective_terms.append(x * (scores[i] - size_weight))
        self.model.Maximize(sum(objective_terms))

    def solve(self, time_limit_seconds: float) -> Optional[cp_model.CpSolver]:
        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = time_limit_seconds
        solver.parameters.num_workers = 1

        logger.debug(
            "CP-SAT team model: %d candidates, %d requirements, max size %d",
            len(self.select_vars),
            len(self.cover_vars),
            self.max_size,
        )
        status = solver.Solve(self.model)
        logger.debug("CP-SAT status %s in %.2fs", solver.StatusName(status), solver.WallTime())
        if status in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            return solver
        return None

    def selection(self, solver: cp_model.CpSolver) -> List["ScoredCandidate"]:
        return [self.ranked[i] for i, x in self.select_vars.items() if solver.Value(x)]


def select_team_cpsat(
    ranked: Sequence["ScoredCandidate"],
    requirements: Sequence[SkillRequirement],
    constraints: TeamConstraints,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Optional[List["ScoredCandidate"]]:
    """Return the selected candidates in ranking order, or None when no usable team was found."""
    from .optimizer import estimate_cost

    if not ranked or not requirements:
        return None
    for req in requirements:
        normalize_level(req.min_level, "min_level")

    team_model = TeamSelectionModel(ranked, requirements, constraints, config)
    team_model.build()
    solver = team_model.solve(config.solver_time_limit_seconds)
    if solver is None:
        return None
    selected = team_model.selection(solver)
    if constraints.budget_ceiling is not None:
        cost = estimate_cost(requirements, [item.employee for item in selected])
        if cost > constraints.budget_ceiling + EPSILON:
            logger.info("CP-SAT team costs %.2f, over the %.2f ceiling", cost, constraints.budget_ceiling)
            return None
    return selected
