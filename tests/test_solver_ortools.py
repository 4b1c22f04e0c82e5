import pytest

from capacity_engine.models import Candidate, EngineConfig, TeamConstraints
from capacity_engine.optimizer import optimize_team, rank_candidates
from capacity_engine.solver_ortools import select_team_cpsat

pytestmark = pytest.mark.solver

CPSAT = EngineConfig(optimizer_strategy="ortools", solver_time_limit_seconds=5)


@pytest.fixture
def requirements(make_requirement):
    return [
        make_requirement("python", "Advanced", estimated_hours=40),
        make_requirement("react", "Intermediate", estimated_hours=40),
    ]


@pytest.fixture
def pool(make_employee):
    return [
        Candidate(make_employee("x", {"python": "Expert"}, performance_score=100, hourly_rate=50)),
        Candidate(
            make_employee("y", {"python": "Advanced", "react": "Intermediate"}, performance_score=20, hourly_rate=70)
        ),
    ]


def test_cpsat_prefers_smaller_team_with_same_coverage(requirements, pool):
    greedy = optimize_team(requirements, pool)
    assert greedy.member_ids == ["x", "y"]

    solved = optimize_team(requirements, pool, config=CPSAT)
    assert solved.strategy == "ortools"
    assert solved.member_ids == ["y"]
    assert solved.coverage_score == 100
    assert solved.status == "ok"


def test_cpsat_respects_budget(requirements, pool, make_employee):
    cheap_pair = pool + [
        Candidate(make_employee("z", {"react": "Advanced"}, performance_score=10, hourly_rate=10)),
    ]
    # y alone costs 80h * 70 = 5600; x with z costs 80h * 30 = 2400.
    result = optimize_team(requirements, cheap_pair, TeamConstraints(budget_ceiling=3000), config=CPSAT)
    assert result.strategy == "ortools"
    assert sorted(result.member_ids) == ["x", "z"]
    assert result.estimated_cost <= 3000


def test_cpsat_falls_back_to_greedy_when_infeasible(requirements, pool):
    result = optimize_team(requirements, pool, TeamConstraints(budget_ceiling=100), config=CPSAT)
    assert result.strategy == "greedy"
    assert result.member_ids == []
    assert result.risk("cost") is not None


def test_select_team_cpsat_honours_size_limit(requirements, pool):
    ranked = rank_candidates(requirements, pool)
    selected = select_team_cpsat(ranked, requirements, TeamConstraints(max_team_size=1), CPSAT)
    assert [item.employee.id for item in selected] == ["y"]
