"""Pytest configuration and shared fixtures."""

from datetime import date

import pytest

from capacity_engine.models import Allocation, Employee, EmployeeSkill, SkillRequirement

# 2024-01-01 is a Monday.
WEEK_1 = date(2024, 1, 1)


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "solver: marks tests that run the CP-SAT solver (deselect with '-m \"not solver\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that go through files and the CLI"
    )


@pytest.fixture
def make_employee():
    def _make(employee_id, skills=None, **kwargs):
        kwargs.setdefault("name", employee_id.title())
        return Employee(
            id=employee_id,
            skills={skill_id: EmployeeSkill(level=level) for skill_id, level in (skills or {}).items()},
            **kwargs,
        )

    return _make


@pytest.fixture
def make_allocation():
    counter = {"n": 0}

    def _make(employee_id, start=WEEK_1, end=date(2024, 1, 7), hours=None, percentage=None, **kwargs):
        counter["n"] += 1
        kwargs.setdefault("id", f"a{counter['n']}")
        kwargs.setdefault("project_id", f"p{counter['n']}")
        if hours is None and percentage is None:
            hours = 20
        return Allocation(
            employee_id=employee_id,
            start=start,
            end=end,
            hours_per_week=hours,
            percentage=percentage,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_requirement():
    def _make(skill_id, min_level="Advanced", **kwargs):
        return SkillRequirement(skill_id=skill_id, min_level=min_level, **kwargs)

    return _make


@pytest.fixture
def alice(make_employee):
    return make_employee("alice", {"python": "Expert", "sql": "Intermediate"}, hourly_rate=100, performance_score=90)
