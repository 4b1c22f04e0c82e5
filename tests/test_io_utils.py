import json
from datetime import date

import pandas as pd
import pytest

from capacity_engine.io_utils import (
    buckets_to_frame,
    load_allocations,
    load_config,
    load_employees,
    load_requirements,
    write_csv,
)
from capacity_engine.ledger import weekly_buckets
from capacity_engine.models import EngineConfig


def _write_json(path, payload):
    path.write_text(json.dumps(payload))
    return path


def test_load_config_defaults_and_overrides(tmp_path):
    path = _write_json(
        tmp_path / "config.json",
        {
            "danger_threshold_pct": 110,
            "optimizer_strategy": "ortools",
            "working_weekdays": [3, 0, 1, 2],
            "priority_weights": {"critical": 10},
            "logging_level": "debug",
        },
    )
    config = load_config(path)
    assert config.danger_threshold_pct == 110
    assert config.warning_threshold_pct == EngineConfig().warning_threshold_pct
    assert config.optimizer_strategy == "ortools"
    assert config.working_weekdays == (0, 1, 2, 3)
    assert config.priority_weights["critical"] == 10
    assert config.priority_weights["low"] == 1
    assert config.logging_level == "DEBUG"


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"warning_threshold_pct": 130}, "thresholds"),
        ({"optimizer_strategy": "magic"}, "optimizer_strategy"),
        ({"week_start_day": 7}, "week_start_day"),
        ({"working_weekdays": []}, "working_weekdays"),
        ({"score_weights": {"luck": 1}}, "score_weights"),
        ({"default_max_team_size": 0}, "default_max_team_size"),
        ({"include_planned": "yes"}, "include_planned"),
        ({"proficiency_weights": {"Guru": 5}}, "proficiency_weights"),
        ({"logging_level": "LOUD"}, "logging_level"),
    ],
)
def test_load_config_rejects_bad_values(tmp_path, payload, message):
    path = _write_json(tmp_path / "config.json", payload)
    with pytest.raises(ValueError, match=message):
        load_config(path)


def test_load_employees_accepts_both_skill_shapes(tmp_path):
    path = _write_json(
        tmp_path / "employees.json",
        [
            {
                "id": "e1",
                "name": "Ada",
                "weekly_capacity_hours": 32,
                "hourly_rate": 90,
                "skills": {"python": "expert", "sql": {"level": 2, "years_experience": 3}},
                "performance_score": 85,
            },
            {
                "id": "e2",
                "skills": [{"skill_id": "react", "level": "Advanced", "certified": "yes"}],
                "active": "false",
            },
        ],
    )
    employees = load_employees(path)
    ada, bo = employees
    assert ada.weekly_capacity_hours == 32
    assert ada.skills["python"].level == "Expert"
    assert ada.skills["sql"].level == "Intermediate"
    assert ada.skills["sql"].years_experience == 3
    assert ada.performance_score == 85
    assert bo.name == "e2"
    assert bo.weekly_capacity_hours == 40
    assert bo.skills["react"].certified
    assert not bo.active


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"id": "e1"}, "JSON array"),
        ([{"name": "no id"}], "employee id"),
        ([{"id": "e1"}, {"id": "e1"}], "duplicate"),
        ([{"id": "e1", "weekly_capacity_hours": 0}], "weekly_capacity_hours"),
        ([{"id": "e1", "skills": {"python": "Guru"}}], "proficiency"),
    ],
)
def test_load_employees_rejects_bad_input(tmp_path, payload, message):
    path = _write_json(tmp_path / "employees.json", payload)
    with pytest.raises(ValueError, match=message):
        load_employees(path)


def test_load_allocations(tmp_path):
    path = tmp_path / "allocations.csv"
    path.write_text(
        "id,employee_id,project_id,start_date,end_date,hours_per_week,percentage,status,project_name\n"
        "a1,e1,p1,2024-01-01,2024-01-31,20,,active,Apollo\n"
        "a2,e1,p2,2024-02-01,,,50,planned,\n"
    )
    first, second = load_allocations(path)
    assert first.start == date(2024, 1, 1)
    assert first.end == date(2024, 1, 31)
    assert first.hours_per_week == 20
    assert first.project_label == "Apollo"
    assert second.end is None
    assert second.percentage == 50
    assert second.hours_per_week is None
    assert second.status == "planned"


def test_load_allocations_reports_row(tmp_path):
    path = tmp_path / "allocations.csv"
    path.write_text(
        "id,employee_id,project_id,start_date,hours_per_week,percentage\n"
        "a1,e1,p1,2024-01-01,20,\n"
        "a2,e1,p1,2024-01-01,20,50\n"
    )
    with pytest.raises(ValueError, match="row 3"):
        load_allocations(path)


def test_load_allocations_missing_columns(tmp_path):
    path = tmp_path / "allocations.csv"
    path.write_text("id,employee_id\na1,e1\n")
    with pytest.raises(ValueError, match="project_id, start_date"):
        load_allocations(path)


def test_load_requirements(tmp_path):
    path = tmp_path / "requirements.csv"
    path.write_text(
        "skill_id,min_level,mandatory,priority,estimated_hours,owner_id,skill_name\n"
        "python,advanced,yes,High,120,e1,Python\n"
        "docs,1,no,,,,\n"
    )
    python, docs = load_requirements(path)
    assert python.min_level == "Advanced"
    assert python.priority == "high"
    assert python.estimated_hours == 120
    assert python.owner_id == "e1"
    assert python.label == "Python"
    assert docs.min_level == "Beginner"
    assert not docs.mandatory
    assert docs.priority == "medium"
    assert docs.owner_id is None


def test_load_requirements_rejects_unknown_level(tmp_path):
    path = tmp_path / "requirements.csv"
    path.write_text("skill_id,min_level\npython,guru\n")
    with pytest.raises(ValueError, match="row 2"):
        load_requirements(path)


def test_buckets_round_trip_through_csv(tmp_path, make_employee, make_allocation):
    emp = make_employee("e1")
    buckets = weekly_buckets(emp, [make_allocation("e1", hours=30)], date(2024, 1, 1), date(2024, 1, 14))
    out = tmp_path / "nested" / "utilization.csv"
    write_csv(buckets_to_frame(buckets), out)
    frame = pd.read_csv(out)
    assert list(frame["week_start"]) == ["2024-01-01", "2024-01-08"]
    assert list(frame["utilization_pct"]) == [75.0, 0.0]
