import threading
from dataclasses import replace
from datetime import date

import pytest

from capacity_engine.conflicts import CapacityConflictError
from capacity_engine.models import Effort, EngineConfig, TeamConstraints
from capacity_engine.orchestrator import AllocationOrchestrator
from capacity_engine.stores import InMemoryAllocationStore, InMemoryEmployeeDirectory
from capacity_engine.validation import ValidationError

MONDAY = date(2024, 1, 1)
SUNDAY = date(2024, 1, 7)


@pytest.fixture
def directory(make_employee):
    return InMemoryEmployeeDirectory(
        [
            make_employee("dana", {"python": "Expert"}, name="Dana", hourly_rate=80),
            make_employee("eli", {"python": "Expert"}, name="Eli", hourly_rate=80),
            make_employee("fay", {"react": "Advanced"}, name="Fay", active=False),
        ]
    )


@pytest.fixture
def store():
    return InMemoryAllocationStore()


@pytest.fixture
def orchestrator(directory, store):
    return AllocationOrchestrator(directory, store)


def test_validate_assignment_reports_overage(orchestrator, make_allocation):
    orchestrator.create_allocation(make_allocation("dana", hours=32))
    result = orchestrator.validate_assignment("dana", MONDAY, SUNDAY, Effort(hours_per_week=10))
    assert result.severity == "warning"
    assert result.allowed
    assert result.over_allocation_hours == pytest.approx(2)


def test_validate_assignment_strict_does_not_raise(orchestrator, make_allocation):
    orchestrator.create_allocation(make_allocation("dana", hours=32))
    result = orchestrator.validate_assignment("dana", MONDAY, SUNDAY, Effort(hours_per_week=20), strict=True)
    assert not result.allowed
    assert "130.0%" in result.error


def test_validate_assignment_rejects_bad_effort(orchestrator):
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.validate_assignment("dana", MONDAY, SUNDAY, Effort(hours_per_week=10, percentage=20))
    assert excinfo.value.field == "effort"
    with pytest.raises(ValidationError):
        orchestrator.validate_assignment("dana", MONDAY, SUNDAY, Effort(hours_per_week=-5))


def test_unknown_employee(orchestrator):
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.validate_assignment("ghost", MONDAY, SUNDAY, Effort(hours_per_week=5))
    assert excinfo.value.field == "employee_id"


def test_strict_create_raises_and_writes_nothing(orchestrator, store, make_allocation):
    orchestrator.create_allocation(make_allocation("dana", hours=32))
    with pytest.raises(CapacityConflictError) as excinfo:
        orchestrator.create_allocation(make_allocation("dana", hours=20, id="late"), strict=True)
    assert excinfo.value.result.severity == "danger"
    assert store.get_allocation("late") is None


def test_non_strict_create_keeps_over_allocation(orchestrator, store, make_allocation):
    orchestrator.create_allocation(make_allocation("dana", hours=32))
    result = orchestrator.create_allocation(make_allocation("dana", hours=20, id="late"))
    assert result.severity == "danger"
    assert store.get_allocation("late") is not None


def test_duplicate_create_rejected(orchestrator, make_allocation):
    alloc = make_allocation("dana", hours=10)
    orchestrator.create_allocation(alloc)
    with pytest.raises(ValidationError):
        orchestrator.create_allocation(alloc)


def test_update_excludes_previous_version(orchestrator, store, make_allocation):
    alloc = make_allocation("dana", hours=20, id="a1")
    orchestrator.create_allocation(alloc)
    result = orchestrator.update_allocation(replace(alloc, hours_per_week=30), strict=True)
    assert result.severity == "none"
    assert store.get_allocation("a1").hours_per_week == 30
    check = orchestrator.validate_assignment(
        "dana", MONDAY, SUNDAY, Effort(hours_per_week=30), exclude_allocation_id="a1"
    )
    assert check.severity == "none"


def test_update_unknown_allocation(orchestrator, make_allocation):
    with pytest.raises(ValidationError):
        orchestrator.update_allocation(make_allocation("dana", id="missing"))


def test_cancel_frees_capacity(orchestrator, make_allocation):
    alloc = make_allocation("dana", hours=30, id="a1")
    orchestrator.create_allocation(alloc)
    assert orchestrator.get_utilization("dana", MONDAY, SUNDAY)[0].allocated_hours == pytest.approx(30)
    cancelled = orchestrator.cancel_allocation("a1")
    assert cancelled.status == "cancelled"
    assert orchestrator.get_utilization("dana", MONDAY, SUNDAY)[0].allocated_hours == 0
    with pytest.raises(ValidationError):
        orchestrator.cancel_allocation("nope")


def test_planned_allocations_follow_config(directory, make_allocation):
    store = InMemoryAllocationStore([make_allocation("dana", hours=30, status="planned")])
    counted = AllocationOrchestrator(directory, store)
    ignored = AllocationOrchestrator(directory, store, EngineConfig(include_planned=False))
    assert counted.get_utilization("dana", MONDAY, SUNDAY)[0].allocated_hours == pytest.approx(30)
    assert ignored.get_utilization("dana", MONDAY, SUNDAY)[0].allocated_hours == 0


def test_concurrent_strict_creates_never_overbook(orchestrator, store, make_allocation):
    allocations = [make_allocation("dana", hours=15, id=f"c{i}") for i in range(4)]
    outcomes = []

    def worker(alloc):
        try:
            orchestrator.create_allocation(alloc, strict=True)
            outcomes.append("ok")
        except CapacityConflictError:
            outcomes.append("rejected")

    threads = [threading.Thread(target=worker, args=(alloc,)) for alloc in allocations]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["ok", "ok", "rejected", "rejected"]
    assert len(store.list_allocations("dana")) == 2


def test_match_ranks_free_employee_first(orchestrator, make_allocation, make_requirement):
    orchestrator.create_allocation(make_allocation("dana", start=MONDAY, end=date(2024, 1, 14), hours=20))
    results = orchestrator.match_employees_to_requirements(
        [make_requirement("python")], start=MONDAY, end=date(2024, 1, 14)
    )
    assert [r.employee_id for r in results] == ["eli", "dana"]
    assert results[1].availability_score == pytest.approx(50)


def test_match_without_window_skips_availability(orchestrator, make_requirement):
    results = orchestrator.match_employees_to_requirements([make_requirement("python")], candidate_ids=["eli"])
    assert [r.employee_id for r in results] == ["eli"]
    assert results[0].availability_score is None


def test_match_unknown_candidate(orchestrator, make_requirement):
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.match_employees_to_requirements([make_requirement("python")], candidate_ids=["eli", "zed"])
    assert "zed" in str(excinfo.value)


def test_optimize_team_uses_window_availability(orchestrator, make_allocation, make_requirement):
    orchestrator.create_allocation(make_allocation("dana", start=MONDAY, end=date(2024, 1, 14), hours=40))
    constraints = TeamConstraints(start=MONDAY, end=date(2024, 1, 14), min_availability_pct=10)
    team = orchestrator.optimize_team([make_requirement("python")], constraints)
    assert team.member_ids == ["eli"]
    assert team.status == "ok"


def test_optimize_team_skips_inactive_employees(orchestrator, make_requirement):
    team = orchestrator.optimize_team([make_requirement("react", "Beginner")])
    assert team.member_ids == []
    assert team.coverage_score == 0
    assert team.status == "partial"


def test_open_ended_booking_counts_fully_in_final_proposal_week(orchestrator, make_allocation):
    orchestrator.create_allocation(make_allocation("dana", end=None, hours=40))
    week = date(2024, 1, 15)
    assert orchestrator.get_utilization("dana", week, date(2024, 1, 21))[0].allocated_hours == pytest.approx(40)
    result = orchestrator.validate_assignment("dana", week, date(2024, 1, 17), Effort(hours_per_week=10), strict=True)
    assert result.weeks[0].existing_hours == pytest.approx(40)
    assert result.severity == "warning"
    assert result.peak_utilization_pct == pytest.approx(115)
    assert not result.allowed


def test_utilization_includes_allocation_ending_before_window_in_same_week(orchestrator, make_allocation):
    orchestrator.create_allocation(make_allocation("dana", start=MONDAY, end=date(2024, 1, 2), hours=40))
    buckets = orchestrator.get_utilization("dana", date(2024, 1, 3), SUNDAY)
    assert buckets[0].week_start == MONDAY
    assert buckets[0].allocated_hours == pytest.approx(16)


def test_check_over_allocations_scans_stored_bookings(orchestrator, make_allocation):
    orchestrator.create_allocation(make_allocation("dana", hours=32, id="apollo"))
    orchestrator.create_allocation(make_allocation("dana", hours=20, id="zephyr"))
    orchestrator.create_allocation(make_allocation("eli", hours=10))
    results = {r.employee_id: r for r in orchestrator.check_over_allocations(start=MONDAY, end=date(2024, 1, 14))}
    assert set(results) == {"dana", "eli"}
    dana = results["dana"]
    assert dana.severity == "danger"
    assert len(dana.weeks) == 2
    assert [w.week_start for w in dana.conflicting_weeks] == [MONDAY]
    assert dana.over_allocation_hours == pytest.approx(12)
    assert sorted(a.id for a in dana.contributing_allocations) == ["apollo", "zephyr"]
    assert "Dana is over-allocated by 12.0 hours" in dana.messages[0]
    assert results["eli"].severity == "none"


def test_check_over_allocations_requires_start(orchestrator):
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.check_over_allocations(["dana"])
    assert excinfo.value.field == "start"


def test_over_allocation_summary(orchestrator, make_allocation):
    orchestrator.create_allocation(make_allocation("dana", hours=32))
    orchestrator.create_allocation(make_allocation("dana", hours=20))
    summary = orchestrator.get_over_allocation_summary(start=MONDAY, end=SUNDAY)
    assert summary["total_employees"] == 2
    assert summary["over_allocated_count"] == 1
    assert summary["by_severity"]["danger"] == 1
    assert summary["worst_employee_id"] == "dana"
    assert summary["worst_utilization_pct"] == 130.0
    only_eli = orchestrator.get_over_allocation_summary(["eli"], start=MONDAY, end=SUNDAY)
    assert not only_eli["has_over_allocations"]


class LateUpdateStore(InMemoryAllocationStore):
    """Applies ``late_update`` right after the first lookup returns."""

    def __init__(self, allocations, late_update):
        super().__init__(allocations)
        self.late_update = late_update

    def get_allocation(self, allocation_id):
        current = super().get_allocation(allocation_id)
        if self.late_update is not None:
            update, self.late_update = self.late_update, None
            self.upsert_allocation(update)
        return current


def test_cancel_keeps_update_made_before_lock(directory, make_allocation):
    alloc = make_allocation("dana", hours=20, id="a1")
    store = LateUpdateStore([alloc], replace(alloc, hours_per_week=30))
    cancelled = AllocationOrchestrator(directory, store).cancel_allocation("a1")
    assert cancelled.status == "cancelled"
    assert cancelled.hours_per_week == 30
    assert store.get_allocation("a1").hours_per_week == 30


def test_skill_catalog_rejects_unknown_skills(directory, store, make_requirement):
    orchestrator = AllocationOrchestrator(directory, store, skill_catalog=["python", "react"])
    requirements = [make_requirement("python"), make_requirement("cobol")]
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.match_employees_to_requirements(requirements)
    assert excinfo.value.field == "requirements[1].skill_id"
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.optimize_team(requirements)
    assert excinfo.value.field == "requirements[1].skill_id"
    assert [r.employee_id for r in orchestrator.match_employees_to_requirements(requirements[:1])] == ["dana", "eli"]
