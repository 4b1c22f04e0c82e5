from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .conflicts import CapacityConflictError, summarize_conflicts
from .io_utils import (
    buckets_to_frame,
    load_allocations,
    load_config,
    load_employees,
    load_requirements,
    parse_date,
    write_csv,
)
from .models import DEFAULT_CONFIG, Effort, EngineConfig, TeamConstraints
from .orchestrator import AllocationOrchestrator
from .stores import InMemoryAllocationStore, InMemoryEmployeeDirectory


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to engine configuration JSON (defaults apply when omitted)")
    parser.add_argument("--employees", required=True, help="Path to employees JSON input")
    parser.add_argument("--allocations", help="Path to allocations CSV input")
    parser.add_argument("--skills", help="Comma-separated skill ids; requirements outside this list are rejected")


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Resource allocation capacity engine (JSON/CSV in, JSON out)."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="Check a proposed allocation against weekly capacity")
    _add_common_args(validate)
    validate.add_argument("--employee", required=True, help="Employee id")
    validate.add_argument("--start", required=True, help="Start date (ISO)")
    validate.add_argument("--end", help="End date (ISO); omit for open-ended")
    effort = validate.add_mutually_exclusive_group(required=True)
    effort.add_argument("--hours", type=float, help="Hours per week")
    effort.add_argument("--percentage", type=float, help="Percentage of weekly capacity")
    validate.add_argument("--project", help="Project id for messages")
    validate.add_argument("--strict", action="store_true", help="Exit 1 when the allocation would over-allocate")

    utilization = sub.add_parser("utilization", help="Weekly utilization for an employee")
    _add_common_args(utilization)
    utilization.add_argument("--employee", required=True, help="Employee id")
    utilization.add_argument("--start", required=True, help="Start date (ISO)")
    utilization.add_argument("--end", required=True, help="End date (ISO)")
    utilization.add_argument("--out", help="Write weekly buckets to this CSV instead of printing JSON")

    conflicts = sub.add_parser("conflicts", help="Report over-allocation already in the allocations input")
    _add_common_args(conflicts)
    conflicts.add_argument("--start", required=True, help="Window start (ISO)")
    conflicts.add_argument("--end", help="Window end (ISO); defaults to the open-ended horizon")
    conflicts.add_argument("--candidates", help="Comma-separated employee ids (default: all active)")

    match = sub.add_parser("match", help="Rank employees against skill requirements")
    _add_common_args(match)
    match.add_argument("--requirements", required=True, help="Path to requirements CSV")
    match.add_argument("--candidates", help="Comma-separated employee ids (default: all active)")
    match.add_argument("--start", help="Window start for availability (ISO)")
    match.add_argument("--end", help="Window end for availability (ISO)")

    optimize = sub.add_parser("optimize", help="Select a team for skill requirements")
    _add_common_args(optimize)
    optimize.add_argument("--requirements", required=True, help="Path to requirements CSV")
    optimize.add_argument("--candidates", help="Comma-separated employee ids (default: all active)")
    optimize.add_argument("--max-team-size", type=int, help="Maximum team size")
    optimize.add_argument("--budget", type=float, help="Budget ceiling")
    optimize.add_argument("--start", help="Project window start (ISO)")
    optimize.add_argument("--end", help="Project window end (ISO)")
    optimize.add_argument("--min-availability", type=float, default=0.0, help="Minimum availability percent")
    optimize.add_argument("--department", help="Restrict candidates to a department")
    return parser.parse_args(argv)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _optional_date(value: Optional[str], field_name: str):
    return parse_date(value, field_name) if value else None


def _split_ids(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


def _build_orchestrator(args: argparse.Namespace) -> AllocationOrchestrator:
    for label, path in (("config", args.config), ("employees", args.employees), ("allocations", args.allocations)):
        if path and not Path(path).exists():
            raise ValueError(f"{label} file not found at {path}")
    config: EngineConfig = load_config(args.config) if args.config else DEFAULT_CONFIG
    _configure_logging(config.logging_level)
    employees = load_employees(args.employees)
    allocations = load_allocations(args.allocations) if args.allocations else []
    return AllocationOrchestrator(
        InMemoryEmployeeDirectory(employees),
        InMemoryAllocationStore(allocations),
        config,
        skill_catalog=_split_ids(args.skills),
    )


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2))


def _run(args: argparse.Namespace, orchestrator: AllocationOrchestrator) -> int:
    if args.command == "validate":
        result = orchestrator.validate_assignment(
            args.employee,
            parse_date(args.start, "start"),
            _optional_date(args.end, "end"),
            Effort(hours_per_week=args.hours, percentage=args.percentage),
            strict=args.strict,
            project_id=args.project,
        )
        _print_json(result.to_dict())
        return 0 if result.allowed else 1

    if args.command == "utilization":
        buckets = orchestrator.get_utilization(
            args.employee, parse_date(args.start, "start"), parse_date(args.end, "end")
        )
        if args.out:
            write_csv(buckets_to_frame(buckets), args.out)
            print(f"Wrote {args.out}")
        else:
            _print_json([bucket.to_dict() for bucket in buckets])
        return 0

    if args.command == "conflicts":
        results = orchestrator.check_over_allocations(
            _split_ids(args.candidates), parse_date(args.start, "start"), _optional_date(args.end, "end")
        )
        _print_json(
            {
                "summary": summarize_conflicts(results),
                "employees": [result.to_dict() for result in results if result.has_conflict],
            }
        )
        return 0

    requirements = load_requirements(args.requirements)
    if args.command == "match":
        results = orchestrator.match_employees_to_requirements(
            requirements,
            candidate_ids=_split_ids(args.candidates),
            start=_optional_date(args.start, "start"),
            end=_optional_date(args.end, "end"),
        )
        _print_json([result.to_dict() for result in results])
        return 0

    constraints = TeamConstraints(
        max_team_size=args.max_team_size,
        budget_ceiling=args.budget,
        start=_optional_date(args.start, "start"),
        end=_optional_date(args.end, "end"),
        min_availability_pct=args.min_availability,
        department=args.department,
    )
    team = orchestrator.optimize_team(requirements, constraints, candidate_ids=_split_ids(args.candidates))
    _print_json(team.to_dict())
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        orchestrator = _build_orchestrator(args)
        code = _run(args, orchestrator)
    except CapacityConflictError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
