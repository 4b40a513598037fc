"""
Main Execution Script for the Clerkship Rotation Scheduler.

Phases:
1. Data acquisition: a SchedulingDataset JSON file, or a built-in scenario.
2. Scheduling: scheduler.schedule() over students x clerkships.
3. Reporting: statistics, unmet requirements, pending approvals.
4. Export / persistence: result JSON, and the assignment store unless --dry-run.
"""

import argparse
import json
import logging
import sys
from datetime import date
from typing import List, Optional

from pydantic import ValidationError

from generators import SCENARIOS, build_scenario
from models import ScheduleOptions, ScheduleResult, SchedulingDataset
from scheduler import ConfigurationError, JsonAssignmentStore, PersistenceError, schedule

logger = logging.getLogger("Main")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )


def load_dataset(filename: str) -> SchedulingDataset:
    """
    Load a JSON file and re-hydrate it into a validated SchedulingDataset.
    """
    with open(filename, 'r') as f:
        data = json.load(f)
    dataset = SchedulingDataset.model_validate(data)
    logger.info(
        f"📂 Loaded {filename}: {len(dataset.preceptors)} preceptors, "
        f"{len(dataset.requirements)} requirements, {len(dataset.availability)} availability records"
    )
    return dataset


def save_dataset(dataset: SchedulingDataset, filename: str) -> None:
    """Write a dataset (e.g. a built-in scenario) so it can be edited and re-run."""
    with open(filename, 'w') as f:
        json.dump(dataset.model_dump(mode='json'), f, indent=2)
    logger.info(f"💾 Saved dataset to {filename}")


def export_result(result: ScheduleResult, filename: str) -> None:
    """
    Serializes the result, with assignments also grouped by date for calendar views.
    """
    data = result.model_dump(mode='json')
    by_date = {}
    for a in data["assignments"]:
        by_date.setdefault(a["date"], []).append(a)
    data["schedule"] = dict(sorted(by_date.items()))

    with open(filename, 'w') as f:
        json.dump(data, f, indent=2)
    logger.info(f"💾 Exported result to {filename}")


def print_report(result: ScheduleResult) -> None:
    stats = result.statistics

    print("\n" + "=" * 50)
    print("📊 FINAL EXECUTION REPORT")
    print("=" * 50)
    print(f"Students:              {stats.total_students}")
    print(f"  - Fully scheduled:   {stats.fully_scheduled_students}")
    print(f"  - Partially:         {stats.partially_scheduled_students}")
    print(f"  - Unscheduled:       {stats.unscheduled_students}")
    print(f"Total assignments:     {stats.total_assignments}")
    print(f"  - Via fallback:      {stats.fallback_assignments}")
    print(f"  - Via gap filling:   {stats.gap_fill_assignments}")
    print(f"Preceptors utilized:   {stats.preceptors_utilized} "
          f"(avg {stats.average_assignments_per_preceptor} days each)")
    print(f"Completion rate:       {stats.completion_rate}%")

    if result.unmet_requirements:
        print("\n🔍 UNMET REQUIREMENTS")
        for unmet in result.unmet_requirements:
            print(f"❌ {unmet.student_id} / {unmet.clerkship_id} ({unmet.requirement_type.value}, "
                  f"{unmet.required_days} days)")
            if unmet.assigned_days:
                print(f"   Placed: {unmet.assigned_days}/{unmet.required_days} days")
            print(f"   Reason: {unmet.reason}")

    if result.failure_report:
        print("\n🧭 FAILURE ANALYSIS")
        for entry in result.failure_report:
            cause = entry.primary_failure_cause or "n/a"
            breakdown = ", ".join(f"{k}={v}" for k, v in sorted(entry.violation_breakdown.items()))
            print(f"   {entry.student_id} / {entry.clerkship_id} ({entry.strategy}): most blocking = {cause}")
            if breakdown:
                print(f"      Violations: {breakdown}")
            if entry.sample_violation:
                print(f"      e.g. {entry.sample_violation}")

    if result.pending_approvals:
        print("\n⏳ PENDING APPROVALS")
        for approval in result.pending_approvals:
            print(f"   {approval.student_id} / {approval.clerkship_id}: "
                  f"{approval.primary_preceptor_id} -> {approval.fallback_preceptor_id} "
                  f"({len(approval.dates)} days) - {approval.reason}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Clerkship rotation scheduler")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--dataset", help="SchedulingDataset JSON file")
    source.add_argument("--scenario", choices=sorted(SCENARIOS), help="Built-in scenario")

    parser.add_argument("--students", nargs="*", help="Student ids (scenario default if omitted)")
    parser.add_argument("--clerkships", nargs="*", help="Clerkship ids (all in dataset if omitted)")
    parser.add_argument("--start", type=date.fromisoformat, help="Window start (YYYY-MM-DD)")
    parser.add_argument("--end", type=date.fromisoformat, help="Window end (YYYY-MM-DD)")
    parser.add_argument("--teams", action="store_true", help="Enable team formation")
    parser.add_argument("--fallbacks", action="store_true", help="Enable fallback chains")
    parser.add_argument("--allow-approval-fallbacks", action="store_true",
                        help="Use fallback edges that require approval")
    parser.add_argument("--allow-cross-system", action="store_true",
                        help="Use fallbacks in other health systems")
    parser.add_argument("--no-gap-fill", action="store_true",
                        help="Skip the post-pass that fills unmet days from team preceptors")
    parser.add_argument("--dry-run", action="store_true", help="Compute only, do not persist")

    parser.add_argument("--store", default="assignments.json", help="Assignment store JSON file")
    parser.add_argument("--export", help="Write the full result JSON here")
    parser.add_argument("--save-dataset", help="Write the input dataset JSON here")
    parser.add_argument("--log-level", default="INFO")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    # --- PHASE 1: DATA ACQUISITION ---
    student_ids: List[str] = []
    clerkship_ids: List[str] = []
    options: Optional[ScheduleOptions] = None
    try:
        if args.scenario:
            scenario = build_scenario(args.scenario)
            dataset = scenario.dataset
            student_ids, clerkship_ids, options = scenario.student_ids, scenario.clerkship_ids, scenario.options
        else:
            dataset = load_dataset(args.dataset)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error(f"❌ Cannot load input: {e}")
        return 2

    if args.save_dataset:
        save_dataset(dataset, args.save_dataset)

    if args.students is not None:
        student_ids = args.students
    if args.clerkships is not None:
        clerkship_ids = args.clerkships
    elif not clerkship_ids:
        clerkship_ids = list(dict.fromkeys(r.clerkship_id for r in dataset.requirements))

    overrides = {
        "dry_run": args.dry_run,
        "enable_team_formation": args.teams or (options.enable_team_formation if options else False),
        "enable_fallbacks": args.fallbacks or (options.enable_fallbacks if options else False),
        "allow_approval_required_fallbacks": args.allow_approval_fallbacks,
        "allow_cross_system_fallbacks": args.allow_cross_system,
        "enable_gap_filling": not args.no_gap_fill,
    }
    if args.start:
        overrides["start_date"] = args.start
    if args.end:
        overrides["end_date"] = args.end

    try:
        if options is None:
            if "start_date" not in overrides or "end_date" not in overrides:
                logger.error("❌ --start and --end are required with --dataset")
                return 2
            options = ScheduleOptions(**overrides)
        else:
            options = ScheduleOptions(**{**options.model_dump(), **overrides})
    except ValidationError as e:
        logger.error(f"❌ Invalid options: {e}")
        return 2

    # --- PHASE 2: SCHEDULING ---
    logger.info(f"🚀 Scheduling {len(student_ids)} students across {len(clerkship_ids)} clerkships")
    store = None if options.dry_run else JsonAssignmentStore(args.store)
    try:
        result = schedule(student_ids, clerkship_ids, options, dataset, store=store)
    except ConfigurationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 2
    except PersistenceError as e:
        logger.error(f"❌ Persistence failed, nothing was written: {e}")
        return 1

    # --- PHASE 3: REPORTING ---
    print_report(result)

    # --- PHASE 4: EXPORT ---
    if args.export:
        export_result(result, args.export)

    print("\n✅ Run Complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
