"""
Deterministic scenario factory for the Rotation Scheduler.

Each builder returns a Scenario: a SchedulingDataset plus the students,
clerkships and run options that exercise one behaviour of the engine.
Scenarios are used by the CLI runner (--scenario) and by the test-suite.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from models import (
    AssignmentStrategy,
    AvailabilityRecord,
    BlackoutRange,
    CapacityRule,
    ClerkshipRequirement,
    FallbackEdge,
    HealthSystemRule,
    Preceptor,
    RequirementType,
    ScheduleOptions,
    SchedulingDataset,
    StudentOnboarding,
    Team,
    TeamMember,
)

logger = logging.getLogger(__name__)


@dataclass
class Scenario:
    name: str
    description: str
    dataset: SchedulingDataset
    student_ids: List[str]
    clerkship_ids: List[str]
    options: ScheduleOptions
    expectations: List[str] = field(default_factory=list)


# --- Helpers ---

def days_in_range(start: date, end: date, weekdays: Optional[Iterable[int]] = None) -> List[date]:
    """Inclusive date range, optionally restricted to weekdays (0=Mon ... 6=Sun)."""
    allowed = set(weekdays) if weekdays is not None else None
    days = []
    current = start
    while current <= end:
        if allowed is None or current.weekday() in allowed:
            days.append(current)
        current += timedelta(days=1)
    return days


def availability_for(preceptor_id: str, site_id: Optional[str], days: Iterable[date]) -> List[AvailabilityRecord]:
    return [AvailabilityRecord(preceptor_id=preceptor_id, site_id=site_id, date=d) for d in days]


def team_of(team_id: str, clerkship_id: str, preceptor_ids: List[str], fallback_ids: Iterable[str] = (), **flags) -> Team:
    members = [TeamMember(preceptor_id=pid, priority=i) for i, pid in enumerate(preceptor_ids, start=1)]
    offset = len(members)
    for i, pid in enumerate(fallback_ids, start=1):
        members.append(TeamMember(preceptor_id=pid, priority=offset + i, is_fallback_only=True))
    return Team(id=team_id, clerkship_id=clerkship_id, name=team_id, members=members, **flags)


def students(count: int) -> List[str]:
    return [f"stu_{i:03d}" for i in range(1, count + 1)]


# --- Scenarios ---

def basic() -> Scenario:
    """1 student, 1 preceptor with 30 days of availability, 14 contiguous days required."""
    start, end = date(2026, 1, 1), date(2026, 1, 30)
    dataset = SchedulingDataset(
        preceptors=[Preceptor(id="prc_chen", name="Dr. Chen", health_system_id="hs_umc", site_ids=["site_main"])],
        requirements=[ClerkshipRequirement(clerkship_id="clk_fm", required_days=14)],
        availability=availability_for("prc_chen", "site_main", days_in_range(start, end)),
    )
    return Scenario(
        name="basic",
        description="Single student, single preceptor, continuous_single",
        dataset=dataset,
        student_ids=students(1),
        clerkship_ids=["clk_fm"],
        options=ScheduleOptions(start_date=start, end_date=end),
        expectations=["14 consecutive days with prc_chen"],
    )


def capacity_limited() -> Scenario:
    """
    3 preceptors allowing 1, 2 and 3 students per day, 5 students needing
    10 days each from a daily rotation. No preceptor may exceed its max_students.
    """
    start, end = date(2026, 1, 1), date(2026, 1, 30)
    preceptors = [
        Preceptor(id="prc_low", name="Dr. Low Capacity", health_system_id="hs_umc",
                  site_ids=["site_main"], specialty="Family Medicine", max_students=1),
        Preceptor(id="prc_med", name="Dr. Med Capacity", health_system_id="hs_umc",
                  site_ids=["site_main"], specialty="Family Medicine", max_students=2),
        Preceptor(id="prc_high", name="Dr. High Capacity", health_system_id="hs_umc",
                  site_ids=["site_main"], specialty="Family Medicine", max_students=3),
    ]
    days = days_in_range(start, end)
    availability = []
    for p in preceptors:
        availability.extend(availability_for(p.id, "site_main", days))

    dataset = SchedulingDataset(
        preceptors=preceptors,
        requirements=[ClerkshipRequirement(
            clerkship_id="clk_fm", required_days=10, specialty="Family Medicine",
            assignment_strategy=AssignmentStrategy.DAILY_ROTATION,
        )],
        availability=availability,
        teams=[team_of("team_fm", "clk_fm", ["prc_low", "prc_med", "prc_high"], require_same_health_system=True)],
    )
    return Scenario(
        name="capacity_limited",
        description="Per-day capacity from preceptor.max_students",
        dataset=dataset,
        student_ids=students(5),
        clerkship_ids=["clk_fm"],
        options=ScheduleOptions(start_date=start, end_date=end, enable_team_formation=True),
        expectations=["no preceptor above max_students on any day", "all 5 students fully scheduled"],
    )


def multi_team() -> Scenario:
    """
    Two teams in different health systems for one clerkship, plus an
    elective restricted to one specialist.
    """
    start, end = date(2026, 1, 5), date(2026, 1, 25)
    preceptors = [
        Preceptor(id="prc_a1", name="Dr. Adams", health_system_id="hs_north", site_ids=["site_n"]),
        Preceptor(id="prc_a2", name="Dr. Abbott", health_system_id="hs_north", site_ids=["site_n"]),
        Preceptor(id="prc_b1", name="Dr. Baker", health_system_id="hs_south", site_ids=["site_s"]),
        Preceptor(id="prc_b2", name="Dr. Brooks", health_system_id="hs_south", site_ids=["site_s"],
                  specialty="Sports Medicine"),
    ]
    availability = []
    availability.extend(availability_for("prc_a1", "site_n", days_in_range(start, end, weekdays=[0, 2, 4])))
    availability.extend(availability_for("prc_a2", "site_n", days_in_range(start, end, weekdays=[1, 3, 5, 6])))
    availability.extend(availability_for("prc_b1", "site_s", days_in_range(start, end)))
    availability.extend(availability_for("prc_b2", "site_s", days_in_range(start, end)))

    dataset = SchedulingDataset(
        preceptors=preceptors,
        requirements=[
            ClerkshipRequirement(
                clerkship_id="clk_im", required_days=7,
                assignment_strategy=AssignmentStrategy.CONTINUOUS_TEAM,
            ),
            ClerkshipRequirement(
                clerkship_id="clk_im", requirement_type=RequirementType.ELECTIVE, required_days=3,
                assignment_strategy=AssignmentStrategy.DAILY_ROTATION,
                preceptor_ids=["prc_b2"], specialty="Sports Medicine",
            ),
        ],
        availability=availability,
        teams=[
            team_of("team_north", "clk_im", ["prc_a1", "prc_a2"], require_same_health_system=True),
            team_of("team_south", "clk_im", ["prc_b1", "prc_b2"], require_same_health_system=True),
        ],
    )
    return Scenario(
        name="multi_team",
        description="continuous_team across two teams plus an elective",
        dataset=dataset,
        student_ids=students(4),
        clerkship_ids=["clk_im"],
        options=ScheduleOptions(start_date=start, end_date=end, enable_team_formation=True),
        expectations=[
            "team days alternate between members",
            "stu_004 overflows to team_south",
            "elective days only with prc_b2",
        ],
    )


def partial_availability() -> Scenario:
    """
    3 preceptors with non-overlapping one-week windows. No single preceptor
    covers a 15-day contiguous requirement; a daily rotation can.
    """
    start, end = date(2026, 1, 1), date(2026, 1, 31)
    windows = {
        "prc_one": (date(2026, 1, 5), date(2026, 1, 9)),
        "prc_two": (date(2026, 1, 12), date(2026, 1, 16)),
        "prc_three": (date(2026, 1, 19), date(2026, 1, 23)),
    }
    preceptors = [Preceptor(id=pid, health_system_id="hs_umc", site_ids=["site_main"]) for pid in windows]
    availability = []
    for pid, (lo, hi) in windows.items():
        availability.extend(availability_for(pid, "site_main", days_in_range(lo, hi)))

    dataset = SchedulingDataset(
        preceptors=preceptors,
        requirements=[
            ClerkshipRequirement(clerkship_id="clk_surg", required_days=15),
            ClerkshipRequirement(
                clerkship_id="clk_peds", required_days=15,
                assignment_strategy=AssignmentStrategy.DAILY_ROTATION,
            ),
        ],
        availability=availability,
    )
    return Scenario(
        name="partial_availability",
        description="Gaps in availability; contiguous vs. daily strategies",
        dataset=dataset,
        student_ids=students(2),
        clerkship_ids=["clk_surg", "clk_peds"],
        options=ScheduleOptions(start_date=start, end_date=end),
        expectations=[
            "clk_surg unmet for everyone (insufficient contiguous availability)",
            "clk_peds met for stu_001 only (capacity exhausted for stu_002)",
        ],
    )


def fallback_chain() -> Scenario:
    """
    Primary blacked out for most of the window; the chain Chen -> Diaz -> Okafor
    takes over. Chen -> Patel needs approval and is skipped by default.
    """
    start, end = date(2026, 2, 1), date(2026, 2, 20)
    preceptors = [
        Preceptor(id="prc_chen", name="Dr. Chen", health_system_id="hs_umc", site_ids=["site_main"]),
        Preceptor(id="prc_diaz", name="Dr. Diaz", health_system_id="hs_umc", site_ids=["site_main"],
                  fallback_only=True),
        Preceptor(id="prc_okafor", name="Dr. Okafor", health_system_id="hs_city", site_ids=["site_city"],
                  fallback_only=True),
        Preceptor(id="prc_patel", name="Dr. Patel", health_system_id="hs_umc", site_ids=["site_main"],
                  fallback_only=True),
    ]
    days = days_in_range(start, end)
    availability = []
    for p in preceptors:
        availability.extend(availability_for(p.id, p.site_ids[0], days))

    dataset = SchedulingDataset(
        preceptors=preceptors,
        requirements=[ClerkshipRequirement(clerkship_id="clk_fm", required_days=10)],
        availability=availability,
        blackouts=[BlackoutRange(preceptor_id="prc_chen", start_date=date(2026, 2, 1),
                                 end_date=date(2026, 2, 14), reason="Conference")],
        capacity_rules=[CapacityRule(preceptor_id="prc_diaz", max_students_per_day=1, max_students_per_year=1)],
        fallbacks=[
            FallbackEdge(primary_preceptor_id="prc_chen", fallback_preceptor_id="prc_diaz", priority=1),
            FallbackEdge(primary_preceptor_id="prc_chen", fallback_preceptor_id="prc_patel", priority=2,
                         requires_approval=True),
            FallbackEdge(primary_preceptor_id="prc_diaz", fallback_preceptor_id="prc_okafor", priority=1,
                         allow_different_health_system=True),
        ],
    )
    return Scenario(
        name="fallback_chain",
        description="Primary unavailable, cascading fallback chain",
        dataset=dataset,
        student_ids=students(2),
        clerkship_ids=["clk_fm"],
        options=ScheduleOptions(start_date=start, end_date=end, enable_fallbacks=True),
        expectations=["stu_001 with prc_diaz", "stu_002 with prc_okafor (Diaz at yearly limit)"],
    )


def block_based() -> Scenario:
    """28 inpatient days in 14-day blocks, one student per preceptor per block."""
    start, end = date(2026, 3, 1), date(2026, 4, 30)
    preceptors = [
        Preceptor(id="prc_hosp_a", health_system_id="hs_umc", site_ids=["site_main"], max_students=2),
        Preceptor(id="prc_hosp_b", health_system_id="hs_umc", site_ids=["site_main"], max_students=2),
    ]
    days = days_in_range(start, end)
    availability = []
    for p in preceptors:
        availability.extend(availability_for(p.id, "site_main", days))

    dataset = SchedulingDataset(
        preceptors=preceptors,
        requirements=[ClerkshipRequirement(
            clerkship_id="clk_med", requirement_type=RequirementType.INPATIENT, required_days=28,
            assignment_strategy=AssignmentStrategy.BLOCK_BASED, block_size_days=14,
            prefer_continuous_blocks=True,
        )],
        availability=availability,
        capacity_rules=[
            CapacityRule(preceptor_id=p.id, clerkship_id="clk_med", requirement_type=RequirementType.INPATIENT,
                         max_students_per_day=2, max_students_per_year=20, max_students_per_block=1)
            for p in preceptors
        ],
    )
    return Scenario(
        name="block_based",
        description="Two 14-day blocks per student, block capacity 1",
        dataset=dataset,
        student_ids=students(3),
        clerkship_ids=["clk_med"],
        options=ScheduleOptions(start_date=start, end_date=end),
        expectations=["each student gets 2 contiguous 14-day blocks", "never two students in one block window"],
    )


def daily_rotation() -> Scenario:
    """Daily rotation across two health systems with enforce_same_system."""
    start, end = date(2026, 1, 5), date(2026, 1, 30)
    preceptors = [
        Preceptor(id="prc_n1", health_system_id="hs_north", site_ids=["site_n"]),
        Preceptor(id="prc_n2", health_system_id="hs_north", site_ids=["site_n"]),
        Preceptor(id="prc_s1", health_system_id="hs_south", site_ids=["site_s"]),
    ]
    availability = []
    availability.extend(availability_for("prc_n1", "site_n", days_in_range(start, end, weekdays=[0, 2, 4])))
    availability.extend(availability_for("prc_n2", "site_n", days_in_range(start, end, weekdays=[1, 3])))
    availability.extend(availability_for("prc_s1", "site_s", days_in_range(start, end)))

    dataset = SchedulingDataset(
        preceptors=preceptors,
        requirements=[ClerkshipRequirement(
            clerkship_id="clk_psych", required_days=10,
            assignment_strategy=AssignmentStrategy.DAILY_ROTATION,
            health_system_rule=HealthSystemRule.ENFORCE_SAME_SYSTEM,
        )],
        availability=availability,
    )
    return Scenario(
        name="daily_rotation",
        description="Least-recently-used rotation locked to one health system",
        dataset=dataset,
        student_ids=students(2),
        clerkship_ids=["clk_psych"],
        options=ScheduleOptions(start_date=start, end_date=end),
        expectations=["each student stays within one health system"],
    )



def gap_filling() -> Scenario:
    """
    Nobody has 10 consecutive days, so the main pass fails everyone; the
    gap filler then stitches days together from the clerkship's teams.
    stu_003 has no onboarding at hs_north and stays unscheduled.
    """
    start, end = date(2026, 1, 5), date(2026, 1, 18)
    preceptors = [
        Preceptor(id="prc_pa1", name="Dr. Park", health_system_id="hs_north", site_ids=["site_n"]),
        Preceptor(id="prc_pa2", name="Dr. Perez", health_system_id="hs_north", site_ids=["site_n"]),
        Preceptor(id="prc_pb1", name="Dr. Price", health_system_id="hs_north", site_ids=["site_n"]),
    ]
    availability = []
    availability.extend(availability_for("prc_pa1", "site_n", days_in_range(start, end, weekdays=[0, 2, 4])))
    availability.extend(availability_for("prc_pa2", "site_n", days_in_range(start, end, weekdays=[1, 3])))
    availability.extend(availability_for("prc_pb1", "site_n", days_in_range(start, end, weekdays=[5, 6])))

    dataset = SchedulingDataset(
        preceptors=preceptors,
        requirements=[ClerkshipRequirement(clerkship_id="clk_peds", required_days=10)],
        availability=availability,
        teams=[
            team_of("team_peds_a", "clk_peds", ["prc_pa1", "prc_pa2"]),
            team_of("team_peds_b", "clk_peds", ["prc_pb1"]),
        ],
        onboarding=[
            StudentOnboarding(student_id="stu_001", health_system_id="hs_north"),
            StudentOnboarding(student_id="stu_002", health_system_id="hs_north"),
            StudentOnboarding(student_id="stu_003", health_system_id="hs_north", is_completed=False),
        ],
    )
    return Scenario(
        name="gap_filling",
        description="Post-pass gap filling with partial fulfilment and onboarding",
        dataset=dataset,
        student_ids=students(3),
        clerkship_ids=["clk_peds"],
        options=ScheduleOptions(start_date=start, end_date=end, enable_fallbacks=True),
        expectations=[
            "stu_001 filled from team_peds_a (prc_pa1 then prc_pa2)",
            "stu_002 partially filled from team_peds_b: 4/10 days",
            "stu_003 unscheduled: not onboarded at hs_north",
        ],
    )

SCENARIOS: Dict[str, Callable[[], Scenario]] = {
    "basic": basic,
    "capacity_limited": capacity_limited,
    "multi_team": multi_team,
    "partial_availability": partial_availability,
    "fallback_chain": fallback_chain,
    "block_based": block_based,
    "daily_rotation": daily_rotation,
    "gap_filling": gap_filling,
}


def build_scenario(name: str) -> Scenario:
    if name not in SCENARIOS:
        raise ValueError(f"Unknown scenario '{name}'. Available: {', '.join(sorted(SCENARIOS))}")
    scenario = SCENARIOS[name]()
    logger.info(
        f"Built scenario '{name}': {len(scenario.dataset.preceptors)} preceptors, "
        f"{len(scenario.student_ids)} students, {len(scenario.dataset.requirements)} requirements"
    )
    return scenario
