"""
Assignment Strategy Engine.

Four fixed strategies share one constraint substrate (availability index,
capacity ledger, health-system lock) and emit day-level placements:
1. continuous_single - one preceptor, one contiguous run of days (earliest feasible).
2. continuous_team   - one team, one contiguous run, days balanced across members.
3. block_based       - fixed-size blocks in date order, each a contiguous search.
4. daily_rotation    - any feasible preceptor per day, least-recently-used first.

A strategy never raises on infeasibility; it returns an exhausted plan
carrying the reason.
"""

import logging
from dataclasses import dataclass, field
from datetime import date as date_type
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from models import AssignmentSource, AssignmentStrategy, ClerkshipRequirement, HealthSystemRule, Preceptor
from .capacity import CapacityLedger
from .constraints import (
    BLOCK_CAPACITY,
    CAPACITY_TYPES,
    HEALTH_SYSTEM,
    ConstraintChecker,
    ConstraintViolation,
    ViolationLog,
)

logger = logging.getLogger(__name__)

# Candidate tiers, tried in this order
TIER_PRIMARY = 0
TIER_TEAM = 1
TIER_TEAM_FALLBACK = 2
TIER_FALLBACK_CHAIN = 3
TIER_GAP_FILL = 4

NO_CANDIDATES = "No preceptor available for required site/specialty"
NO_CAPACITY = "No preceptor with remaining capacity"
NO_CONTIGUOUS = "Insufficient contiguous availability"
NO_AVAILABILITY = "Insufficient preceptor availability"


class PlacementState(str, Enum):
    """Lifecycle of one (student, requirement) pair."""
    SEEKING = "seeking_candidate"
    TENTATIVE = "tentatively_placed"
    COMMITTED = "committed"
    EXHAUSTED = "exhausted"


@dataclass
class Candidate:
    """A preceptor offered to a strategy, tagged with how it was sourced."""
    preceptor: Preceptor
    tier: int = TIER_PRIMARY
    source: AssignmentSource = AssignmentSource.PRIMARY
    team_id: Optional[str] = None
    original_preceptor_id: Optional[str] = None
    requires_approval: bool = False

    @property
    def preceptor_id(self) -> str:
        return self.preceptor.id


@dataclass
class TeamUnit:
    """The scheduling unit of continuous_team: rotation members, then fallback tiers."""
    team_id: Optional[str]
    members: List[Candidate]


@dataclass
class Placement:
    candidate: Candidate
    date: date_type
    block_number: Optional[int] = None
    site_id: Optional[str] = None


class PlacementPlan:
    """
    Tentative placements for one (student, requirement) pair.
    Every placement reserves ledger capacity immediately; abandoning the plan releases it.
    """

    def __init__(
        self,
        student_id: str,
        ledger: CapacityLedger,
        booked_days: Set[date_type],
        site_of: Optional[Callable[[str, date_type], Optional[str]]] = None,
    ):
        self.student_id = student_id
        self.ledger = ledger
        self.site_of = site_of
        self.booked: Set[date_type] = set(booked_days)
        self.placements: List[Placement] = []
        self.blocks: List[Tuple[str, date_type, date_type]] = []
        self.violations = ViolationLog()
        self.health_system_id: Optional[str] = None
        self.state = PlacementState.SEEKING
        self.failure_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state in (PlacementState.TENTATIVE, PlacementState.COMMITTED)

    def place(self, candidate: Candidate, day: date_type, block_number: Optional[int] = None) -> None:
        self.ledger.reserve_day(candidate.preceptor_id, day, self.student_id)
        site_id = self.site_of(candidate.preceptor_id, day) if self.site_of else None
        if site_id:
            self.ledger.reserve_site_day(site_id, day, self.student_id)
        self.placements.append(Placement(candidate, day, block_number, site_id))
        self.booked.add(day)
        if self.health_system_id is None:
            self.health_system_id = candidate.preceptor.health_system_id
        self.state = PlacementState.TENTATIVE

    def reserve_block(self, preceptor_id: str, start: date_type, end: date_type) -> None:
        self.ledger.reserve_block(preceptor_id, start, end)
        self.blocks.append((preceptor_id, start, end))

    def abandon(self, reason: str) -> None:
        for p in self.placements:
            self.ledger.release_day(p.candidate.preceptor_id, p.date, self.student_id)
            if p.site_id:
                self.ledger.release_site_day(p.site_id, p.date, self.student_id)
            self.booked.discard(p.date)
        for preceptor_id, start, end in self.blocks:
            self.ledger.release_block(preceptor_id, start, end)
        self.placements = []
        self.blocks = []
        self.state = PlacementState.EXHAUSTED
        self.failure_reason = reason

    def commit(self) -> None:
        self.state = PlacementState.COMMITTED


@dataclass
class StrategyContext:
    """Everything a strategy needs for one (student, requirement) pair."""
    student_id: str
    requirement: ClerkshipRequirement
    dates: List[date_type]
    checker: ConstraintChecker
    ledger: CapacityLedger
    booked_days: Set[date_type] = field(default_factory=set)
    candidates: List[Candidate] = field(default_factory=list)
    team_units: List[TeamUnit] = field(default_factory=list)

    def new_plan(self) -> PlacementPlan:
        return PlacementPlan(
            self.student_id, self.ledger, self.booked_days,
            site_of=lambda pid, day: self.checker.site_for(pid, day, self.requirement),
        )

    def check(self, plan: PlacementPlan, candidate: Candidate, day: date_type) -> Optional[ConstraintViolation]:
        if (
            self.requirement.health_system_rule == HealthSystemRule.ENFORCE_SAME_SYSTEM
            and plan.health_system_id is not None
            and candidate.preceptor.health_system_id != plan.health_system_id
        ):
            return ConstraintViolation(
                HEALTH_SYSTEM,
                f"Preceptor {candidate.preceptor_id} is outside health system {plan.health_system_id}",
                self.student_id, candidate.preceptor_id, day
            )
        return self.checker.check_day(
            self.student_id, candidate.preceptor_id, day, self.requirement, self.ledger, plan.booked
        )

    def prefer_system(self, plan: PlacementPlan, candidates: List[Candidate]) -> List[Candidate]:
        """Stable reorder putting the plan's health system first (prefer_same_system only)."""
        if self.requirement.health_system_rule != HealthSystemRule.PREFER_SAME_SYSTEM:
            return candidates
        if plan.health_system_id is None:
            return candidates
        return sorted(candidates, key=lambda c: c.preceptor.health_system_id != plan.health_system_id)


# --- Shared search helpers ---

def _scan_window(
    ctx: StrategyContext,
    plan: PlacementPlan,
    members: List[Candidate],
    length: int,
    accept: Optional[Callable[[List[date_type]], Optional[ConstraintViolation]]] = None,
    start: int = 0,
) -> Tuple[Optional[List[date_type]], List[List[Candidate]], int]:
    """
    Earliest run of `length` consecutive window days, from ctx.dates[start] on,
    on which at least one member is feasible.

    Returns (window, feasible members per window day, longest run ignoring capacity).
    The last value tells capacity exhaustion apart from plain lack of availability.
    """
    options: List[List[Candidate]] = []
    run = 0
    avail_run = 0
    best_avail = 0

    for i in range(start, len(ctx.dates)):
        day = ctx.dates[i]
        feasible = []
        avail_ok = False
        for cand in members:
            violation = ctx.check(plan, cand, day)
            if violation is None:
                feasible.append(cand)
                avail_ok = True
            else:
                plan.violations.add(violation)
                if violation.constraint_type in CAPACITY_TYPES:
                    avail_ok = True
        options.append(feasible)

        avail_run = avail_run + 1 if avail_ok else 0
        best_avail = max(best_avail, avail_run)
        run = run + 1 if feasible else 0

        if run >= length:
            first = i - length + 1
            window = ctx.dates[first:i + 1]
            if accept is not None:
                violation = accept(window)
                if violation is not None:
                    plan.violations.add(violation)
                    continue
            return window, options[first - start:i - start + 1], best_avail

    return None, [], best_avail


def _least_recently_used(pool: List[Candidate], last_used: Dict[str, int]) -> Candidate:
    # min() keeps the first of equal keys, so unused members go in candidate order
    return min(pool, key=lambda c: last_used.get(c.preceptor_id, -1))


def _best_tier(feasible: List[Candidate]) -> List[Candidate]:
    tier = min(c.tier for c in feasible)
    return [c for c in feasible if c.tier == tier]


def _exhausted(required: int, capacity_blocked: bool) -> str:
    if capacity_blocked:
        return f"{NO_CAPACITY} for {required} consecutive days"
    return f"{NO_CONTIGUOUS}: no preceptor has {required} consecutive available days"


# --- Strategies ---

def continuous_single(ctx: StrategyContext) -> PlacementPlan:
    """First candidate (in order) with an earliest feasible contiguous window wins."""
    plan = ctx.new_plan()
    required = ctx.requirement.required_days
    if not ctx.candidates:
        plan.abandon(NO_CANDIDATES)
        return plan

    capacity_blocked = False
    for cand in ctx.candidates:
        window, _, avail_run = _scan_window(ctx, plan, [cand], required)
        if window:
            for day in window:
                plan.place(cand, day)
            return plan
        capacity_blocked = capacity_blocked or avail_run >= required

    plan.abandon(_exhausted(required, capacity_blocked))
    return plan


def continuous_team(ctx: StrategyContext) -> PlacementPlan:
    """
    Like continuous_single, but the unit is a team. Each day goes to the
    least-recently-used feasible rotation member; fallback tiers cover only
    days no rotation member can take.
    """
    plan = ctx.new_plan()
    required = ctx.requirement.required_days
    if not ctx.team_units:
        plan.abandon(NO_CANDIDATES)
        return plan

    capacity_blocked = False
    for unit in _split_by_system(ctx, ctx.team_units):
        window, options, avail_run = _scan_window(ctx, plan, unit.members, required)
        if not window:
            capacity_blocked = capacity_blocked or avail_run >= required
            continue

        last_used: Dict[str, int] = {}
        for counter, (day, feasible) in enumerate(zip(window, options)):
            chosen = _least_recently_used(_best_tier(feasible), last_used)
            plan.place(chosen, day)
            last_used[chosen.preceptor_id] = counter
        logger.debug(f"Team {unit.team_id} covers {window[0]} -> {window[-1]} for {ctx.student_id}")
        return plan

    plan.abandon(_exhausted(required, capacity_blocked))
    return plan


def _split_by_system(ctx: StrategyContext, units: List[TeamUnit]) -> List[TeamUnit]:
    """Under enforce_same_system a unit may only use one health system at a time."""
    if ctx.requirement.health_system_rule != HealthSystemRule.ENFORCE_SAME_SYSTEM:
        return units
    split = []
    for unit in units:
        systems: List[Optional[str]] = []
        for m in unit.members:
            if m.preceptor.health_system_id not in systems:
                systems.append(m.preceptor.health_system_id)
        for system in systems:
            members = [m for m in unit.members if m.preceptor.health_system_id == system]
            split.append(TeamUnit(team_id=unit.team_id, members=members))
    return split


def block_based(ctx: StrategyContext) -> PlacementPlan:
    """
    Blocks are placed in date order: each block is a contiguous search that
    starts after the previous block's last day, honoring block capacity limits.
    """
    plan = ctx.new_plan()
    req = ctx.requirement
    size = req.block_size_days
    required = req.required_days

    full_blocks, remainder = divmod(required, size)
    if remainder and not req.allow_partial_blocks:
        plan.abandon(
            f"Required days ({required}) not divisible by block size ({size}) and partial blocks not allowed"
        )
        return plan
    if not ctx.candidates:
        plan.abandon(NO_CANDIDATES)
        return plan

    lengths = [size] * full_blocks + ([remainder] if remainder else [])
    previous: Optional[Candidate] = None
    next_index = 0

    for number, length in enumerate(lengths, start=1):
        ordered = ctx.prefer_system(plan, ctx.candidates)
        if req.prefer_continuous_blocks and previous is not None:
            ordered = [previous] + [c for c in ordered if c is not previous]

        placed = None
        capacity_blocked = False
        for cand in ordered:
            rule = ctx.checker.rule_for(cand.preceptor_id, req)

            def _block_limits(window, cand=cand, rule=rule):
                reason = ctx.ledger.check_block(cand.preceptor_id, window[0], window[-1], rule)
                if reason:
                    return ConstraintViolation(BLOCK_CAPACITY, reason, ctx.student_id, cand.preceptor_id, window[0])
                return None

            before = plan.violations.counts[BLOCK_CAPACITY]
            window, _, avail_run = _scan_window(ctx, plan, [cand], length, accept=_block_limits, start=next_index)
            if window:
                for day in window:
                    plan.place(cand, day, block_number=number)
                plan.reserve_block(cand.preceptor_id, window[0], window[-1])
                placed = cand
                next_index = ctx.dates.index(window[-1]) + 1
                break
            if avail_run >= length or plan.violations.counts[BLOCK_CAPACITY] > before:
                capacity_blocked = True

        if placed is None:
            prefix = NO_CAPACITY if capacity_blocked else NO_CONTIGUOUS
            plan.abandon(f"{prefix}: no preceptor for block {number} of {len(lengths)} ({length} days)")
            return plan
        previous = placed

    return plan


def daily_rotation(ctx: StrategyContext) -> PlacementPlan:
    """One preceptor per day, days need not be contiguous; load spread least-recently-used first."""
    plan = ctx.new_plan()
    required = ctx.requirement.required_days
    if not ctx.candidates:
        plan.abandon(NO_CANDIDATES)
        return plan

    last_used: Dict[str, int] = {}
    capacity_days = 0
    for counter, day in enumerate(ctx.dates):
        if len(plan.placements) >= required:
            break

        feasible = []
        blocked_by_capacity = False
        for cand in ctx.candidates:
            violation = ctx.check(plan, cand, day)
            if violation is None:
                feasible.append(cand)
            else:
                plan.violations.add(violation)
                blocked_by_capacity = blocked_by_capacity or violation.constraint_type in CAPACITY_TYPES
        if not feasible:
            capacity_days += int(blocked_by_capacity)
            continue

        pool = _best_tier(feasible)
        if ctx.requirement.health_system_rule == HealthSystemRule.PREFER_SAME_SYSTEM and plan.health_system_id:
            same = [c for c in pool if c.preceptor.health_system_id == plan.health_system_id]
            pool = same or pool
        chosen = _least_recently_used(pool, last_used)
        plan.place(chosen, day)
        last_used[chosen.preceptor_id] = counter

    placed = len(plan.placements)
    if placed < required:
        prefix = NO_CAPACITY if capacity_days else NO_AVAILABILITY
        plan.abandon(f"{prefix}: only {placed} of {required} days could be placed")
    return plan


# Closed dispatch table: one function per strategy kind
STRATEGIES: Dict[AssignmentStrategy, Callable[[StrategyContext], PlacementPlan]] = {
    AssignmentStrategy.CONTINUOUS_SINGLE: continuous_single,
    AssignmentStrategy.CONTINUOUS_TEAM: continuous_team,
    AssignmentStrategy.BLOCK_BASED: block_based,
    AssignmentStrategy.DAILY_ROTATION: daily_rotation,
}


def run_strategy(ctx: StrategyContext) -> PlacementPlan:
    strategy = ctx.requirement.assignment_strategy
    logger.debug(f"Running {strategy.value} for {ctx.student_id} / {ctx.requirement.key}")
    return STRATEGIES[strategy](ctx)
