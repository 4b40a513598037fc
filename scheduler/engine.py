"""
The Rotation Scheduling Engine.

This module implements the orchestrator ("Solver" driver).
For every student, for every requirement of every requested clerkship, it:
1. Builds the candidate sources in order: primary pool -> team members -> fallback chain.
2. Dispatches to the requirement's assignment strategy.
3. Commits the resulting plan (capacity already reserved in the run's ledger)
   or records an unmet requirement with the strategy's reason.
With fallbacks enabled, a gap-filling pass then offers team preceptors to
whatever is still unmet.
"""

import logging
from collections import defaultdict
from datetime import date as date_type
from typing import Dict, Iterable, List, Optional, Set, Tuple

from models import (
    Assignment,
    AssignmentSource,
    AssignmentStatus,
    ClerkshipRequirement,
    FallbackEdge,
    PendingApproval,
    Preceptor,
    ScheduleOptions,
    SchedulingDataset,
)
from .availability import AvailabilityIndex
from .capacity import CapacityLedger, CapacityResolver, SiteCapacityResolver
from .constraints import ConstraintChecker
from .fallback import FallbackGraph
from .gap_filler import GapFiller
from .state import SchedulerState
from .strategies import (
    TIER_FALLBACK_CHAIN,
    TIER_PRIMARY,
    TIER_TEAM,
    TIER_TEAM_FALLBACK,
    Candidate,
    PlacementPlan,
    StrategyContext,
    TeamUnit,
    run_strategy,
)
from .teams import TeamResolver

logger = logging.getLogger(__name__)

FALLBACK_SOURCES = (AssignmentSource.TEAM_FALLBACK, AssignmentSource.FALLBACK_CHAIN, AssignmentSource.GAP_FILL)


class RotationScheduler:
    """
    Main scheduling engine.
    Ingests Demand (students x requirements) and Supply (preceptors), outputs a SchedulerState.

    Teams and fallback edges are validated on construction, so configuration
    errors surface before any run begins.
    """

    def __init__(self, dataset: SchedulingDataset, options: ScheduleOptions):
        self.dataset = dataset
        self.options = options
        self.preceptors: Dict[str, Preceptor] = dataset.preceptor_map()

        self.teams = TeamResolver(dataset.teams, dataset.preceptors)
        self.fallbacks = FallbackGraph(dataset.fallbacks)
        self.capacity = CapacityResolver(dataset.capacity_rules, dataset.preceptors)
        self.site_capacity = SiteCapacityResolver(dataset.site_capacity_rules)

    def run(self, student_ids: Iterable[str], clerkship_ids: Iterable[str]) -> SchedulerState:
        """
        Execute the scheduling pipeline. Students and requirements are processed
        in the given order, so capacity is consumed deterministically.
        """
        students = list(dict.fromkeys(student_ids))
        clerkships = list(dict.fromkeys(clerkship_ids))
        logger.info(
            f"Starting Rotation Scheduler: {len(students)} students x {len(clerkships)} clerkships "
            f"({self.options.start_date} -> {self.options.end_date})"
        )

        state = SchedulerState()
        if not students or not clerkships:
            logger.info("Nothing to schedule.")
            return state

        # Bulk-load everything the inner loop touches; the ledger belongs to this run only
        dates = self.options.window_dates()
        availability = AvailabilityIndex(
            self.dataset.availability, self.dataset.blackouts,
            self.options.start_date, self.options.end_date,
            preceptor_ids=self.preceptors.keys(),
        )
        ledger = CapacityLedger()
        checker = ConstraintChecker(
            availability, self.capacity,
            preceptors=self.preceptors,
            onboarding=self.dataset.onboarded_systems(),
            site_capacity=self.site_capacity,
        )

        work: List[Tuple[ClerkshipRequirement, List[Candidate], List[TeamUnit]]] = []
        for clerkship_id in clerkships:
            requirements = self.dataset.requirements_for(clerkship_id)
            if not requirements:
                logger.warning(f"Clerkship {clerkship_id} has no requirements; skipping")
            for requirement in requirements:
                candidates, units = self._candidate_sources(requirement)
                work.append((requirement, candidates, units))

        for student_id in students:
            for position, (requirement, candidates, units) in enumerate(work):
                logger.debug(
                    f"{student_id} / {requirement.key}: {requirement.assignment_strategy.value} "
                    f"over {len(candidates)} candidates, {len(units)} teams"
                )
                ctx = StrategyContext(
                    student_id=student_id,
                    requirement=requirement,
                    dates=dates,
                    checker=checker,
                    ledger=ledger,
                    booked_days=state.booked_dates(student_id),
                    candidates=candidates,
                    team_units=units,
                )
                plan = run_strategy(ctx)

                if plan.succeeded:
                    self._commit(state, student_id, requirement, plan)
                else:
                    logger.warning(f"Unmet: {student_id} / {requirement.key}: {plan.failure_reason}")
                    state.record_failure(student_id, position, requirement, plan.failure_reason, plan.violations)

        if self.options.enable_fallbacks and self.options.enable_gap_filling and state.failed_attempts:
            self._fill_gaps(state, dates, checker, ledger)

        logger.info(
            f"Scheduling finished: {len(state.assignments)} assignments, "
            f"{len(state.unmet_requirements)} unmet requirements"
        )
        return state

    # --- Candidate sources ---

    def _eligible(self, preceptor_id: str, requirement: ClerkshipRequirement) -> Optional[Preceptor]:
        preceptor = self.preceptors.get(preceptor_id)
        if preceptor is None or not ConstraintChecker.is_eligible(preceptor, requirement):
            return None
        return preceptor

    def _primary_pool(self, requirement: ClerkshipRequirement) -> List[Candidate]:
        """Eligible, non-fallback-only preceptors by ascending id."""
        ids = requirement.preceptor_ids or list(self.preceptors)
        pool = []
        for pid in sorted(set(ids)):
            preceptor = self._eligible(pid, requirement)
            if preceptor is None or preceptor.fallback_only:
                continue
            pool.append(Candidate(preceptor=preceptor, tier=TIER_PRIMARY, source=AssignmentSource.PRIMARY))
        return pool

    def _team_units(self, requirement: ClerkshipRequirement) -> List[TeamUnit]:
        units = []
        for team in self.teams.teams_for(requirement.clerkship_id):
            rotation = self.teams.rotation(team)
            lead = rotation[0] if rotation else None
            members = []
            for pid in rotation:
                preceptor = self._eligible(pid, requirement)
                if preceptor:
                    members.append(Candidate(
                        preceptor=preceptor, tier=TIER_TEAM, source=AssignmentSource.TEAM,
                        team_id=team.id, requires_approval=team.requires_admin_approval,
                    ))
            for pid in self.teams.fallback_tier(team):
                preceptor = self._eligible(pid, requirement)
                if preceptor:
                    members.append(Candidate(
                        preceptor=preceptor, tier=TIER_TEAM_FALLBACK, source=AssignmentSource.TEAM_FALLBACK,
                        team_id=team.id, original_preceptor_id=lead,
                        requires_approval=team.requires_admin_approval,
                    ))
            if members:
                units.append(TeamUnit(team_id=team.id, members=members))
        return units

    def _chain_candidates(
        self,
        roots: List[Candidate],
        requirement: ClerkshipRequirement,
        exclude: Set[str],
    ) -> List[Candidate]:
        """
        Fallback chains of each root, in root order. Edge flags act as
        eligibility filters; a filtered link also cuts the chain below it.
        """
        chain: List[Candidate] = []
        seen = set(exclude)
        for root in roots:
            cut: Set[str] = set()
            for link in self.fallbacks.chain_links(root.preceptor_id, requirement.clerkship_id):
                edge = link.edge
                target = link.preceptor_id
                if edge.primary_preceptor_id in cut:
                    cut.add(target)
                    continue
                if not self._edge_allowed(edge, root.preceptor):
                    cut.add(target)
                    continue
                preceptor = self._eligible(target, requirement)
                if preceptor is None or target in seen:
                    continue
                seen.add(target)
                chain.append(Candidate(
                    preceptor=preceptor, tier=TIER_FALLBACK_CHAIN, source=AssignmentSource.FALLBACK_CHAIN,
                    original_preceptor_id=root.preceptor_id, requires_approval=edge.requires_approval,
                ))
        return chain

    def _edge_allowed(self, edge: FallbackEdge, primary: Preceptor) -> bool:
        if edge.requires_approval and not self.options.allow_approval_required_fallbacks:
            return False
        fallback = self.preceptors.get(edge.fallback_preceptor_id)
        if fallback is None:
            return False
        if fallback.health_system_id != primary.health_system_id:
            return edge.allow_different_health_system or self.options.allow_cross_system_fallbacks
        return True

    def _candidate_sources(self, requirement: ClerkshipRequirement) -> Tuple[List[Candidate], List[TeamUnit]]:
        """Flat candidate list (non-team strategies) and team units (continuous_team)."""
        primary = self._primary_pool(requirement)
        units = self._team_units(requirement) if self.options.enable_team_formation else []

        candidates = list(primary)
        taken = {c.preceptor_id for c in primary}
        for unit in units:
            for member in unit.members:
                if member.preceptor_id not in taken:
                    taken.add(member.preceptor_id)
                    candidates.append(member)

        if self.options.enable_fallbacks:
            roots = [c for c in candidates if c.tier in (TIER_PRIMARY, TIER_TEAM)]
            candidates.extend(self._chain_candidates(roots, requirement, taken))

            for unit in units:
                unit_roots = [m for m in unit.members if m.tier == TIER_TEAM]
                in_unit = {m.preceptor_id for m in unit.members}
                unit.members.extend(self._chain_candidates(unit_roots, requirement, in_unit))

        if not units and primary:
            # No configured team: the primary pool rotates as one implicit team
            implicit = list(primary)
            if self.options.enable_fallbacks:
                implicit.extend(self._chain_candidates(primary, requirement, {c.preceptor_id for c in primary}))
            units = [TeamUnit(team_id=None, members=implicit)]

        return candidates, units

    # --- Gap filling ---

    def _fill_gaps(
        self,
        state: SchedulerState,
        dates: List[date_type],
        checker: ConstraintChecker,
        ledger: CapacityLedger,
    ) -> None:
        """Largest remaining gap first; ties keep the order the failures were recorded in."""
        filler = GapFiller(self.teams, self.preceptors, self.options)
        pending = sorted(state.failed_attempts.values(), key=lambda a: -a.unmet.remaining_days)
        logger.info(f"Gap filling for {len(pending)} unmet requirements")

        for attempt in pending:
            candidates = filler.candidates(attempt.requirement)
            if not candidates:
                continue
            ctx = StrategyContext(
                student_id=attempt.student_id,
                requirement=attempt.requirement,
                dates=dates,
                checker=checker,
                ledger=ledger,
                booked_days=state.booked_dates(attempt.student_id),
                candidates=candidates,
            )
            plan = filler.fill(ctx, attempt.unmet.remaining_days)
            if not plan.placements:
                continue

            self._commit(state, attempt.student_id, attempt.requirement, plan)
            state.record_gap_fill(attempt.student_id, attempt.position, len(plan.placements))
            logger.info(
                f"Gap filled {len(plan.placements)} of {attempt.unmet.required_days} days for "
                f"{attempt.student_id} / {attempt.requirement.key}"
            )

    # --- Commit ---

    def _commit(
        self,
        state: SchedulerState,
        student_id: str,
        requirement: ClerkshipRequirement,
        plan: PlacementPlan,
    ) -> None:
        approvals: Dict[Tuple[str, str], List] = defaultdict(list)
        approval_reasons: Dict[Tuple[str, str], str] = {}
        fallback_days = 0

        for placement in plan.placements:
            cand = placement.candidate
            is_fallback = cand.source in FALLBACK_SOURCES
            fallback_days += int(is_fallback)

            state.add_assignment(Assignment(
                student_id=student_id,
                preceptor_id=cand.preceptor_id,
                clerkship_id=requirement.clerkship_id,
                date=placement.date,
                status=AssignmentStatus.PENDING_APPROVAL if cand.requires_approval else AssignmentStatus.SCHEDULED,
                requirement_type=requirement.requirement_type,
                block_number=placement.block_number,
                site_id=placement.site_id,
                team_id=cand.team_id,
                source=cand.source,
                is_fallback=is_fallback,
                original_preceptor_id=cand.original_preceptor_id if is_fallback else None,
            ))

            if cand.requires_approval:
                key = (cand.original_preceptor_id or cand.preceptor_id, cand.preceptor_id)
                approvals[key].append(placement.date)
                if cand.team_id and cand.source != AssignmentSource.FALLBACK_CHAIN:
                    approval_reasons[key] = f"Team {cand.team_id} requires administrator approval"
                else:
                    approval_reasons[key] = f"Fallback {key[0]} -> {key[1]} requires approval"

        for (primary_id, fallback_id), days in approvals.items():
            state.add_pending_approval(PendingApproval(
                student_id=student_id,
                clerkship_id=requirement.clerkship_id,
                primary_preceptor_id=primary_id,
                fallback_preceptor_id=fallback_id,
                dates=days,
                reason=approval_reasons[(primary_id, fallback_id)],
            ))

        if fallback_days:
            logger.info(
                f"Fallback activated for {student_id} / {requirement.key}: "
                f"{fallback_days} of {len(plan.placements)} days"
            )
        plan.commit()
