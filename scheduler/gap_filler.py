"""
Post-pass Gap Filler.

Runs after every student has been through the strategies. Each unmet
requirement, largest gap first, gets a second chance from the teams
configured for its clerkship, in tiers:
1. Members of the clerkship's primary team (its first configured team).
2. Members of other teams in the primary team's health system.
3. Members of teams in other health systems (allow_cross_system_fallbacks only).

Days need not be contiguous: each preceptor takes as many feasible days as
it can before the next one is tried. A requirement that still falls short
keeps its unmet record, with the days that were placed.
"""

import logging
from typing import Dict, List, Optional

from models import (
    AssignmentSource,
    ClerkshipRequirement,
    HealthSystemRule,
    Preceptor,
    ScheduleOptions,
    Team,
)
from .constraints import ConstraintChecker
from .strategies import TIER_GAP_FILL, Candidate, PlacementPlan, StrategyContext
from .teams import TeamResolver

logger = logging.getLogger(__name__)


class GapFiller:
    """Tiered candidate sourcing and greedy day filling for unmet requirements."""

    def __init__(self, teams: TeamResolver, preceptors: Dict[str, Preceptor], options: ScheduleOptions):
        self.teams = teams
        self.preceptors = preceptors
        self.options = options

    def _system_of(self, team: Team) -> Optional[str]:
        rotation = self.teams.rotation(team)
        lead = self.preceptors.get(rotation[0]) if rotation else None
        return lead.health_system_id if lead else None

    def tiers(self, requirement: ClerkshipRequirement) -> List[List[Team]]:
        teams = self.teams.teams_for(requirement.clerkship_id)
        if not teams:
            return []
        primary, others = teams[0], teams[1:]
        home = self._system_of(primary)

        tiers = [
            [primary],
            [t for t in others if self._system_of(t) == home],
        ]
        cross_allowed = (
            self.options.allow_cross_system_fallbacks
            and requirement.health_system_rule != HealthSystemRule.ENFORCE_SAME_SYSTEM
        )
        tiers.append([t for t in others if self._system_of(t) != home] if cross_allowed else [])
        return tiers

    def candidates(self, requirement: ClerkshipRequirement) -> List[Candidate]:
        """Every eligible team preceptor, tier by tier, each listed once."""
        tiers = self.tiers(requirement)
        if not tiers:
            return []
        primary_rotation = self.teams.rotation(tiers[0][0])
        lead = primary_rotation[0] if primary_rotation else None

        found: List[Candidate] = []
        levels: Dict[str, int] = {}
        seen = set()
        for level, teams in enumerate(tiers, start=1):
            for team in teams:
                for pid in self.teams.rotation(team) + self.teams.fallback_tier(team):
                    if pid in seen:
                        continue
                    seen.add(pid)
                    preceptor = self.preceptors.get(pid)
                    if preceptor is None or not ConstraintChecker.is_eligible(preceptor, requirement):
                        continue
                    if requirement.preceptor_ids and pid not in requirement.preceptor_ids:
                        continue
                    levels[pid] = level
                    found.append(Candidate(
                        preceptor=preceptor, tier=TIER_GAP_FILL, source=AssignmentSource.GAP_FILL,
                        team_id=team.id, original_preceptor_id=lead if pid != lead else None,
                        requires_approval=team.requires_admin_approval,
                    ))
        logger.debug(
            f"Gap candidates for {requirement.key}: "
            + ", ".join(f"{c.preceptor_id} (tier {levels[c.preceptor_id]})" for c in found)
        )
        return found

    @staticmethod
    def fill(ctx: StrategyContext, days_needed: int) -> PlacementPlan:
        """
        Greedy fill: candidates in order, each taking its feasible days in date
        order. Unlike a strategy plan, a partial result is kept.
        """
        plan = ctx.new_plan()
        for cand in ctx.candidates:
            for day in ctx.dates:
                if len(plan.placements) >= days_needed:
                    return plan
                violation = ctx.check(plan, cand, day)
                if violation is None:
                    plan.place(cand, day)
                else:
                    plan.violations.add(violation)
        return plan
