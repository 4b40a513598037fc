"""
Team Resolver.

Validates team formation rules against the preceptor records and exposes
each team's ordered rotation (non-fallback members) and in-team fallback tier.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List

from models import Preceptor, Team
from .errors import TeamValidationError

logger = logging.getLogger(__name__)


class TeamResolver:
    """Registry of validated teams, grouped by clerkship."""

    def __init__(self, teams: Iterable[Team], preceptors: Iterable[Preceptor]):
        self.preceptors: Dict[str, Preceptor] = {p.id: p for p in preceptors}
        self._by_clerkship: Dict[str, List[Team]] = defaultdict(list)
        for team in teams:
            self.add_team(team)

    def add_team(self, team: Team) -> None:
        errors = self.validate_team(team)
        if errors:
            raise TeamValidationError(team.id, errors)
        self._by_clerkship[team.clerkship_id].append(team)

    def validate_team(self, team: Team) -> List[str]:
        """Returns the list of broken formation rules (empty if the team is valid)."""
        missing = [m.preceptor_id for m in team.members if m.preceptor_id not in self.preceptors]
        if missing:
            return [f"Preceptor {pid} not found" for pid in missing]

        members = [self.preceptors[m.preceptor_id] for m in team.members]
        errors = []

        if team.require_same_health_system:
            systems = {p.health_system_id for p in members}
            if len(systems) > 1 or None in systems:
                errors.append("All team members must belong to the same health system")

        if team.require_same_site:
            # Every member must share at least one common site, not just pairwise overlap
            shared = set(members[0].site_ids)
            for p in members[1:]:
                shared &= set(p.site_ids)
            if not shared:
                errors.append("All team members must share a common site")

        if team.require_same_specialty:
            specialties = {p.specialty for p in members}
            if len(specialties) > 1 or None in specialties:
                errors.append("All team members must share the same specialty")

        return errors

    # --- Queries ---

    def teams_for(self, clerkship_id: str) -> List[Team]:
        return list(self._by_clerkship.get(clerkship_id, []))

    @staticmethod
    def rotation(team: Team) -> List[str]:
        """Non-fallback members by ascending priority."""
        members = sorted((m for m in team.members if not m.is_fallback_only), key=lambda m: m.priority)
        return [m.preceptor_id for m in members]

    @staticmethod
    def fallback_tier(team: Team) -> List[str]:
        """Fallback-only members by ascending priority."""
        members = sorted((m for m in team.members if m.is_fallback_only), key=lambda m: m.priority)
        return [m.preceptor_id for m in members]
