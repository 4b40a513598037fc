"""
Input bundle for a scheduling run.

Everything the engine reads is loaded up front into one SchedulingDataset,
so the scheduling loop never performs incremental I/O.
"""

from typing import Dict, List, Optional, Set
from pydantic import BaseModel, Field

from .clerkship import ClerkshipRequirement
from .resource import (
    Preceptor,
    AvailabilityRecord,
    BlackoutRange,
    CapacityRule,
    SiteCapacityRule,
    StudentOnboarding,
    Team,
    FallbackEdge,
)


class SchedulingDataset(BaseModel):
    """Normalized, read-only inputs supplied by the configuration subsystem."""
    preceptors: List[Preceptor] = Field(default_factory=list)
    requirements: List[ClerkshipRequirement] = Field(default_factory=list)
    availability: List[AvailabilityRecord] = Field(default_factory=list)
    blackouts: List[BlackoutRange] = Field(default_factory=list)
    capacity_rules: List[CapacityRule] = Field(default_factory=list)
    site_capacity_rules: List[SiteCapacityRule] = Field(default_factory=list)
    teams: List[Team] = Field(default_factory=list)
    fallbacks: List[FallbackEdge] = Field(default_factory=list)
    onboarding: Optional[List[StudentOnboarding]] = Field(
        default=None,
        description="Onboarding records. None disables the onboarding check; a list (even empty) enforces it"
    )

    def preceptor_map(self) -> Dict[str, Preceptor]:
        return {p.id: p for p in self.preceptors}

    def requirements_for(self, clerkship_id: str) -> List[ClerkshipRequirement]:
        """Requirements of a clerkship, in dataset order."""
        return [r for r in self.requirements if r.clerkship_id == clerkship_id]

    def onboarded_systems(self) -> Optional[Dict[str, Set[str]]]:
        """student -> health systems with completed onboarding, or None when not tracked."""
        if self.onboarding is None:
            return None
        systems: Dict[str, Set[str]] = {}
        for record in self.onboarding:
            if record.is_completed:
                systems.setdefault(record.student_id, set()).add(record.health_system_id)
        return systems
