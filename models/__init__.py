"""
Data models package for the Clerkship Rotation Scheduler.

This package exports the four pillars of the data architecture:
1. Demand (ClerkshipRequirement and its strategy enums)
2. Supply (Preceptor, Availability, Capacity, Teams, Fallbacks)
3. Output (Assignment, UnmetRequirement, ScheduleResult)
4. Input bundle (SchedulingDataset)
"""

from .clerkship import (
    RequirementType,
    AssignmentStrategy,
    HealthSystemRule,
    ClerkshipRequirement
)

from .resource import (
    Preceptor,
    AvailabilityRecord,
    BlackoutRange,
    CapacityRule,
    SiteCapacityRule,
    StudentOnboarding,
    TeamMember,
    Team,
    FallbackEdge
)

from .schedule import (
    AssignmentStatus,
    AssignmentSource,
    Assignment,
    UnmetRequirement,
    PendingApproval,
    RequirementFailure,
    ScheduleStatistics,
    ScheduleResult,
    ScheduleOptions
)

from .dataset import SchedulingDataset

__all__ = [
    # --- Demand Models ---
    "RequirementType",
    "AssignmentStrategy",
    "HealthSystemRule",
    "ClerkshipRequirement",

    # --- Resource & Constraint Models ---
    "Preceptor",
    "AvailabilityRecord",
    "BlackoutRange",
    "CapacityRule",
    "SiteCapacityRule",
    "StudentOnboarding",
    "TeamMember",
    "Team",
    "FallbackEdge",

    # --- Output Models ---
    "AssignmentStatus",
    "AssignmentSource",
    "Assignment",
    "UnmetRequirement",
    "PendingApproval",
    "RequirementFailure",
    "ScheduleStatistics",
    "ScheduleResult",
    "ScheduleOptions",

    # --- Input Bundle ---
    "SchedulingDataset",
]
