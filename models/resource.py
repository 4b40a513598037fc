"""
Preceptor and Constraint data models for the Rotation Scheduler.

This module defines the 'Supply' side of the scheduler:
1. Preceptors (Human resources with sites and a health system)
2. Availability & Blackouts (When a preceptor can take students)
3. Capacity Rules (How many students a preceptor can take)
4. Teams & Fallback Edges (Who substitutes for whom)
"""

from typing import List, Optional
from pydantic import BaseModel, Field, model_validator, ConfigDict
from datetime import date as date_type

from .clerkship import RequirementType


class Preceptor(BaseModel):
    """
    Supervising practitioner with site membership.
    """
    id: str = Field(description="Unique identifier")
    name: str = Field(default="", description="Display name")
    health_system_id: Optional[str] = Field(default=None, description="Owning health system")
    site_ids: List[str] = Field(default_factory=list, description="Sites the preceptor practises at")
    specialty: Optional[str] = Field(default=None)

    # Capacity Constraint
    max_students: int = Field(
        default=1,
        ge=1,
        description="Default number of students per day when no capacity rule applies"
    )

    fallback_only: bool = Field(
        default=False,
        description="Never used as a primary candidate; only reachable as a team or chain fallback"
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "prc_chen",
            "name": "Dr. Chen",
            "health_system_id": "hs_umc",
            "site_ids": ["site_main"],
            "specialty": "Family Medicine",
            "max_students": 2
        }
    })


class AvailabilityRecord(BaseModel):
    """A preceptor working at a site on one calendar day."""
    preceptor_id: str
    site_id: Optional[str] = Field(default=None, description="Site worked that day")
    date: date_type
    is_available: bool = Field(default=True)


class BlackoutRange(BaseModel):
    """Inclusive date range removed from availability."""
    preceptor_id: Optional[str] = Field(
        default=None,
        description="If None, the blackout applies to every preceptor (school-wide closure)"
    )
    start_date: date_type
    end_date: date_type
    reason: str = Field(default="")

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("Blackout End Date cannot be before Start Date")
        return self

    def covers(self, day: date_type) -> bool:
        return self.start_date <= day <= self.end_date


class CapacityRule(BaseModel):
    """
    Capacity limits for a preceptor, optionally scoped to a clerkship and/or requirement type.
    The most specific matching rule wins as a whole; fields are never merged.
    """
    preceptor_id: str
    clerkship_id: Optional[str] = Field(default=None)
    requirement_type: Optional[RequirementType] = Field(default=None)

    max_students_per_day: int = Field(ge=1)
    max_students_per_year: int = Field(ge=1)
    max_students_per_block: Optional[int] = Field(default=None, ge=1)
    max_blocks_per_year: Optional[int] = Field(default=None, ge=1)


class SiteCapacityRule(BaseModel):
    """
    Limits on students hosted at a site, across all of its preceptors.
    Matching order: clerkship-specific, then requirement-type-specific, then site-wide.
    """
    site_id: str
    clerkship_id: Optional[str] = Field(default=None)
    requirement_type: Optional[RequirementType] = Field(default=None)

    max_students_per_day: int = Field(ge=1)
    max_students_per_year: Optional[int] = Field(default=None, ge=1)


class StudentOnboarding(BaseModel):
    """A student's onboarding (orientation, credentialing) at a health system."""
    student_id: str
    health_system_id: str
    is_completed: bool = Field(default=True)


class TeamMember(BaseModel):
    """One preceptor's seat on a team."""
    preceptor_id: str
    priority: int = Field(ge=1, description="Lower value is tried first")
    is_fallback_only: bool = Field(
        default=False,
        description="Only used once the non-fallback members cannot cover a day"
    )
    role: Optional[str] = Field(default=None)


class Team(BaseModel):
    """
    Pre-configured group of preceptors rotated together for a clerkship.
    """
    id: str = Field(description="Unique identifier")
    clerkship_id: str
    name: str = Field(default="")
    members: List[TeamMember] = Field(min_length=1)

    # Formation Rules
    require_same_health_system: bool = Field(default=False)
    require_same_site: bool = Field(default=False)
    require_same_specialty: bool = Field(default=False)
    requires_admin_approval: bool = Field(default=False)

    @model_validator(mode='after')
    def validate_members(self):
        if all(m.is_fallback_only for m in self.members):
            raise ValueError("Team must have at least one member that is not fallback-only")

        priorities = [m.priority for m in self.members]
        if len(priorities) != len(set(priorities)):
            raise ValueError("Team member priorities must be unique")

        preceptors = [m.preceptor_id for m in self.members]
        if len(preceptors) != len(set(preceptors)):
            raise ValueError("A preceptor can only appear once per team")
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "team_fm_a",
            "clerkship_id": "clk_fm",
            "members": [
                {"preceptor_id": "prc_chen", "priority": 1},
                {"preceptor_id": "prc_diaz", "priority": 2},
                {"preceptor_id": "prc_okafor", "priority": 3, "is_fallback_only": True}
            ],
            "require_same_health_system": True
        }
    })


class FallbackEdge(BaseModel):
    """
    Directed substitution: when the primary cannot take a student, try the fallback.
    Edges with clerkship_id=None form the global scope.
    """
    primary_preceptor_id: str
    fallback_preceptor_id: str
    clerkship_id: Optional[str] = Field(default=None)
    priority: int = Field(default=1, ge=1, description="Lower value is tried first")
    requires_approval: bool = Field(default=False)
    allow_different_health_system: bool = Field(default=False)

    @model_validator(mode='after')
    def validate_endpoints(self):
        if self.primary_preceptor_id == self.fallback_preceptor_id:
            raise ValueError("A preceptor cannot be its own fallback")
        return self
