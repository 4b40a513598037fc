"""
Clerkship and Requirement data models for the Rotation Scheduler.

This module defines the 'Demand' side of the scheduler:
1. Requirement types (outpatient / inpatient / elective)
2. Assignment strategies (how days are distributed across preceptors)
3. The resolved per-requirement configuration consumed by the engine
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator, ConfigDict


class RequirementType(str, Enum):
    """The three kinds of clinical days a clerkship can require."""
    OUTPATIENT = "outpatient"
    INPATIENT = "inpatient"
    ELECTIVE = "elective"


class AssignmentStrategy(str, Enum):
    """How a requirement's days are spread over preceptors."""
    CONTINUOUS_SINGLE = "continuous_single"
    CONTINUOUS_TEAM = "continuous_team"
    BLOCK_BASED = "block_based"
    DAILY_ROTATION = "daily_rotation"


class HealthSystemRule(str, Enum):
    """How strictly a student stays inside one health system."""
    ENFORCE_SAME_SYSTEM = "enforce_same_system"
    PREFER_SAME_SYSTEM = "prefer_same_system"
    NO_PREFERENCE = "no_preference"


class ClerkshipRequirement(BaseModel):
    """
    A single requirement of a clerkship, with its configuration already resolved.
    Global defaults vs. per-clerkship overrides are merged upstream.
    """

    # --- Core Identity ---
    clerkship_id: str = Field(description="Clerkship this requirement belongs to")
    requirement_type: RequirementType = Field(
        default=RequirementType.OUTPATIENT,
        description="Kind of clinical days"
    )
    required_days: int = Field(ge=1, description="Total number of days the student must complete")

    # --- Resolved Strategy ---
    assignment_strategy: AssignmentStrategy = Field(default=AssignmentStrategy.CONTINUOUS_SINGLE)
    health_system_rule: HealthSystemRule = Field(default=HealthSystemRule.NO_PREFERENCE)

    # --- Block Settings (block_based only) ---
    block_size_days: Optional[int] = Field(default=None, ge=1, description="Length of one block")
    allow_partial_blocks: bool = Field(
        default=False,
        description="Permit a shorter final block when required_days is not a multiple of block size"
    )
    prefer_continuous_blocks: bool = Field(
        default=False,
        description="Try the previous block's preceptor first for the next block"
    )

    # --- Eligible Pool Filters ---
    preceptor_ids: List[str] = Field(
        default_factory=list,
        description="If non-empty, only these preceptors may take the requirement (e.g. elective faculty)"
    )
    site_ids: List[str] = Field(
        default_factory=list,
        description="If non-empty, the preceptor must practise at one of these sites"
    )
    specialty: Optional[str] = Field(default=None, description="Required preceptor specialty")

    @model_validator(mode='after')
    def validate_block_settings(self):
        """Block strategy needs a block size."""
        if self.assignment_strategy == AssignmentStrategy.BLOCK_BASED and not self.block_size_days:
            raise ValueError("block_based strategy requires 'block_size_days'")
        return self

    @property
    def key(self) -> str:
        return f"{self.clerkship_id}:{self.requirement_type.value}"

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "clerkship_id": "clk_im",
            "requirement_type": "inpatient",
            "required_days": 28,
            "assignment_strategy": "block_based",
            "health_system_rule": "enforce_same_system",
            "block_size_days": 14,
            "prefer_continuous_blocks": True
        }
    })
