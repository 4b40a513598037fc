"""
Schedule data models for the Rotation Scheduler.

This module defines the 'Output' of the scheduling engine:
Day-level assignments, unmet requirements and the aggregate report,
plus the options that bound a scheduling run.
"""

from typing import Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import date as date_type, timedelta

from .clerkship import RequirementType


class AssignmentStatus(str, Enum):
    """Status of a scheduled day."""
    SCHEDULED = "scheduled"
    PENDING_APPROVAL = "pending_approval"


class AssignmentSource(str, Enum):
    """Which candidate source produced the preceptor for a day."""
    PRIMARY = "primary"
    TEAM = "team"
    TEAM_FALLBACK = "team_fallback"
    FALLBACK_CHAIN = "fallback_chain"
    GAP_FILL = "gap_fill"


class Assignment(BaseModel):
    """
    One student placed with one preceptor on one calendar day.
    """

    # --- Core Scheduling Data ---
    student_id: str
    preceptor_id: str
    clerkship_id: str
    date: date_type = Field(description="Calendar date")
    status: AssignmentStatus = Field(default=AssignmentStatus.SCHEDULED)
    requirement_type: RequirementType = Field(default=RequirementType.OUTPATIENT)

    # --- Placement Context ---
    site_id: Optional[str] = Field(default=None, description="Site the preceptor works at that day")
    block_number: Optional[int] = Field(default=None, description="1-based block index (block_based only)")
    team_id: Optional[str] = Field(default=None)
    source: AssignmentSource = Field(default=AssignmentSource.PRIMARY)

    # --- Resilience Tracking ---
    is_fallback: bool = Field(
        default=False,
        description="True if the preceptor was reached through a fallback tier or chain"
    )
    original_preceptor_id: Optional[str] = Field(
        default=None,
        description="The primary preceptor this fallback substituted for (if is_fallback=True)"
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "student_id": "stu_001",
            "preceptor_id": "prc_diaz",
            "clerkship_id": "clk_fm",
            "date": "2026-01-05",
            "status": "scheduled",
            "requirement_type": "outpatient",
            "source": "fallback_chain",
            "is_fallback": True,
            "original_preceptor_id": "prc_chen"
        }
    })


class UnmetRequirement(BaseModel):
    """A student/requirement pair the engine could not satisfy."""
    student_id: str
    clerkship_id: str
    requirement_type: RequirementType = Field(default=RequirementType.OUTPATIENT)
    required_days: int = Field(default=0, ge=0)
    assigned_days: int = Field(default=0, ge=0)
    reason: str

    @property
    def remaining_days(self) -> int:
        return self.required_days - self.assigned_days


class PendingApproval(BaseModel):
    """Fallback placement that needs administrator sign-off."""
    student_id: str
    clerkship_id: str
    primary_preceptor_id: str
    fallback_preceptor_id: str
    dates: List[date_type] = Field(default_factory=list)
    reason: str = Field(default="")


class RequirementFailure(BaseModel):
    """
    Diagnostic entry for one unmet (student, requirement) pair: which
    constraint blocked the search most often, and how often each one did.
    """
    student_id: str
    clerkship_id: str
    requirement_type: RequirementType
    strategy: str
    reason: str
    required_days: int = 0
    assigned_days: int = 0
    primary_failure_cause: Optional[str] = None
    violation_breakdown: Dict[str, int] = Field(default_factory=dict)
    sample_violation: Optional[str] = None


class ScheduleStatistics(BaseModel):
    total_students: int = 0
    fully_scheduled_students: int = 0
    partially_scheduled_students: int = 0
    unscheduled_students: int = 0
    total_assignments: int = 0
    fallback_assignments: int = 0
    gap_fill_assignments: int = 0
    partially_fulfilled_requirements: int = 0
    preceptors_utilized: int = 0
    average_assignments_per_preceptor: float = 0.0
    completion_rate: float = 0.0


class ScheduleResult(BaseModel):
    """Final report of a scheduling run."""
    success: bool = True
    assignments: List[Assignment] = Field(default_factory=list)
    statistics: ScheduleStatistics = Field(default_factory=ScheduleStatistics)
    unmet_requirements: List[UnmetRequirement] = Field(default_factory=list)
    pending_approvals: List[PendingApproval] = Field(default_factory=list)
    failure_report: List[RequirementFailure] = Field(default_factory=list)


class ScheduleOptions(BaseModel):
    """Recognized options for one scheduling run."""
    start_date: date_type = Field(description="First day of the search window (inclusive)")
    end_date: date_type = Field(description="Last day of the search window (inclusive)")
    dry_run: bool = Field(default=False, description="Compute only, never persist")
    enable_team_formation: bool = Field(default=False)
    enable_fallbacks: bool = Field(default=False)
    enable_gap_filling: bool = Field(
        default=True,
        description="With fallbacks enabled, fill unmet days from team preceptors after the main pass"
    )

    # Fallback eligibility filters
    allow_approval_required_fallbacks: bool = Field(
        default=False,
        description="Use fallback edges flagged requires_approval; placements become pending_approval"
    )
    allow_cross_system_fallbacks: bool = Field(
        default=False,
        description="Use fallbacks in another health system even when the edge does not allow it"
    )

    @model_validator(mode='after')
    def validate_window(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self

    def window_dates(self) -> List[date_type]:
        span = (self.end_date - self.start_date).days
        return [self.start_date + timedelta(days=i) for i in range(span + 1)]
