"""
Scheduler State Management.

This module acts as the 'Memory' of one scheduling run.
It tracks:
1. Committed Assignments & per-student booked dates (for the overlap check).
2. Unmet requirements and pending approvals.
3. Detailed Failure Reporting (violation breakdown per student/requirement).
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Dict, List, Optional, Set, Tuple

from models import Assignment, ClerkshipRequirement, PendingApproval, UnmetRequirement
from .constraints import ViolationLog

PARTIAL_REASON = "Partially fulfilled by fallback: {assigned}/{required} days assigned"


@dataclass
class SchedulingAttempt:
    """
    Record of a failed (student, requirement) pair.
    `position` is the requirement's index in the run's work list, so two
    requirements sharing a clerkship and type keep separate records.
    """
    student_id: str
    position: int
    requirement: ClerkshipRequirement
    reason: str
    unmet: UnmetRequirement
    violations: ViolationLog = field(default_factory=ViolationLog)


class SchedulerState:
    """
    Maintains the mutable state of the scheduler during execution.
    Tracks assignments, booked dates and failure logs.
    """

    def __init__(self):
        # The Master Schedule
        self.assignments: List[Assignment] = []

        # Indices
        self.student_dates: Dict[str, Set[date_type]] = defaultdict(set)
        self.preceptor_assignments: Dict[str, List[Assignment]] = defaultdict(list)

        # Outcome Tracking
        self.unmet_requirements: List[UnmetRequirement] = []
        self.pending_approvals: List[PendingApproval] = []
        self.failed_attempts: Dict[Tuple[str, int], SchedulingAttempt] = {}

    def add_assignment(self, assignment: Assignment) -> None:
        """
        Commit a day-level assignment to the state.
        Updates all indices.
        """
        self.assignments.append(assignment)
        self.student_dates[assignment.student_id].add(assignment.date)
        self.preceptor_assignments[assignment.preceptor_id].append(assignment)

    def add_pending_approval(self, approval: PendingApproval) -> None:
        self.pending_approvals.append(approval)

    def record_failure(
        self,
        student_id: str,
        position: int,
        requirement: ClerkshipRequirement,
        reason: str,
        violations: Optional[ViolationLog] = None,
    ) -> None:
        """
        Log an unmet requirement.
        Strategy plans are all-or-nothing, so nothing is assigned yet.
        """
        unmet = UnmetRequirement(
            student_id=student_id,
            clerkship_id=requirement.clerkship_id,
            requirement_type=requirement.requirement_type,
            required_days=requirement.required_days,
            assigned_days=0,
            reason=reason,
        )
        self.unmet_requirements.append(unmet)

        attempt = SchedulingAttempt(student_id, position, requirement, reason, unmet)
        if violations is not None:
            attempt.violations.merge(violations)
        self.failed_attempts[(student_id, position)] = attempt

    def record_gap_fill(self, student_id: str, position: int, days: int) -> None:
        """
        Credit days placed by the gap filler to an unmet requirement.
        A requirement that is now fully covered leaves the unmet list.
        """
        key = (student_id, position)
        attempt = self.failed_attempts[key]
        unmet = attempt.unmet
        unmet.assigned_days += days

        if unmet.assigned_days >= unmet.required_days:
            self.unmet_requirements = [u for u in self.unmet_requirements if u is not unmet]
            del self.failed_attempts[key]
        else:
            unmet.reason = PARTIAL_REASON.format(assigned=unmet.assigned_days, required=unmet.required_days)

    # --- Query Methods ---

    def booked_dates(self, student_id: str) -> Set[date_type]:
        return self.student_dates.get(student_id, set())

    # --- Reporting Methods ---

    def get_failure_report(self) -> List[Dict]:
        """
        Human-readable list of what failed and why.
        """
        report = []
        for (student_id, _), attempt in sorted(self.failed_attempts.items(), key=lambda kv: kv[0]):
            log = attempt.violations
            primary_cause = log.most_common()
            report.append({
                "student_id": student_id,
                "clerkship_id": attempt.requirement.clerkship_id,
                "requirement_type": attempt.requirement.requirement_type.value,
                "strategy": attempt.requirement.assignment_strategy.value,
                "reason": attempt.reason,
                "required_days": attempt.unmet.required_days,
                "assigned_days": attempt.unmet.assigned_days,
                "primary_failure_cause": primary_cause,
                "violation_breakdown": dict(log.counts),
                "sample_violation": log.samples[primary_cause].reason if primary_cause else None,
            })
        return report
