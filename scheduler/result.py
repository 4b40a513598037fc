"""
Result Builder.

Turns the run's SchedulerState into the public ScheduleResult and, unless
the run is a dry run, hands every assignment to the persistence sink in a
single commit.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from models import AssignmentSource, ClerkshipRequirement, RequirementFailure, ScheduleResult, ScheduleStatistics
from .errors import PersistenceError
from .state import SchedulerState
from .store import AssignmentStore

logger = logging.getLogger(__name__)


class ResultBuilder:
    """Assembles assignments, statistics, unmet requirements, pending approvals and the failure report."""

    def __init__(
        self,
        state: SchedulerState,
        student_ids: Iterable[str],
        requirements: Iterable[ClerkshipRequirement],
    ):
        self.state = state
        self.student_ids = list(dict.fromkeys(student_ids))
        self.requirements = list(requirements)

    def build(self) -> ScheduleResult:
        return ScheduleResult(
            success=True,
            assignments=list(self.state.assignments),
            statistics=self._statistics(),
            unmet_requirements=list(self.state.unmet_requirements),
            pending_approvals=list(self.state.pending_approvals),
            failure_report=[RequirementFailure(**entry) for entry in self.state.get_failure_report()],
        )

    def _statistics(self) -> ScheduleStatistics:
        """
        A student is fully scheduled when none of their requirements is unmet,
        partially scheduled when something was placed but not everything, and
        unscheduled when nothing could be placed.
        """
        unmet_by_student: Dict[str, int] = defaultdict(int)
        for unmet in self.state.unmet_requirements:
            unmet_by_student[unmet.student_id] += 1

        requirement_count = len(self.requirements)
        fully = partially = unscheduled = 0
        for student_id in self.student_ids:
            unmet = unmet_by_student.get(student_id, 0)
            if unmet == 0:
                fully += 1
            elif unmet < requirement_count or student_id in self.state.student_dates:
                partially += 1
            else:
                unscheduled += 1

        assignments = self.state.assignments
        utilized = len(self.state.preceptor_assignments)
        total_students = len(self.student_ids)

        return ScheduleStatistics(
            total_students=total_students,
            fully_scheduled_students=fully,
            partially_scheduled_students=partially,
            unscheduled_students=unscheduled,
            total_assignments=len(assignments),
            fallback_assignments=sum(1 for a in assignments if a.is_fallback),
            gap_fill_assignments=sum(1 for a in assignments if a.source == AssignmentSource.GAP_FILL),
            partially_fulfilled_requirements=sum(1 for u in self.state.unmet_requirements if u.assigned_days > 0),
            preceptors_utilized=utilized,
            average_assignments_per_preceptor=round(len(assignments) / utilized, 2) if utilized else 0.0,
            completion_rate=round(fully / total_students * 100, 1) if total_students else 0.0,
        )

    def persist(self, result: ScheduleResult, store: Optional[AssignmentStore]) -> None:
        """Single all-or-nothing commit of every assignment of the run."""
        if store is None:
            logger.debug("No assignment store configured; result not persisted")
            return
        try:
            store.commit(result.assignments)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Committing {len(result.assignments)} assignments failed: {e}") from e


def requirements_in_scope(requirements: Iterable[ClerkshipRequirement], clerkship_ids: Iterable[str]) -> List[ClerkshipRequirement]:
    wanted = set(clerkship_ids)
    return [r for r in requirements if r.clerkship_id in wanted]
