"""
Rotation scheduling engine.

`schedule()` is the primary entry point: it validates configuration, runs the
engine over students x clerkship requirements, builds the ScheduleResult and
persists it through an AssignmentStore unless the run is a dry run.
"""

import logging
from typing import Iterable, Optional

from models import ScheduleOptions, ScheduleResult, SchedulingDataset
from .engine import RotationScheduler
from .errors import (
    ConfigurationError,
    DuplicateFallbackPriorityError,
    FallbackCycleError,
    PersistenceError,
    TeamValidationError,
)
from .result import ResultBuilder, requirements_in_scope
from .store import AssignmentStore, InMemoryAssignmentStore, JsonAssignmentStore

logger = logging.getLogger(__name__)


def schedule(
    student_ids: Iterable[str],
    clerkship_ids: Iterable[str],
    options: ScheduleOptions,
    dataset: SchedulingDataset,
    store: Optional[AssignmentStore] = None,
) -> ScheduleResult:
    """
    Schedule every student against every requirement of the given clerkships.

    Raises ConfigurationError for invalid teams/fallback edges (before any
    assignment is computed) and PersistenceError when the store rejects the batch.
    """
    student_ids = list(student_ids)
    clerkship_ids = list(clerkship_ids)

    engine = RotationScheduler(dataset, options)
    state = engine.run(student_ids, clerkship_ids)

    builder = ResultBuilder(state, student_ids, requirements_in_scope(dataset.requirements, clerkship_ids))
    result = builder.build()

    if options.dry_run:
        logger.info("Dry run: result not persisted")
    else:
        builder.persist(result, store)
    return result


__all__ = [
    "schedule",
    "RotationScheduler",
    "ResultBuilder",
    "AssignmentStore",
    "InMemoryAssignmentStore",
    "JsonAssignmentStore",
    "ConfigurationError",
    "DuplicateFallbackPriorityError",
    "FallbackCycleError",
    "PersistenceError",
    "TeamValidationError",
]
