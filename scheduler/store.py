"""
Assignment persistence sinks.

A sink accepts the whole batch of a run's assignments in one commit call.
Either every assignment is stored or none is.
"""

import json
import logging
import os
import tempfile
from typing import List, Protocol, runtime_checkable

from models import Assignment
from .errors import PersistenceError

logger = logging.getLogger(__name__)


@runtime_checkable
class AssignmentStore(Protocol):
    """Transactional sink for a run's assignments."""

    def commit(self, assignments: List[Assignment]) -> None:
        ...


class InMemoryAssignmentStore:
    """Keeps committed assignments in a list. Stages a copy, then swaps it in."""

    def __init__(self):
        self.assignments: List[Assignment] = []
        self.commits = 0

    def commit(self, assignments: List[Assignment]) -> None:
        staged = list(self.assignments)
        staged.extend(a.model_copy() for a in assignments)
        self.assignments = staged
        self.commits += 1


class JsonAssignmentStore:
    """
    Appends each run's assignments to a JSON file.
    The new file is written next to the target and moved over it with os.replace,
    so a failed write leaves the previous file untouched.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> List[Assignment]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot read assignment store {self.path}: {e}") from e
        return [Assignment.model_validate(item) for item in data.get("assignments", [])]

    def commit(self, assignments: List[Assignment]) -> None:
        existing = self.load()
        payload = {
            "assignments": [a.model_dump(mode='json') for a in existing + list(assignments)]
        }

        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(prefix=".assignments-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise PersistenceError(f"Cannot write assignment store {self.path}: {e}") from e

        logger.info(f"Committed {len(assignments)} assignments to {self.path}")
