"""
Exceptions raised by the Rotation Scheduler.

Configuration errors are raised while registering teams and fallback edges,
before any run starts. Infeasibility is never an exception; it is reported
as UnmetRequirement data.
"""

from typing import List


class ConfigurationError(Exception):
    """Raised when scheduling configuration is structurally invalid."""

    pass


class FallbackCycleError(ConfigurationError):
    """Raised when a fallback edge would close a cycle in its scope."""

    def __init__(self, primary_id: str, fallback_id: str, clerkship_id=None):
        scope = clerkship_id or "global"
        super().__init__(
            f"Adding fallback {primary_id} -> {fallback_id} ({scope} scope) would create a circular reference"
        )
        self.primary_id = primary_id
        self.fallback_id = fallback_id
        self.clerkship_id = clerkship_id


class DuplicateFallbackPriorityError(ConfigurationError):
    """Raised when two edges of one chain share a priority."""

    pass


class TeamValidationError(ConfigurationError):
    """Raised when a team breaks its formation rules."""

    def __init__(self, team_id: str, errors: List[str]):
        super().__init__(f"Team {team_id} is invalid: {'; '.join(errors)}")
        self.team_id = team_id
        self.errors = errors


class PersistenceError(Exception):
    """Raised when committing a run's assignments fails. Nothing is written."""

    pass
