"""
Lifecycle errors.

Every rejection raised by the engine is a LifecycleError carrying enough
context (entity, current state, attempted transition) for the caller to act
or retry. Only Conflict is meant to be retried, and only by the caller after
a fresh read.
"""

from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for all engine rejections."""

    code = "lifecycle_error"

    def __init__(
        self,
        message: str,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        current_state: Optional[str] = None,
        attempted: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.attempted = attempted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "current_state": self.current_state,
            "attempted": self.attempted,
        }


class InvalidTransition(LifecycleError):
    """The requested transition is not in the transition table for the current state."""

    code = "invalid_transition"


class InvalidState(LifecycleError):
    """A precondition on the current state of an entity is not met."""

    code = "invalid_state"


class CaseNotReady(InvalidState):
    """The case is not in a status that accepts hearings."""

    code = "case_not_ready"


class InvalidPeriod(LifecycleError):
    """A date period is malformed (end not after start, or outside its bounds)."""

    code = "invalid_period"


class InvalidTimeRange(LifecycleError):
    """A time window is malformed (end not after start, check-out before check-in)."""

    code = "invalid_time_range"


class InvalidValue(LifecycleError):
    """A scalar input is missing or out of range."""

    code = "invalid_value"


class CapacityExceeded(LifecycleError):
    """A mediator or officer is already at their active-case limit."""

    code = "capacity_exceeded"


class OfficerUnavailable(LifecycleError):
    """The presiding officer already has an overlapping hearing."""

    code = "officer_unavailable"


class NotFound(LifecycleError):
    """A referenced entity does not exist."""

    code = "not_found"


class Conflict(LifecycleError):
    """A concurrent modification won the race; re-read and retry."""

    code = "conflict"
