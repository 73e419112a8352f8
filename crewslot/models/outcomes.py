from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from crewslot.models.entities import Assignment, Resource


class AvailabilityError(str, Enum):
    MISSING_FIELDS = "MISSING_FIELDS"
    NO_PRICING_MATCH = "NO_PRICING_MATCH"
    NO_RESOURCES_CONFIGURED = "NO_RESOURCES_CONFIGURED"
    NO_AVAILABILITY_FOUND = "NO_AVAILABILITY_FOUND"


@dataclass(frozen=True)
class AvailabilityResult:
    is_available: bool
    confirmed_instant: Optional[str] = None
    alternatives: List[str] = field(default_factory=list)
    duration_minutes: Optional[int] = None
    error: Optional[AvailabilityError] = None
    missing_fields: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Assigned:
    resource: Resource
    assignment: Assignment
    distance: float

    status = "assigned"


@dataclass(frozen=True)
class Exhausted:
    """No eligible resource remains; the job needs operator escalation."""

    job_id: str
    exhausted: bool = True

    status = "exhausted"


@dataclass(frozen=True)
class AssignmentFailure:
    """Transient failure (storage, bad job data); safe to retry with backoff."""

    job_id: str
    reason: str
    retryable: bool = True

    status = "failure"


AssignmentOutcome = Union[Assigned, Exhausted, AssignmentFailure]
