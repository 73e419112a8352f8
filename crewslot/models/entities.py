import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from crewslot.models.errors import InvalidRuleError

MINUTES_PER_DAY = 1440


class AssignmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        """Active assignments hold the resource's time."""
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({AssignmentStatus.PENDING, AssignmentStatus.ACCEPTED, AssignmentStatus.CONFIRMED})


class JobStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True)
class AvailabilityRule:
    days: FrozenSet[int]  # 0 = Sunday ... 6 = Saturday
    start_min: int  # minutes since local midnight
    end_min: int

    def __post_init__(self):
        if not self.days:
            raise InvalidRuleError("availability rule needs at least one weekday")
        if any(d < 0 or d > 6 for d in self.days):
            raise InvalidRuleError(f"weekdays must be in 0..6, got {sorted(self.days)}")
        if not (0 <= self.start_min < MINUTES_PER_DAY and 0 < self.end_min <= MINUTES_PER_DAY):
            raise InvalidRuleError(f"rule offsets out of range: {self.start_min}-{self.end_min}")
        if self.start_min >= self.end_min:
            # overnight windows are not modelled
            raise InvalidRuleError(
                f"rule must end after it starts (start={self.start_min}, end={self.end_min}); overnight spans are unsupported"
            )

    def covers(self, weekday: int, start_min: int, end_min: int) -> bool:
        return weekday in self.days and self.start_min <= start_min and end_min <= self.end_min


@dataclass(frozen=True)
class AvailabilitySchedule:
    tz: str
    rules: Tuple[AvailabilityRule, ...] = ()
    always_available: bool = True

    def __post_init__(self):
        if not self.always_available and not self.rules:
            raise InvalidRuleError("a restricted schedule needs at least one rule")

    @classmethod
    def always(cls, tz: str) -> "AvailabilitySchedule":
        return cls(tz=tz, rules=(), always_available=True)

    @classmethod
    def from_rules(cls, tz: str, rules) -> "AvailabilitySchedule":
        rules = tuple(rules)
        if not rules:
            return cls.always(tz)
        return cls(tz=tz, rules=rules, always_available=False)


@dataclass(frozen=True)
class Resource:
    id: str
    name: str
    schedule: AvailabilitySchedule
    home: Optional[GeoPoint] = None
    active: bool = True


@dataclass(frozen=True)
class Booking:
    resource_id: str
    start: datetime
    duration_minutes: int


@dataclass(frozen=True)
class BookedInterval:
    resource_id: str
    start: datetime
    end: datetime  # buffer already applied


@dataclass(frozen=True)
class Job:
    id: str
    start: Optional[datetime]
    duration_minutes: int
    location: Optional[GeoPoint] = None
    status: JobStatus = JobStatus.SCHEDULED
    address: Optional[str] = None


@dataclass(frozen=True)
class JobProfile:
    bedrooms: float
    bathrooms: float
    sqft: float
    service_type: str = "Standard"


@dataclass(frozen=True)
class AssignmentCandidate:
    resource: Resource
    distance: float = math.inf

    @property
    def has_location(self) -> bool:
        return not math.isinf(self.distance)


@dataclass(frozen=True)
class Assignment:
    id: str
    job_id: str
    resource_id: str
    status: AssignmentStatus
    start: datetime
    end: datetime
    created_at: Optional[datetime] = field(default=None, compare=False)
