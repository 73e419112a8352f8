"""
Slot Search

Greedy, earliest-first scan for bookable start instants.

Algorithm:
1. Move the requested start to ``now + lead_time`` if it is sooner than that
2. Step forward in ``step_minutes`` increments for ``horizon_days``
3. At each step test ``[step, step + duration + buffer)`` against every
   resource; the step is accepted as soon as ANY resource is feasible
4. Collect distinct accepted instants until ``count`` are found

Policy: a slot is offered to the customer when any single resource could take
it. The search does not balance load between resources; which resource ends
up doing the job is decided later by cascading assignment.

Complexity: O(S * R * (W + B)) where
    S = steps in the horizon (672 with the default 30 min / 14 days)
    R = resources, W = rules per schedule, B = bookings per resource
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from crewslot.config.settings import SchedulingConfig
from crewslot.engine.conflicts import ConflictStore
from crewslot.engine.feasibility import any_feasible
from crewslot.models.entities import Resource

logger = logging.getLogger(__name__)


def earliest_start(requested_start: datetime, config: SchedulingConfig, now: Optional[datetime] = None) -> datetime:
    """Apply the minimum lead time to a requested start."""
    now = now or datetime.now(timezone.utc)
    floor = now + timedelta(minutes=config.lead_time_minutes)
    return floor if requested_start < floor else requested_start


def candidate_end(start: datetime, duration_minutes: int, config: SchedulingConfig) -> datetime:
    return start + timedelta(minutes=duration_minutes + config.buffer_minutes)


def find_slots(
    requested_start: datetime,
    count: int,
    duration_minutes: int,
    resources: Sequence[Resource],
    conflicts: ConflictStore,
    config: SchedulingConfig,
    now: Optional[datetime] = None,
) -> List[datetime]:
    """
    Find up to ``count`` distinct instants where at least one resource can
    take a job of ``duration_minutes``.

    Args:
        requested_start: Preferred start (aware datetime)
        count: Maximum number of instants to return
        duration_minutes: Job length without the post-job buffer
        resources: Candidate resources (inactive ones are ignored)
        conflicts: Booked intervals snapshot for this request
        config: Step, horizon, buffer and lead-time settings
        now: Reference instant (defaults to the current UTC time)

    Returns:
        Ascending list of aware datetimes, never earlier than
        ``now + lead_time``
    """
    if count <= 0:
        return []

    now = now or datetime.now(timezone.utc)
    active = [r for r in resources if r.active]
    if not active:
        return []

    cursor = earliest_start(requested_start, config, now)
    step = timedelta(minutes=config.step_minutes)
    max_steps = (config.horizon_days * 24 * 60) // config.step_minutes

    slots: List[datetime] = []
    for _ in range(max_steps):
        if len(slots) >= count:
            break
        end = candidate_end(cursor, duration_minutes, config)
        if cursor >= now and cursor not in slots and any_feasible(active, cursor, end, conflicts):
            slots.append(cursor)
        cursor = cursor + step

    logger.debug(f"Slot search from {requested_start.isoformat()}: {len(slots)}/{count} found")
    return slots
