"""
Feasibility Checker

A resource is feasible for ``[start, end)`` when its weekly schedule covers
the interval AND none of its booked intervals overlaps it. Both checks are
pure reads over immutable inputs.
"""

from datetime import datetime
from typing import Iterable, List

from crewslot.engine.conflicts import ConflictStore
from crewslot.models.entities import AvailabilitySchedule, Resource
from crewslot.utils.timeutils import to_local


def within_schedule(schedule: AvailabilitySchedule, start: datetime, end: datetime) -> bool:
    """
    Check that ``[start, end)`` lies inside one weekly rule, in the
    schedule's own timezone.

    Intervals that cross local midnight are never inside a rule: overnight
    windows are not modelled.
    """
    if schedule.always_available:
        return True

    local_start = to_local(start, schedule.tz)
    local_end = to_local(end, schedule.tz)
    if local_start.weekday != local_end.weekday:
        return False
    if local_end.minute_of_day < local_start.minute_of_day:
        return False

    return any(
        rule.covers(local_start.weekday, local_start.minute_of_day, local_end.minute_of_day)
        for rule in schedule.rules
    )


def is_feasible(resource: Resource, start: datetime, end: datetime, conflicts: ConflictStore) -> bool:
    return within_schedule(resource.schedule, start, end) and conflicts.is_free(resource.id, start, end)


def feasible_resources(
    resources: Iterable[Resource], start: datetime, end: datetime, conflicts: ConflictStore
) -> List[Resource]:
    return [r for r in resources if is_feasible(r, start, end, conflicts)]


def any_feasible(resources: Iterable[Resource], start: datetime, end: datetime, conflicts: ConflictStore) -> bool:
    return any(is_feasible(r, start, end, conflicts) for r in resources)
