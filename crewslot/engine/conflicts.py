from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List

from crewslot.models.entities import BookedInterval, Booking


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Strict half-open overlap of [a_start, a_end) and [b_start, b_end)."""
    return a_start < b_end and b_start < a_end


def to_booked_interval(booking: Booking, buffer_minutes: int) -> BookedInterval:
    start = booking.start
    end = start + timedelta(minutes=booking.duration_minutes + buffer_minutes)
    return BookedInterval(resource_id=booking.resource_id, start=start, end=end)


class ConflictStore:
    """
    Per-resource index of booked intervals (post-job buffer included).

    Built from a snapshot of bookings for a single request and never mutated
    afterwards, so lookups are safe from any thread.
    """

    def __init__(self, intervals: Iterable[BookedInterval] = ()):
        index: Dict[str, List[BookedInterval]] = defaultdict(list)
        for interval in intervals:
            index[interval.resource_id].append(interval)
        for items in index.values():
            items.sort(key=lambda i: i.start)
        self._index = dict(index)

    @classmethod
    def from_bookings(cls, bookings: Iterable[Booking], buffer_minutes: int) -> "ConflictStore":
        return cls(to_booked_interval(b, buffer_minutes) for b in bookings)

    def intervals_for(self, resource_id: str) -> List[BookedInterval]:
        return list(self._index.get(resource_id, ()))

    def is_free(self, resource_id: str, start: datetime, end: datetime) -> bool:
        for booked in self._index.get(resource_id, ()):
            if booked.start >= end:
                break
            if intervals_overlap(booked.start, booked.end, start, end):
                return False
        return True

    def __len__(self) -> int:
        return sum(len(v) for v in self._index.values())
