"""
Example: Confirming a booking and cascading it through crews

Runs entirely in memory: two crews, one existing booking, an availability
check for a new request and a decline that exhausts the crews free at that time.
"""

from datetime import datetime, timezone

from crewslot.config.settings import SchedulingConfig
from crewslot.engine.assignment import CascadingAssigner, InMemoryAssignmentStore
from crewslot.engine.availability import parse_availability
from crewslot.engine.confirmation import check_availability
from crewslot.engine.conflicts import ConflictStore
from crewslot.models.entities import AssignmentStatus, Booking, GeoPoint, Job, Resource
from crewslot.utils.pricing import TablePricing
from crewslot.utils.timeutils import parse_datetime_flexible

config = SchedulingConfig(timezone="America/Los_Angeles")

# 1. Crews with legacy and structured availability
crews = [
    Resource(
        id="crew-a",
        name="Crew A",
        schedule=parse_availability("Mon-Fri 9am-5pm", config.timezone),
        home=GeoPoint(34.0522, -118.2437),
    ),
    Resource(
        id="crew-b",
        name="Crew B",
        schedule=parse_availability(
            {"tz": "America/Los_Angeles", "rules": [{"days": ["MO", "WE", "FR"], "start": "08:00", "end": "18:00"}]},
            config.timezone,
        ),
        home=GeoPoint(34.1478, -118.1445),
    ),
]

# 2. Crew A already has a morning job on Monday 2025-03-03
now = datetime(2025, 3, 1, 16, 0, tzinfo=timezone.utc)
monday_9am = parse_datetime_flexible("2025-03-03 09:00", config.timezone)
conflicts = ConflictStore.from_bookings([Booking("crew-a", monday_9am, 180)], config.buffer_minutes)

# 3. Check a customer's requested time
result = check_availability(
    {"bedrooms": 2, "bathrooms": 1, "sqft": 950, "requested_datetime": "March 3rd 10am"},
    crews,
    conflicts,
    TablePricing(),
    config,
    now,
)
print(f"Available: {result.is_available} at {result.confirmed_instant}")
print(f"Alternatives: {result.alternatives}")

# 4. Offer the job; Crew A is still busy, so Crew B gets it. A decline exhausts the pool
store = InMemoryAssignmentStore()
assigner = CascadingAssigner(store, config)
job = Job(
    id="job-42",
    start=parse_datetime_flexible(result.confirmed_instant, config.timezone),
    duration_minutes=result.duration_minutes,
    location=GeoPoint(34.0407, -118.2468),
)

first = assigner.assign_next(job, crews, conflicts=conflicts)
print(f"Offered to {first.resource.name} ({first.distance:.1f} mi)")

store.set_status(first.assignment.id, AssignmentStatus.DECLINED)
declined = {a.resource_id for a in store.for_job(job.id)}
final = assigner.assign_next(job, crews, declined, conflicts)
print(f"After decline: {final.status}")  # exhausted -> escalate to the owner
