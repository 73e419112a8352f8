"""
Availability confirmation for incoming booking requests.

Turns a loosely shaped request payload (voice agent / web form webhook) into
an ``AvailabilityResult``: is the requested time bookable, and which two
alternatives can be offered.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from crewslot.config.settings import SchedulingConfig
from crewslot.engine.conflicts import ConflictStore
from crewslot.engine.feasibility import any_feasible
from crewslot.engine.slot_search import candidate_end, earliest_start, find_slots
from crewslot.models.entities import JobProfile, Resource
from crewslot.models.outcomes import AvailabilityError, AvailabilityResult
from crewslot.utils.pricing import PricingLookup
from crewslot.utils.timeutils import parse_datetime_flexible, to_iso

logger = logging.getLogger(__name__)

BEDROOM_KEYS = ["bedrooms", "Bedrooms", "bed", "beds", "bedroom"]
BATHROOM_KEYS = ["bathrooms", "Bathrooms", "bath", "baths", "bathroom"]
SQFT_KEYS = ["sqft", "square_footage", "squareFootage", "sq_ft", "Square Footage", "squarefootage"]
SERVICE_KEYS = ["service_type", "serviceType", "type", "cleaning_type"]
REQUESTED_TIME_KEYS = [
    "requested_datetime", "requestedDatetime", "requested_start", "requestedStart",
    "start", "start_time", "startTime", "datetime", "date_time", "dateTime",
    "date", "time", "appointment_time", "appointmentTime", "booking_time", "scheduledTime",
]


def pick_first(payload: Mapping[str, Any], keys: Iterable[str]) -> Any:
    """First value under ``keys`` that is not None or an empty string."""
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def check_availability(
    payload: Mapping[str, Any],
    resources: Sequence[Resource],
    conflicts: ConflictStore,
    pricing: PricingLookup,
    config: SchedulingConfig,
    now: Optional[datetime] = None,
) -> AvailabilityResult:
    """
    Confirm a requested time and propose alternatives.

    Checks run in order and stop at the first error:
    missing fields -> pricing match -> resources configured.
    Alternatives are always computed, even when the requested time is free.
    """
    now = now or datetime.now(timezone.utc)

    bedrooms = to_number(pick_first(payload, BEDROOM_KEYS))
    bathrooms = to_number(pick_first(payload, BATHROOM_KEYS))
    sqft = to_number(pick_first(payload, SQFT_KEYS))
    service_type = str(pick_first(payload, SERVICE_KEYS) or "Standard")
    requested = parse_datetime_flexible(
        pick_first(payload, REQUESTED_TIME_KEYS), config.timezone, config.default_hour, now
    )

    missing: List[str] = []
    if bedrooms is None:
        missing.append("bedrooms")
    if bathrooms is None:
        missing.append("bathrooms")
    if sqft is None:
        missing.append("sqft")
    if requested is None:
        missing.append("requested_datetime")
    if missing:
        logger.info(f"Availability check missing fields: {missing}")
        return AvailabilityResult(is_available=False, error=AvailabilityError.MISSING_FIELDS, missing_fields=missing)

    match = pricing.lookup(JobProfile(bedrooms, bathrooms, sqft, service_type))
    if match is None:
        logger.info(f"No pricing match for {service_type} {bedrooms}bd/{bathrooms}ba/{sqft}sqft")
        return AvailabilityResult(is_available=False, error=AvailabilityError.NO_PRICING_MATCH)

    duration = match.duration_minutes
    active = [r for r in resources if r.active]
    logger.info(f"Availability check: resources={len(active)}, bookings={len(conflicts)}, duration={duration}m")
    if not active:
        return AvailabilityResult(
            is_available=False, duration_minutes=duration, error=AvailabilityError.NO_RESOURCES_CONFIGURED
        )

    start = earliest_start(requested, config, now)
    alternatives = [
        to_iso(slot, config.timezone)
        for slot in find_slots(start, config.alternative_count, duration, active, conflicts, config, now)
    ]

    if any_feasible(active, start, candidate_end(start, duration, config), conflicts):
        return AvailabilityResult(
            is_available=True,
            confirmed_instant=to_iso(start, config.timezone),
            alternatives=alternatives,
            duration_minutes=duration,
        )

    return AvailabilityResult(
        is_available=False,
        alternatives=alternatives,
        duration_minutes=duration,
        error=None if alternatives else AvailabilityError.NO_AVAILABILITY_FOUND,
    )
