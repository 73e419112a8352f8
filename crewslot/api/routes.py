from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from crewslot.config.settings import SchedulingConfig, get_settings
from crewslot.engine.assignment import CascadingAssigner
from crewslot.engine.confirmation import check_availability
from crewslot.engine.dispatch import AssignmentDispatcher, LoggingNotifier, Notifier
from crewslot.engine.slot_search import find_slots
from crewslot.models.entities import Assignment, Resource
from crewslot.models.errors import InvalidTransitionError, NotFoundError, StorageError
from crewslot.models.outcomes import Assigned, AssignmentFailure, AssignmentOutcome, Exhausted
from crewslot.storage.cache import EscalationCache
from crewslot.storage.database import get_db
from crewslot.storage.repositories import (
    AssignmentRepository,
    BookingRepository,
    JobRepository,
    ResourceRepository,
)
from crewslot.utils.pricing import PricingLookup, TablePricing
from crewslot.utils.timeutils import parse_datetime_flexible, to_iso

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)

_escalations: Optional[EscalationCache] = None


def get_config() -> SchedulingConfig:
    return settings.scheduling_config()


def get_escalations() -> EscalationCache:
    global _escalations
    if _escalations is None:
        _escalations = EscalationCache()
    return _escalations


def get_pricing() -> PricingLookup:
    return TablePricing()


def get_notifier() -> Notifier:
    return LoggingNotifier()


def get_dispatcher(
    db: Session = Depends(get_db),
    config: SchedulingConfig = Depends(get_config),
    escalations: EscalationCache = Depends(get_escalations),
    notifier: Notifier = Depends(get_notifier),
) -> AssignmentDispatcher:
    store = AssignmentRepository(db)
    return AssignmentDispatcher(
        assigner=CascadingAssigner(store, config),
        store=store,
        jobs=JobRepository(db, config),
        resources=ResourceRepository(db, config),
        escalations=escalations,
        notifier=notifier,
        bookings=BookingRepository(db, config),
    )


class AvailabilityResponse(BaseModel):
    is_available: bool
    confirmed_datetime: Optional[str] = None
    alternatives: List[str] = []
    duration_minutes: Optional[int] = None
    error: Optional[str] = None
    missing_fields: List[str] = []


class SlotSearchRequest(BaseModel):
    requested_start: str
    duration_minutes: int
    count: int = Field(2, ge=1, le=20)

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, v: int):
        """Jobs are single-day: 1 minute to 24 hours."""
        if v < 1 or v > 1440:
            raise ValueError("duration must be between 1 and 1440 minutes")
        return v


class SlotSearchResponse(BaseModel):
    slots: List[str]
    duration_minutes: int


class ResourceDTO(BaseModel):
    id: str
    name: str
    distance_miles: Optional[float] = None

    @classmethod
    def from_domain(cls, r: Resource, distance: Optional[float] = None) -> "ResourceDTO":
        if distance is not None and distance == float("inf"):
            distance = None
        return cls(id=r.id, name=r.name, distance_miles=distance)


class AssignmentDTO(BaseModel):
    id: str
    job_id: str
    resource_id: str
    status: str
    start: str
    end: str

    @classmethod
    def from_domain(cls, a: Assignment, tz: str) -> "AssignmentDTO":
        return cls(
            id=a.id,
            job_id=a.job_id,
            resource_id=a.resource_id,
            status=a.status.value,
            start=to_iso(a.start, tz),
            end=to_iso(a.end, tz),
        )


class AssignmentOutcomeResponse(BaseModel):
    status: str
    job_id: str
    exhausted: bool = False
    resource: Optional[ResourceDTO] = None
    assignment: Optional[AssignmentDTO] = None
    reason: Optional[str] = None


class OfferAnswerResponse(BaseModel):
    assignment: AssignmentDTO
    next: Optional[AssignmentOutcomeResponse] = None


class AssignmentStatsResponse(BaseModel):
    total_attempts: int
    pending: int
    accepted: int
    declined: int
    cancelled: int
    resources_contacted: List[str]


def outcome_to_response(outcome: AssignmentOutcome, tz: str) -> AssignmentOutcomeResponse:
    """Map an engine outcome to the API shape; failures become HTTP errors."""
    if isinstance(outcome, Assigned):
        return AssignmentOutcomeResponse(
            status=outcome.status,
            job_id=outcome.assignment.job_id,
            resource=ResourceDTO.from_domain(outcome.resource, outcome.distance),
            assignment=AssignmentDTO.from_domain(outcome.assignment, tz),
        )
    if isinstance(outcome, Exhausted):
        return AssignmentOutcomeResponse(status=outcome.status, job_id=outcome.job_id, exhausted=True)
    if isinstance(outcome, AssignmentFailure):
        status_code = 503 if outcome.retryable else 422
        raise HTTPException(status_code=status_code, detail=outcome.reason)
    raise TypeError(f"Unknown assignment outcome {outcome!r}")


def raise_http(exc: Exception):
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, StorageError):
        raise HTTPException(status_code=503, detail=str(exc))
    raise exc


@router.post("/availability/check", response_model=AvailabilityResponse, summary="Confirm a requested booking time")
def availability_check(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    config: SchedulingConfig = Depends(get_config),
    pricing: PricingLookup = Depends(get_pricing),
):
    """
    Check whether any crew can take a job at the requested time.

    **Payload** (flexible keys, first non-empty wins):
    - `bedrooms`, `bathrooms`, `sqft`: job size used for the pricing lookup
    - `service_type`: "Standard" or anything containing "deep"
    - `requested_datetime`: e.g. "2025-03-04 14:30", "3/4/2025 2:30pm", "March 4th 2pm"

    **Errors** (returned in the `error` field, HTTP 200):
    - `MISSING_FIELDS`: see `missing_fields`
    - `NO_PRICING_MATCH`: no price table for the profile; needs a custom quote
    - `NO_RESOURCES_CONFIGURED`: no active crews exist
    - `NO_AVAILABILITY_FOUND`: requested time and the whole search horizon are booked
    """
    now = datetime.now(timezone.utc)
    resources = ResourceRepository(db, config).list_active()
    conflicts = BookingRepository(db, config).conflict_store(now)

    result = check_availability(payload, resources, conflicts, pricing, config, now)
    logger.info(f"Availability check: available={result.is_available}, error={result.error}")
    return AvailabilityResponse(
        is_available=result.is_available,
        confirmed_datetime=result.confirmed_instant,
        alternatives=result.alternatives,
        duration_minutes=result.duration_minutes,
        error=result.error.value if result.error else None,
        missing_fields=result.missing_fields,
    )


@router.post("/slots/search", response_model=SlotSearchResponse, summary="Find open start times")
def slot_search(
    req: SlotSearchRequest,
    db: Session = Depends(get_db),
    config: SchedulingConfig = Depends(get_config),
):
    """Earliest-first search; a slot is returned when any active crew can take it."""
    now = datetime.now(timezone.utc)
    requested = parse_datetime_flexible(req.requested_start, config.timezone, config.default_hour, now)
    if requested is None:
        raise HTTPException(status_code=400, detail=f"Unparseable requested_start: {req.requested_start!r}")

    resources = ResourceRepository(db, config).list_active()
    if not resources:
        raise HTTPException(status_code=422, detail="No resources configured")

    conflicts = BookingRepository(db, config).conflict_store(now)
    slots = find_slots(requested, req.count, req.duration_minutes, resources, conflicts, config, now)
    return {"slots": [to_iso(s, config.timezone) for s in slots], "duration_minutes": req.duration_minutes}


@router.post("/jobs/{job_id}/assign", response_model=AssignmentOutcomeResponse, summary="Offer a job to the next crew")
def assign_job(
    job_id: str,
    dispatcher: AssignmentDispatcher = Depends(get_dispatcher),
    config: SchedulingConfig = Depends(get_config),
):
    """
    Offer the job to the closest eligible crew that has not been asked yet.

    Returns `status="exhausted"` (HTTP 200) when nobody is left; the owner is
    alerted once per job. Storage failures return 503 and may be retried.
    """
    try:
        outcome = dispatcher.trigger(job_id)
    except (NotFoundError, InvalidTransitionError, StorageError) as exc:
        raise_http(exc)
    return outcome_to_response(outcome, config.timezone)


@router.post("/assignments/{assignment_id}/accept", response_model=OfferAnswerResponse, summary="Accept an offer")
def accept_offer(
    assignment_id: str,
    dispatcher: AssignmentDispatcher = Depends(get_dispatcher),
    config: SchedulingConfig = Depends(get_config),
):
    try:
        answer = dispatcher.respond(assignment_id, accept=True)
    except (NotFoundError, InvalidTransitionError, StorageError) as exc:
        raise_http(exc)
    return OfferAnswerResponse(assignment=AssignmentDTO.from_domain(answer.assignment, config.timezone))


@router.post("/assignments/{assignment_id}/decline", response_model=OfferAnswerResponse, summary="Decline an offer")
def decline_offer(
    assignment_id: str,
    dispatcher: AssignmentDispatcher = Depends(get_dispatcher),
    config: SchedulingConfig = Depends(get_config),
):
    """
    Decline and immediately cascade the job to the next crew.

    Repeating the decline of an already declined offer re-runs the cascade,
    so a 503 from a failed cascade can be retried with the same request.
    `next` is null when the job no longer needs an offer (e.g. cancelled).
    """
    try:
        answer = dispatcher.respond(assignment_id, accept=False)
    except (NotFoundError, InvalidTransitionError, StorageError) as exc:
        raise_http(exc)
    next_outcome = None
    if answer.next_outcome is not None:
        next_outcome = outcome_to_response(answer.next_outcome, config.timezone)
    return OfferAnswerResponse(
        assignment=AssignmentDTO.from_domain(answer.assignment, config.timezone),
        next=next_outcome,
    )


@router.post("/assignments/{assignment_id}/confirm", response_model=AssignmentDTO, summary="Confirm an accepted offer")
def confirm_offer(
    assignment_id: str,
    dispatcher: AssignmentDispatcher = Depends(get_dispatcher),
    config: SchedulingConfig = Depends(get_config),
):
    try:
        assignment = dispatcher.confirm(assignment_id)
    except (NotFoundError, InvalidTransitionError, StorageError) as exc:
        raise_http(exc)
    return AssignmentDTO.from_domain(assignment, config.timezone)


@router.get("/jobs/{job_id}/assignments/stats", response_model=AssignmentStatsResponse, summary="Assignment history summary")
def assignment_stats(job_id: str, dispatcher: AssignmentDispatcher = Depends(get_dispatcher)):
    try:
        stats = dispatcher.stats(job_id)
    except NotFoundError as exc:
        raise_http(exc)
    return AssignmentStatsResponse(
        total_attempts=stats.total_attempts,
        pending=stats.pending,
        accepted=stats.accepted,
        declined=stats.declined,
        cancelled=stats.cancelled,
        resources_contacted=stats.resources_contacted,
    )
