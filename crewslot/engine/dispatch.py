import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import redis

from crewslot.engine.assignment import AssignmentStore, CascadingAssigner, excluded_resource_ids
from crewslot.engine.conflicts import ConflictStore
from crewslot.engine.slot_search import candidate_end
from crewslot.models.entities import Assignment, AssignmentStatus, Job, JobStatus, Resource
from crewslot.models.errors import InvalidTransitionError, NotFoundError
from crewslot.models.outcomes import Assigned, AssignmentOutcome, Exhausted

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def offer(self, job: Job, resource: Resource, assignment: Assignment) -> None:
        ...

    def escalate(self, job: Job, reason: str) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records offers and escalations in the log only."""

    def offer(self, job: Job, resource: Resource, assignment: Assignment) -> None:
        logger.info(f"Offer {assignment.id}: job {job.id} -> {resource.name} ({resource.id})")

    def escalate(self, job: Job, reason: str) -> None:
        logger.warning(f"OWNER_ACTION_REQUIRED for job {job.id}: {reason}")


@dataclass
class AssignmentStats:
    total_attempts: int = 0
    pending: int = 0
    accepted: int = 0
    declined: int = 0
    cancelled: int = 0
    resources_contacted: List[str] = field(default_factory=list)


@dataclass
class OfferResponse:
    assignment: Assignment
    next_outcome: Optional[AssignmentOutcome] = None


class AssignmentDispatcher:
    """
    Drives cascading assignment for stored jobs.

    Folds the job's assignment history into the exclusion set, escalates
    exhaustion once per job and re-offers on decline. A job has at most one
    open offer: a pending offer must be answered before the next one is made,
    and only one offer per job can be accepted.
    """

    def __init__(
        self,
        assigner: CascadingAssigner,
        store: AssignmentStore,
        jobs,
        resources,
        escalations,
        notifier: Notifier = None,
        bookings=None,
    ):
        self.assigner = assigner
        self.store = store
        self.jobs = jobs
        self.resources = resources
        self.escalations = escalations
        self.notifier = notifier or LoggingNotifier()
        self.bookings = bookings

    def _load_job(self, job_id: str) -> Job:
        job = self.jobs.get_by_id(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _cascade_blocker(job: Job, history: List[Assignment]) -> Optional[str]:
        """Why no new offer may be made for ``job`` right now, or None."""
        if job.status != JobStatus.SCHEDULED:
            return f"Job {job.id} is {job.status.value}, cannot assign a resource"
        if any(a.status in (AssignmentStatus.ACCEPTED, AssignmentStatus.CONFIRMED) for a in history):
            return f"Job {job.id} already has an accepted assignment"
        if any(a.status == AssignmentStatus.PENDING for a in history):
            return f"Job {job.id} already has a pending offer"
        return None

    def _conflicts(self, job: Job) -> ConflictStore:
        if self.bookings is None or job.start is None:
            return ConflictStore()
        end = candidate_end(job.start, job.duration_minutes, self.assigner.config)
        return self.bookings.conflict_store(job.start, end)

    def trigger(self, job_id: str) -> AssignmentOutcome:
        job = self._load_job(job_id)
        history = self.store.for_job(job_id)
        blocker = self._cascade_blocker(job, history)
        if blocker:
            raise InvalidTransitionError(blocker)
        return self._offer(job, history)

    def _offer(self, job: Job, history: List[Assignment]) -> AssignmentOutcome:
        outcome = self.assigner.assign_next(
            job, self.resources.list_active(), excluded_resource_ids(history), self._conflicts(job)
        )
        if isinstance(outcome, Exhausted):
            self._escalate(job, "no more eligible resources")
        elif isinstance(outcome, Assigned):
            self._notify(job, outcome)
        return outcome

    def respond(self, assignment_id: str, accept: bool) -> OfferResponse:
        """
        Record a resource's answer; a decline cascades to the next candidate.

        Declining an already declined offer only re-runs the cascade, so a
        decline whose cascade failed can be retried.
        """
        assignment = self.store.get(assignment_id)
        if assignment is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")

        if accept:
            siblings = [a for a in self.store.for_job(assignment.job_id) if a.id != assignment_id]
            if any(a.status in (AssignmentStatus.ACCEPTED, AssignmentStatus.CONFIRMED) for a in siblings):
                raise InvalidTransitionError(f"Job {assignment.job_id} was already accepted by another resource")
            updated = self.store.set_status(assignment_id, AssignmentStatus.ACCEPTED)
            logger.info(f"Assignment {assignment_id} for job {updated.job_id} accepted")
            return OfferResponse(assignment=updated)

        if assignment.status == AssignmentStatus.DECLINED:
            updated = assignment
            logger.info(f"Assignment {assignment_id} already declined, re-running cascade")
        else:
            updated = self.store.set_status(assignment_id, AssignmentStatus.DECLINED)
            logger.info(f"Assignment {assignment_id} for job {updated.job_id} declined")

        job = self._load_job(updated.job_id)
        history = self.store.for_job(job.id)
        blocker = self._cascade_blocker(job, history)
        if blocker:
            logger.info(f"Not cascading after decline: {blocker}")
            return OfferResponse(assignment=updated)
        logger.info(f"Cascading job {job.id} after decline by {updated.resource_id}")
        return OfferResponse(assignment=updated, next_outcome=self._offer(job, history))

    def confirm(self, assignment_id: str) -> Assignment:
        return self.store.set_status(assignment_id, AssignmentStatus.CONFIRMED)

    def stats(self, job_id: str) -> AssignmentStats:
        self._load_job(job_id)
        stats = AssignmentStats()
        for a in self.store.for_job(job_id):
            stats.total_attempts += 1
            stats.resources_contacted.append(a.resource_id)
            if a.status == AssignmentStatus.PENDING:
                stats.pending += 1
            elif a.status in (AssignmentStatus.ACCEPTED, AssignmentStatus.CONFIRMED):
                stats.accepted += 1
            elif a.status == AssignmentStatus.DECLINED:
                stats.declined += 1
            elif a.status == AssignmentStatus.CANCELLED:
                stats.cancelled += 1
        return stats

    def _escalate(self, job: Job, reason: str) -> None:
        try:
            first = self.escalations.mark_escalated(job.id)
        except redis.RedisError as exc:
            # alert even when the marker cannot be written
            logger.error(f"Could not record escalation for job {job.id}: {exc}")
            first = True
        if not first:
            logger.info(f"Job {job.id} already escalated, not alerting again")
            return
        self.notifier.escalate(job, reason)

    def _notify(self, job: Job, outcome: Assigned) -> None:
        try:
            self.notifier.offer(job, outcome.resource, outcome.assignment)
        except Exception:
            # notification failures leave the assignment in place
            logger.exception(f"Failed to notify {outcome.resource.name} about job {job.id}")
