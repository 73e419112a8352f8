"""
Cascading Assignment

Offers a job to the best eligible resource. Per job the states are:

    searching -> offered(resource) -> accepted | declined
    declined  -> offered(next resource)   (caller re-invokes with a bigger exclusion set)
    searching -> exhausted                (no eligible resource; needs escalation)

``assign_next`` performs exactly one offer, to a resource whose schedule and
bookings allow the job's interval. The only write is
``AssignmentStore.claim``, which must be atomic: it refuses to create an
active assignment when the resource already holds an overlapping active one.
That makes the claim itself the serialization point between concurrent
requests; no lock is taken here.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from crewslot.config.settings import SchedulingConfig
from crewslot.engine.conflicts import ConflictStore, intervals_overlap
from crewslot.engine.feasibility import feasible_resources
from crewslot.engine.ranking import rank_by_distance
from crewslot.engine.slot_search import candidate_end
from crewslot.models.entities import (
    Assignment,
    AssignmentCandidate,
    AssignmentStatus,
    Job,
    Resource,
)
from crewslot.models.errors import InvalidTransitionError, NotFoundError, ResourceConflictError, StorageError
from crewslot.models.outcomes import Assigned, AssignmentFailure, AssignmentOutcome, Exhausted

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AssignmentStatus.PENDING: {AssignmentStatus.ACCEPTED, AssignmentStatus.DECLINED, AssignmentStatus.CANCELLED},
    AssignmentStatus.ACCEPTED: {AssignmentStatus.CONFIRMED, AssignmentStatus.CANCELLED},
    AssignmentStatus.CONFIRMED: {AssignmentStatus.CANCELLED},
    AssignmentStatus.DECLINED: set(),
    AssignmentStatus.CANCELLED: set(),
}


def check_transition(current: AssignmentStatus, new: AssignmentStatus) -> None:
    if new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot move assignment from {current.value} to {new.value}")


def excluded_resource_ids(history: Iterable[Assignment]) -> set:
    """Resources already offered this job; cancelled offers may be re-offered."""
    return {a.resource_id for a in history if a.status != AssignmentStatus.CANCELLED}


class AssignmentStore(Protocol):
    def claim(self, job_id: str, resource_id: str, start: datetime, end: datetime) -> Assignment:
        """Atomically insert a pending assignment or raise ResourceConflictError / StorageError."""
        ...

    def get(self, assignment_id: str) -> Optional[Assignment]:
        ...

    def for_job(self, job_id: str) -> List[Assignment]:
        ...

    def set_status(self, assignment_id: str, status: AssignmentStatus) -> Assignment:
        ...


class InMemoryAssignmentStore:
    """Thread-safe assignment store used by tests and single-process setups."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[str, Assignment] = {}

    def claim(self, job_id: str, resource_id: str, start: datetime, end: datetime) -> Assignment:
        with self._lock:
            for row in self._rows.values():
                if (
                    row.resource_id == resource_id
                    and row.status.is_active
                    and intervals_overlap(row.start, row.end, start, end)
                ):
                    raise ResourceConflictError(resource_id)
            assignment = Assignment(
                id=str(uuid.uuid4()),
                job_id=job_id,
                resource_id=resource_id,
                status=AssignmentStatus.PENDING,
                start=start,
                end=end,
                created_at=datetime.now(timezone.utc),
            )
            self._rows[assignment.id] = assignment
            return assignment

    def get(self, assignment_id: str) -> Optional[Assignment]:
        return self._rows.get(assignment_id)

    def for_job(self, job_id: str) -> List[Assignment]:
        rows = [a for a in self._rows.values() if a.job_id == job_id]
        return sorted(rows, key=lambda a: a.created_at)

    def set_status(self, assignment_id: str, status: AssignmentStatus) -> Assignment:
        with self._lock:
            current = self._rows.get(assignment_id)
            if current is None:
                raise NotFoundError(f"Assignment {assignment_id} not found")
            check_transition(current.status, status)
            updated = Assignment(
                id=current.id,
                job_id=current.job_id,
                resource_id=current.resource_id,
                status=status,
                start=current.start,
                end=current.end,
                created_at=current.created_at,
            )
            self._rows[assignment_id] = updated
            return updated


class CascadingAssigner:
    def __init__(self, store: AssignmentStore, config: SchedulingConfig):
        self.store = store
        self.config = config

    def rank(
        self,
        job: Job,
        resources: Sequence[Resource],
        excluded: Iterable[str],
        conflicts: Optional[ConflictStore] = None,
    ) -> List[AssignmentCandidate]:
        """Eligible resources in offer order: active, not excluded and feasible for the job's interval."""
        excluded = set(excluded)
        eligible = [r for r in resources if r.active and r.id not in excluded]
        if job.start is not None:
            end = candidate_end(job.start, job.duration_minutes, self.config)
            conflicts = conflicts if conflicts is not None else ConflictStore()
            eligible = feasible_resources(eligible, job.start, end, conflicts)
        if job.location is None:
            return [AssignmentCandidate(r) for r in eligible]
        return rank_by_distance(eligible, job.location, self.config.earth_radius_miles)

    def assign_next(
        self,
        job: Job,
        resources: Sequence[Resource],
        excluded_resource_ids: Iterable[str] = (),
        conflicts: Optional[ConflictStore] = None,
    ) -> AssignmentOutcome:
        """
        Offer ``job`` to the best eligible resource.

        Args:
            job: Job to place; needs a start instant
            resources: Resource snapshot (inactive ones are skipped)
            excluded_resource_ids: Resources that must not be offered again;
                the caller folds the job's assignment history into this set
            conflicts: Booked intervals snapshot; resources whose schedule or
                bookings rule out the job's interval are not offered

        Returns:
            ``Assigned`` with the new pending assignment, ``Exhausted`` when
            no eligible resource can take the job, or ``AssignmentFailure``
            when storage failed (retryable)
        """
        if job.start is None:
            logger.error(f"Job {job.id} has no start time")
            return AssignmentFailure(job_id=job.id, reason="job has no scheduled start", retryable=False)

        candidates = self.rank(job, resources, excluded_resource_ids, conflicts)
        if not candidates:
            logger.info(f"No more eligible resources for job {job.id}")
            return Exhausted(job_id=job.id)

        end = candidate_end(job.start, job.duration_minutes, self.config)
        for candidate in candidates:
            try:
                assignment = self.store.claim(job.id, candidate.resource.id, job.start, end)
            except ResourceConflictError:
                logger.info(f"Resource {candidate.resource.id} already busy for job {job.id}, trying next")
                continue
            except StorageError as exc:
                logger.error(f"Failed to create assignment for resource {candidate.resource.id}: {exc}")
                return AssignmentFailure(job_id=job.id, reason=str(exc))

            if candidate.has_location:
                logger.info(
                    f"Assigned {candidate.resource.name} ({candidate.resource.id}) to job {job.id} "
                    f"(distance: {candidate.distance:.1f} mi)"
                )
            else:
                logger.info(f"Assigned {candidate.resource.name} ({candidate.resource.id}) to job {job.id}")
            return Assigned(resource=candidate.resource, assignment=assignment, distance=candidate.distance)

        logger.info(f"All {len(candidates)} eligible resources are busy for job {job.id}")
        return Exhausted(job_id=job.id)
