import pytest
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta

from crewslot.engine.assignment import (
    CascadingAssigner,
    InMemoryAssignmentStore,
    check_transition,
    excluded_resource_ids,
)
from crewslot.engine.conflicts import ConflictStore
from crewslot.models.entities import (
    Assignment,
    AssignmentStatus,
    AvailabilitySchedule,
    BookedInterval,
    GeoPoint,
    Job,
    Resource,
)
from crewslot.models.errors import InvalidTransitionError, NotFoundError, ResourceConflictError, StorageError
from crewslot.models.outcomes import Assigned, AssignmentFailure, Exhausted


class BrokenStore(InMemoryAssignmentStore):
    def claim(self, job_id, resource_id, start, end):
        raise StorageError("database unavailable")


class TestAssignNext:
    """Single-offer cascading assignment."""

    def test_offers_nearest_crew(self, assigner, located_crews, downtown_job, store):
        outcome = assigner.assign_next(downtown_job, located_crews)

        assert isinstance(outcome, Assigned)
        assert outcome.status == "assigned"
        assert outcome.resource.id == "crew-near"
        assert outcome.assignment.status == AssignmentStatus.PENDING
        assert store.for_job(downtown_job.id) == [outcome.assignment]

    def test_assignment_interval_includes_buffer(self, assigner, located_crews, downtown_job, config):
        outcome = assigner.assign_next(downtown_job, located_crews)
        assert outcome.assignment.start == downtown_job.start
        assert outcome.assignment.end - outcome.assignment.start == timedelta(
            minutes=downtown_job.duration_minutes + config.buffer_minutes
        )

    def test_job_without_location_keeps_input_order(self, assigner, located_crews, downtown_job):
        job = replace(downtown_job, location=None)
        outcome = assigner.assign_next(job, located_crews)
        assert outcome.resource.id == "crew-far"
        assert outcome.distance == float("inf")

    def test_remaining_crew_picked_regardless_of_distance(self, assigner, located_crews, downtown_job):
        outcome = assigner.assign_next(downtown_job, located_crews, ["crew-near", "crew-mid"])
        assert isinstance(outcome, Assigned)
        assert outcome.resource.id == "crew-far"

    def test_all_excluded_is_exhausted(self, assigner, located_crews, downtown_job, store):
        outcome = assigner.assign_next(downtown_job, located_crews, [c.id for c in located_crews])

        assert isinstance(outcome, Exhausted)
        assert outcome.exhausted is True
        assert outcome.status == "exhausted"
        assert store.for_job(downtown_job.id) == []

    def test_inactive_crews_are_not_eligible(self, assigner, downtown_job, config):
        retired = Resource(id="old", name="Old", schedule=AvailabilitySchedule.always(config.timezone), active=False)
        assert isinstance(assigner.assign_next(downtown_job, [retired]), Exhausted)

    def test_no_resources_is_exhausted(self, assigner, downtown_job):
        assert isinstance(assigner.assign_next(downtown_job, []), Exhausted)

    def test_off_duty_crew_not_offered(self, assigner, weekday_crew, anytime_crew, at):
        # Saturday: the weekday crew is nearest but not working
        job = Job(id="job-sat", start=at(2025, 3, 8, 10), duration_minutes=120, location=GeoPoint(34.0522, -118.2437))
        outcome = assigner.assign_next(job, [weekday_crew, anytime_crew])

        assert isinstance(outcome, Assigned)
        assert outcome.resource.id == "crew-anytime"

    def test_only_off_duty_crews_is_exhausted(self, assigner, weekday_crew, at, store):
        job = Job(id="job-sat", start=at(2025, 3, 8, 10), duration_minutes=120)
        assert isinstance(assigner.assign_next(job, [weekday_crew]), Exhausted)
        assert store.for_job("job-sat") == []

    def test_booked_crew_not_offered(self, assigner, located_crews, downtown_job):
        conflicts = ConflictStore([
            BookedInterval("crew-near", downtown_job.start + timedelta(hours=1), downtown_job.start + timedelta(hours=4)),
        ])
        outcome = assigner.assign_next(downtown_job, located_crews, (), conflicts)
        assert outcome.resource.id == "crew-mid"

    def test_busy_crew_skipped(self, assigner, located_crews, downtown_job, store):
        store.claim("other-job", "crew-near", downtown_job.start - timedelta(hours=1), downtown_job.start + timedelta(hours=1))

        outcome = assigner.assign_next(downtown_job, located_crews)
        assert outcome.resource.id == "crew-mid"

    def test_every_crew_busy_is_exhausted(self, assigner, located_crews, downtown_job, store):
        for c in located_crews:
            store.claim("other-job", c.id, downtown_job.start, downtown_job.start + timedelta(hours=3))
        assert isinstance(assigner.assign_next(downtown_job, located_crews), Exhausted)

    def test_storage_error_is_retryable_failure(self, located_crews, downtown_job, config):
        outcome = CascadingAssigner(BrokenStore(), config).assign_next(downtown_job, located_crews)

        assert isinstance(outcome, AssignmentFailure)
        assert outcome.retryable is True
        assert outcome.status == "failure"
        assert "database unavailable" in outcome.reason

    def test_job_without_start_is_not_retryable(self, assigner, located_crews, downtown_job):
        outcome = assigner.assign_next(replace(downtown_job, start=None), located_crews)
        assert isinstance(outcome, AssignmentFailure)
        assert outcome.retryable is False


class TestExclusionHistory:
    def _assignment(self, resource_id, status, at):
        return Assignment(
            id=f"a-{resource_id}",
            job_id="job-1",
            resource_id=resource_id,
            status=status,
            start=at(2025, 3, 3, 10),
            end=at(2025, 3, 3, 12),
        )

    def test_cancelled_offers_can_be_repeated(self, at):
        history = [
            self._assignment("declined", AssignmentStatus.DECLINED, at),
            self._assignment("pending", AssignmentStatus.PENDING, at),
            self._assignment("cancelled", AssignmentStatus.CANCELLED, at),
        ]
        assert excluded_resource_ids(history) == {"declined", "pending"}


class TestInMemoryStore:
    def test_overlapping_claim_rejected(self, store, at):
        store.claim("job-1", "crew-1", at(2025, 3, 3, 10), at(2025, 3, 3, 12))
        with pytest.raises(ResourceConflictError) as exc_info:
            store.claim("job-2", "crew-1", at(2025, 3, 3, 11), at(2025, 3, 3, 13))
        assert exc_info.value.resource_id == "crew-1"

    def test_adjacent_claim_allowed(self, store, at):
        store.claim("job-1", "crew-1", at(2025, 3, 3, 10), at(2025, 3, 3, 12))
        assert store.claim("job-2", "crew-1", at(2025, 3, 3, 12), at(2025, 3, 3, 13)).resource_id == "crew-1"

    def test_declined_claim_frees_resource(self, store, at):
        first = store.claim("job-1", "crew-1", at(2025, 3, 3, 10), at(2025, 3, 3, 12))
        store.set_status(first.id, AssignmentStatus.DECLINED)
        assert store.claim("job-2", "crew-1", at(2025, 3, 3, 10), at(2025, 3, 3, 12)).status == AssignmentStatus.PENDING

    def test_concurrent_claims_single_winner(self, store, at):
        start, end = at(2025, 3, 3, 10), at(2025, 3, 3, 12)

        def attempt(i):
            try:
                store.claim(f"job-{i}", "crew-1", start, end)
                return True
            except ResourceConflictError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(20)))
        assert results.count(True) == 1

    def test_status_transitions(self, store, at):
        a = store.claim("job-1", "crew-1", at(2025, 3, 3, 10), at(2025, 3, 3, 12))
        assert store.set_status(a.id, AssignmentStatus.ACCEPTED).status == AssignmentStatus.ACCEPTED
        assert store.set_status(a.id, AssignmentStatus.CONFIRMED).status == AssignmentStatus.CONFIRMED
        with pytest.raises(InvalidTransitionError):
            store.set_status(a.id, AssignmentStatus.PENDING)

    def test_unknown_assignment(self, store):
        with pytest.raises(NotFoundError):
            store.set_status("missing", AssignmentStatus.ACCEPTED)

    @pytest.mark.parametrize("current,new", [
        (AssignmentStatus.DECLINED, AssignmentStatus.ACCEPTED),
        (AssignmentStatus.CANCELLED, AssignmentStatus.PENDING),
        (AssignmentStatus.PENDING, AssignmentStatus.CONFIRMED),
    ])
    def test_disallowed_transitions(self, current, new):
        with pytest.raises(InvalidTransitionError):
            check_transition(current, new)
