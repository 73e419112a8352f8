import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import insert, literal, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crewslot.config.settings import SchedulingConfig
from crewslot.engine.assignment import check_transition
from crewslot.engine.availability import parse_availability
from crewslot.engine.conflicts import ConflictStore
from crewslot.models.entities import (
    ACTIVE_STATUSES,
    Assignment,
    AssignmentStatus,
    BookedInterval,
    GeoPoint,
    Job,
    JobStatus,
    Resource,
)
from crewslot.models.errors import NotFoundError, ResourceConflictError, StorageError
from crewslot.storage.database import AssignmentModel, JobModel, ResourceModel
from crewslot.utils.timeutils import parse_datetime_flexible

logger = logging.getLogger(__name__)


def to_utc_naive(instant: datetime) -> datetime:
    return instant.astimezone(timezone.utc).replace(tzinfo=None)


def from_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class ResourceRepository:
    def __init__(self, db: Session, config: SchedulingConfig):
        self.db = db
        self.config = config

    def get_by_id(self, resource_id: str) -> Optional[Resource]:
        model = self.db.query(ResourceModel).filter(ResourceModel.id == resource_id).first()
        if not model:
            return None
        return self._model_to_resource(model)

    def list_active(self) -> List[Resource]:
        models = (
            self.db.query(ResourceModel)
            .filter(ResourceModel.active.is_(True))
            .order_by(ResourceModel.created_at, ResourceModel.id)
            .all()
        )
        return [self._model_to_resource(m) for m in models]

    def _model_to_resource(self, model: ResourceModel) -> Resource:
        home = None
        if model.home_lat is not None and model.home_lng is not None:
            home = GeoPoint(model.home_lat, model.home_lng)
        return Resource(
            id=model.id,
            name=model.name,
            schedule=parse_availability(model.availability, self.config.timezone),
            home=home,
            active=bool(model.active),
        )


class JobRepository:
    def __init__(self, db: Session, config: SchedulingConfig):
        self.db = db
        self.config = config

    def get_by_id(self, job_id: str) -> Optional[Job]:
        model = self.db.query(JobModel).filter(JobModel.id == job_id).first()
        if not model:
            return None
        return self.model_to_job(model)

    def job_start(self, model: JobModel) -> Optional[datetime]:
        if not model.date:
            return None
        raw = f"{model.date} {model.scheduled_at}" if model.scheduled_at else model.date
        return parse_datetime_flexible(raw, self.config.timezone, self.config.default_hour)

    def model_to_job(self, model: JobModel) -> Job:
        location = None
        if model.lat is not None and model.lng is not None:
            location = GeoPoint(model.lat, model.lng)
        return Job(
            id=model.id,
            start=self.job_start(model),
            duration_minutes=int(round((model.hours or 0) * 60)),
            location=location,
            status=JobStatus(model.status),
            address=model.address,
        )


class BookingRepository:
    """Derives booked intervals from jobs with an active assignment."""

    def __init__(self, db: Session, config: SchedulingConfig):
        self.db = db
        self.config = config
        self.jobs = JobRepository(db, config)

    def active_assignment_rows(self, start: datetime, end: Optional[datetime] = None):
        """(resource_id, JobModel) for active assignments whose claimed window reaches into [start, end)."""
        query = (
            self.db.query(AssignmentModel.resource_id, JobModel)
            .join(JobModel, JobModel.id == AssignmentModel.job_id)
            .filter(AssignmentModel.status.in_([s.value for s in ACTIVE_STATUSES]))
            .filter(JobModel.status == JobStatus.SCHEDULED.value)
            .filter(AssignmentModel.end_at > to_utc_naive(start))
        )
        if end is not None:
            query = query.filter(AssignmentModel.start_at < to_utc_naive(end))
        return query.all()

    def booked_intervals(self, start: datetime, end: Optional[datetime] = None) -> List[BookedInterval]:
        intervals = []
        for resource_id, job_model in self.active_assignment_rows(start, end):
            if job_model.hours is None:
                continue
            job_start = self.jobs.job_start(job_model)
            if job_start is None:
                logger.debug(f"Skipping job {job_model.id} with unparseable date {job_model.date!r}")
                continue
            job_end = job_start + timedelta(minutes=job_model.hours * 60 + self.config.buffer_minutes)
            if job_end <= start or (end is not None and job_start >= end):
                continue
            intervals.append(BookedInterval(resource_id=resource_id, start=job_start, end=job_end))
        return intervals

    def conflict_store(self, start: datetime, end: Optional[datetime] = None) -> ConflictStore:
        return ConflictStore(self.booked_intervals(start, end))


class AssignmentRepository:
    """SQL implementation of the engine's ``AssignmentStore``."""

    def __init__(self, db: Session):
        self.db = db

    def claim(self, job_id: str, resource_id: str, start: datetime, end: datetime) -> Assignment:
        start_utc, end_utc = to_utc_naive(start), to_utc_naive(end)
        assignment_id = str(uuid.uuid4())
        now = datetime.utcnow()

        overlapping = select(AssignmentModel.id).where(
            AssignmentModel.resource_id == resource_id,
            AssignmentModel.status.in_([s.value for s in ACTIVE_STATUSES]),
            AssignmentModel.start_at < end_utc,
            AssignmentModel.end_at > start_utc,
        ).correlate(None)
        row = select(
            literal(assignment_id),
            literal(job_id),
            literal(resource_id),
            literal(AssignmentStatus.PENDING.value),
            literal(start_utc),
            literal(end_utc),
            literal(now),
            literal(now),
        ).where(~overlapping.exists())
        stmt = insert(AssignmentModel).from_select(
            ["id", "job_id", "resource_id", "status", "start_at", "end_at", "created_at", "updated_at"], row
        )

        try:
            # Serialise claims per resource where the backend supports row locks
            self.db.query(ResourceModel.id).filter(ResourceModel.id == resource_id).with_for_update().first()
            result = self.db.execute(stmt)
            if result.rowcount == 0:
                self.db.rollback()
                raise ResourceConflictError(resource_id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not create assignment for resource {resource_id}: {exc}") from exc

        return self.get(assignment_id)

    def get(self, assignment_id: str) -> Optional[Assignment]:
        model = self.db.query(AssignmentModel).filter(AssignmentModel.id == assignment_id).first()
        if not model:
            return None
        return self._model_to_assignment(model)

    def for_job(self, job_id: str) -> List[Assignment]:
        models = (
            self.db.query(AssignmentModel)
            .filter(AssignmentModel.job_id == job_id)
            .order_by(AssignmentModel.created_at, AssignmentModel.id)
            .all()
        )
        return [self._model_to_assignment(m) for m in models]

    def set_status(self, assignment_id: str, status: AssignmentStatus) -> Assignment:
        model = self.db.query(AssignmentModel).filter(AssignmentModel.id == assignment_id).first()
        if not model:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        check_transition(AssignmentStatus(model.status), status)
        model.status = status.value
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not update assignment {assignment_id}: {exc}") from exc
        return self._model_to_assignment(model)

    @staticmethod
    def _model_to_assignment(model: AssignmentModel) -> Assignment:
        return Assignment(
            id=model.id,
            job_id=model.job_id,
            resource_id=model.resource_id,
            status=AssignmentStatus(model.status),
            start=from_utc_naive(model.start_at),
            end=from_utc_naive(model.end_at),
            created_at=from_utc_naive(model.created_at),
        )
