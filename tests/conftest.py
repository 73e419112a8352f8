import pytest
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crewslot.config.settings import SchedulingConfig
from crewslot.engine.assignment import CascadingAssigner, InMemoryAssignmentStore
from crewslot.engine.availability import parse_availability
from crewslot.models.entities import AvailabilitySchedule, GeoPoint, Job, Resource
from crewslot.storage.database import init_db

TZ = "America/Los_Angeles"


class FakeRedis:
    """Just enough of the redis client API for the escalation cache."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def exists(self, key):
        return 1 if key in self.store else 0

    def delete(self, key):
        self.store.pop(key, None)

    def ping(self):
        return True


@pytest.fixture
def at():
    """Build an aware datetime in the default scheduling timezone."""
    def _at(year, month, day, hour=0, minute=0, tz=TZ):
        return datetime(year, month, day, hour, minute, tzinfo=ZoneInfo(tz))
    return _at


@pytest.fixture
def config():
    return SchedulingConfig(timezone=TZ)


@pytest.fixture
def weekday_crew():
    """Mon-Fri 9am-5pm crew based downtown."""
    return Resource(
        id="crew-weekday",
        name="Weekday Crew",
        schedule=parse_availability("Mon-Fri 9am-5pm", TZ),
        home=GeoPoint(34.0522, -118.2437),
    )


@pytest.fixture
def anytime_crew():
    """Crew without a schedule or home coordinate."""
    return Resource(
        id="crew-anytime",
        name="Anytime Crew",
        schedule=AvailabilitySchedule.always(TZ),
    )


@pytest.fixture
def located_crews():
    """Three crews at increasing distance from downtown Los Angeles."""
    return [
        Resource(id="crew-far", name="Far Crew", schedule=AvailabilitySchedule.always(TZ), home=GeoPoint(37.7749, -122.4194)),
        Resource(id="crew-near", name="Near Crew", schedule=AvailabilitySchedule.always(TZ), home=GeoPoint(34.0622, -118.2437)),
        Resource(id="crew-mid", name="Mid Crew", schedule=AvailabilitySchedule.always(TZ), home=GeoPoint(34.4208, -119.6982)),
    ]


@pytest.fixture
def downtown_job(at):
    """Two hour job in downtown Los Angeles on Monday 2025-03-03 at 10:00."""
    return Job(
        id="job-1",
        start=at(2025, 3, 3, 10, 0),
        duration_minutes=120,
        location=GeoPoint(34.0522, -118.2437),
    )


@pytest.fixture
def store():
    return InMemoryAssignmentStore()


@pytest.fixture
def assigner(store, config):
    return CascadingAssigner(store, config)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
