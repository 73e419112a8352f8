from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, JSON, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime
from crewslot.config.settings import get_settings

settings = get_settings()


def build_engine(url: str, **kwargs):
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, echo=False, **kwargs)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class ResourceModel(Base):
    __tablename__ = "resources"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    availability = Column(JSON, nullable=True)  # structured dict or legacy string
    home_lat = Column(Float, nullable=True)
    home_lng = Column(Float, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class JobModel(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True)
    date = Column(String, nullable=True)  # e.g. "2025-03-04"
    scheduled_at = Column(String, nullable=True)  # e.g. "14:30" or "2:30pm"
    hours = Column(Float, nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    address = Column(String, nullable=True)
    status = Column(String, default="scheduled", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AssignmentModel(Base):
    __tablename__ = "assignments"

    id = Column(String, primary_key=True)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=False)
    resource_id = Column(String, ForeignKey("resources.id"), nullable=False)
    status = Column(String, nullable=False, default="pending")
    start_at = Column(DateTime, nullable=False)  # UTC, naive
    end_at = Column(DateTime, nullable=False)  # UTC, naive, buffer included
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_assignments_resource_window", "resource_id", "start_at", "end_at"),
        Index("ix_assignments_job", "job_id"),
    )


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
