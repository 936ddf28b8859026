"""
Database models for the event import pipeline.

Uses SQLAlchemy 2.0. Import jobs are stored as JSON documents with a few
indexed scalar columns for listing and sweeping; events get one row each.
"""

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from importer.config import settings


# =============================================================================
# Database Engine and Session
# =============================================================================

def create_db_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create an engine for the given URL (defaults to settings).

    In-memory SQLite shares one connection so every session sees the same
    database.
    """
    url = url or settings.database.url
    echo = settings.database.echo if echo is None else echo

    if url.startswith("sqlite"):
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
    )


def ensure_sqlite_directory(url: Optional[str] = None) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = url or settings.database.url
    prefix = "sqlite:///"
    if url.startswith(prefix) and url != "sqlite:///:memory:":
        Path(url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)


engine = create_db_engine()

SessionLocal = sessionmaker(autoflush=False, bind=engine)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autoflush=False, bind=bind)


@contextmanager
def get_session(session_factory: Optional[sessionmaker] = None):
    """Context manager for database sessions."""
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================================
# Base Model
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# Import Models
# =============================================================================

class ImportJobRecord(Base):
    """
    Persisted import job.

    The full job state lives in ``document``; the scalar columns mirror
    the fields the host lists and the stuck-job sweep filters on.
    """
    __tablename__ = "import_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    dataset_id: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    sheet_index: Mapped[int] = mapped_column(Integer, default=0)
    stage: Mapped[str] = mapped_column(String(50), nullable=False)
    batch_number: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)

    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_import_jobs_stage", "stage"),
        Index("idx_import_jobs_dataset", "dataset_id"),
        Index("idx_import_jobs_last_run", "last_run_at"),
    )

    def __repr__(self) -> str:
        return f"<ImportJobRecord {self.id} ({self.stage})>"


class EventRecord(Base):
    """An event materialized from one imported row."""
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dataset_id: Mapped[str] = mapped_column(String(255), nullable=False)
    unique_id: Mapped[str] = mapped_column(String(500), nullable=False)
    import_job_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    row_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    coordinate_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # import, geocoded
    coordinate_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    event_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("dataset_id", "unique_id", name="uq_event_dataset_unique_id"),
        Index("idx_events_dataset", "dataset_id"),
        Index("idx_events_timestamp", "event_timestamp"),
    )

    def __repr__(self) -> str:
        return f"<EventRecord {self.unique_id}>"


# =============================================================================
# Helper Functions
# =============================================================================

def create_all_tables(bind: Optional[Engine] = None):
    """Create all database tables."""
    Base.metadata.create_all(bind=bind or engine)


def drop_all_tables(bind: Optional[Engine] = None):
    """Drop the job and event tables."""
    Base.metadata.drop_all(bind=bind or engine)
