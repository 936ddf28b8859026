"""
Event materialization.

Turns an imported row into an Event using the job's field mappings, its
coordinate verdicts and the geocoding cache, and stores events so that a
re-run never creates the same event twice.
"""

import copy
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from importer.database import EventRecord, get_session
from importer.deduplication.ids import get_by_path
from importer.jobs.models import ImportJob, utcnow
from importer.normalizers.coordinates import (
    CoordinateFormat,
    ValidatedCoordinates,
    calculate_confidence,
    extract_from_combined,
    parse_coordinate,
    validate_coordinates,
)
from importer.normalizers.dates import parse_timestamp
from importer.schema.field_mapping import FieldMappings

# Tried when no timestamp column was mapped
FALLBACK_TIMESTAMP_FIELDS = ("date", "timestamp", "datetime", "event_date", "start_date", "created_at")

# Database lookups are chunked to keep IN clauses small
LOOKUP_CHUNK_SIZE = 1000


@dataclass
class Event:
    dataset_id: str
    unique_id: str
    timestamp: datetime
    data: dict[str, Any]
    title: Optional[str] = None
    description: Optional[str] = None
    location_name: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    coordinate_source: Optional[str] = None
    coordinate_confidence: Optional[float] = None
    import_job_id: Optional[str] = None
    row_number: Optional[int] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def extract_row_coordinates(
    row: dict[str, Any],
    mappings: FieldMappings,
    auto_fix: bool = True,
) -> Optional[ValidatedCoordinates]:
    """
    Coordinates imported with the row, validated.

    Separate latitude/longitude columns win over a combined column.
    Returns None when the row carries no coordinate values at all.
    """
    if mappings.latitude_path and mappings.longitude_path:
        latitude = parse_coordinate(get_by_path(row, mappings.latitude_path))
        longitude = parse_coordinate(get_by_path(row, mappings.longitude_path))
        if latitude is not None or longitude is not None:
            return validate_coordinates(latitude, longitude, auto_fix=auto_fix)

    if mappings.coordinates_path:
        value = get_by_path(row, mappings.coordinates_path)
        if value is not None and value != "":
            extraction = extract_from_combined(value, mappings.coordinates_format or CoordinateFormat.UNKNOWN)
            if extraction.latitude is not None and extraction.longitude is not None:
                return validate_coordinates(extraction.latitude, extraction.longitude, auto_fix=auto_fix)

    return None


def extract_address(row: dict[str, Any], mappings: FieldMappings) -> Optional[str]:
    if not mappings.location_path:
        return None
    return _text(get_by_path(row, mappings.location_path))


def extract_timestamp(row: dict[str, Any], mappings: FieldMappings, now: Optional[datetime] = None) -> datetime:
    """Event time from the mapped column, then common date columns, else ``now``."""
    candidates = []
    if mappings.timestamp_path:
        candidates.append(get_by_path(row, mappings.timestamp_path))
    candidates.extend(row.get(name) for name in FALLBACK_TIMESTAMP_FIELDS)

    for value in candidates:
        parsed = parse_timestamp(value)
        if parsed is not None:
            return parsed
    return now or utcnow()


def build_event(
    row: dict[str, Any],
    row_number: int,
    job: ImportJob,
    unique_id: str,
    now: Optional[datetime] = None,
) -> Event:
    """
    Materialize one row.

    Coordinates come from the row itself (validated with the job's swap
    verdict), else from the geocoding cache for the row's address.
    """
    mappings = job.field_mappings
    address = extract_address(row, mappings)

    event = Event(
        dataset_id=job.dataset.id,
        unique_id=unique_id,
        timestamp=extract_timestamp(row, mappings, now),
        data=copy.deepcopy(row),
        title=_text(get_by_path(row, mappings.title_path)) if mappings.title_path else None,
        description=_text(get_by_path(row, mappings.description_path)) if mappings.description_path else None,
        location_name=(
            _text(get_by_path(row, mappings.location_name_path)) if mappings.location_name_path else None
        ),
        address=address,
        import_job_id=job.id,
        row_number=row_number,
    )

    coordinates = extract_row_coordinates(row, mappings, auto_fix=bool(job.auto_fix_swapped))
    if coordinates is not None and coordinates.is_valid:
        event.latitude = coordinates.latitude
        event.longitude = coordinates.longitude
        event.coordinate_source = "import"
        event.coordinate_confidence = coordinates.confidence * calculate_confidence(
            coordinates.latitude, coordinates.longitude
        )
    elif address and job.geocoding_cache.get(address):
        cached = job.geocoding_cache[address]
        event.latitude = cached["latitude"]
        event.longitude = cached["longitude"]
        event.coordinate_source = "geocoded"
        event.coordinate_confidence = cached.get("confidence")

    return event


def missing_required_fields(row: dict[str, Any], required_fields: Iterable[str]) -> list[str]:
    missing = []
    for path in required_fields:
        value = get_by_path(row, path)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(path)
    return missing


class EventStore(ABC):
    @abstractmethod
    def existing_unique_ids(self, dataset_id: str, unique_ids: list[str]) -> set[str]:
        """Which of ``unique_ids`` already exist as events of the dataset."""
        pass

    @abstractmethod
    def create_many(self, events: list[Event]) -> int:
        """Store events, skipping ids that already exist. Returns the number created."""
        pass

    @abstractmethod
    def count(self, dataset_id: Optional[str] = None) -> int:
        pass


class InMemoryEventStore(EventStore):
    def __init__(self):
        self.events: dict[tuple[str, str], Event] = {}

    def existing_unique_ids(self, dataset_id: str, unique_ids: list[str]) -> set[str]:
        return {uid for uid in unique_ids if (dataset_id, uid) in self.events}

    def create_many(self, events: list[Event]) -> int:
        created = 0
        for event in events:
            key = (event.dataset_id, event.unique_id)
            if key not in self.events:
                self.events[key] = event
                created += 1
        return created

    def count(self, dataset_id: Optional[str] = None) -> int:
        if dataset_id is None:
            return len(self.events)
        return sum(1 for d, _ in self.events if d == dataset_id)

    def for_dataset(self, dataset_id: str) -> list[Event]:
        return [e for (d, _), e in self.events.items() if d == dataset_id]


class SqlEventStore(EventStore):
    """Stores events in the ``events`` table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def existing_unique_ids(self, dataset_id: str, unique_ids: list[str]) -> set[str]:
        found: set[str] = set()
        with get_session(self.session_factory) as session:
            for start in range(0, len(unique_ids), LOOKUP_CHUNK_SIZE):
                chunk = unique_ids[start:start + LOOKUP_CHUNK_SIZE]
                stmt = select(EventRecord.unique_id).where(
                    EventRecord.dataset_id == dataset_id,
                    EventRecord.unique_id.in_(chunk),
                )
                found.update(session.scalars(stmt))
        return found

    @staticmethod
    def _to_record(event: Event) -> EventRecord:
        return EventRecord(
            dataset_id=event.dataset_id,
            unique_id=event.unique_id,
            import_job_id=event.import_job_id,
            row_number=event.row_number,
            title=event.title,
            description=event.description,
            location_name=event.location_name,
            address=event.address,
            latitude=event.latitude,
            longitude=event.longitude,
            coordinate_source=event.coordinate_source,
            coordinate_confidence=event.coordinate_confidence,
            event_timestamp=event.timestamp,
            data=event.data,
        )

    def create_many(self, events: list[Event]) -> int:
        if not events:
            return 0
        by_dataset: dict[str, list[Event]] = {}
        for event in events:
            by_dataset.setdefault(event.dataset_id, []).append(event)

        created = 0
        for dataset_id, dataset_events in by_dataset.items():
            existing = self.existing_unique_ids(dataset_id, [e.unique_id for e in dataset_events])
            fresh = [e for e in dataset_events if e.unique_id not in existing]
            try:
                with get_session(self.session_factory) as session:
                    session.add_all(self._to_record(e) for e in fresh)
                created += len(fresh)
            except IntegrityError:
                # Lost a race with another writer; fall back to one row at a time
                logger.warning(f"Bulk insert conflict for dataset {dataset_id}, inserting individually")
                created += self._create_individually(fresh)
        return created

    def _create_individually(self, events: list[Event]) -> int:
        created = 0
        for event in events:
            try:
                with get_session(self.session_factory) as session:
                    session.add(self._to_record(event))
                created += 1
            except IntegrityError:
                logger.debug(f"Event {event.unique_id} already exists")
        return created

    def count(self, dataset_id: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(EventRecord)
        if dataset_id is not None:
            stmt = stmt.where(EventRecord.dataset_id == dataset_id)
        with get_session(self.session_factory) as session:
            return session.scalar(stmt) or 0
