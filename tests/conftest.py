# SPDX-License-Identifier: MIT
"""Pytest configuration and fixtures for the event import pipeline tests."""

import csv
import os
from pathlib import Path
from typing import Callable, Generator

import pytest

# Set test environment variables before importing the package
os.environ.setdefault("DISABLE_LOGGING", "1")
os.environ.setdefault("IMPORT_DB_URL", "sqlite://")
os.environ.setdefault("GEOCODING_ENABLED", "false")

from importer.geocoding.base import Geocoder, GeocodingError, GeocodingResult  # noqa: E402


class FakeGeocoder(Geocoder):
    """Geocoder answering from a fixed address book."""

    name = "fake"

    def __init__(self, known: dict[str, tuple[float, float]] | None = None):
        self.known = known or {}
        self.calls: list[str] = []

    def geocode(self, address: str) -> GeocodingResult:
        self.calls.append(address)
        if address not in self.known:
            raise GeocodingError(f"No results for '{address}'")
        lat, lon = self.known[address]
        return GeocodingResult(latitude=lat, longitude=lon, confidence=0.9, provider=self.name)


EVENT_HEADERS = ["title", "description", "date", "venue", "address", "latitude", "longitude"]


@pytest.fixture
def sample_event_rows() -> list[dict]:
    """Event rows as they would appear in an uploaded sheet."""
    return [
        {
            "title": "Jazz Night in the Park",
            "description": "An evening of live jazz with local bands and food trucks",
            "date": "2024-06-01",
            "venue": "Central Park",
            "address": "Central Park, New York",
            "latitude": "40.7812",
            "longitude": "-73.9665",
        },
        {
            "title": "Open Air Cinema",
            "description": "Classic movies on a big screen under the stars",
            "date": "2024-06-08",
            "venue": "Bryant Park",
            "address": "Bryant Park, New York",
            "latitude": "40.7536",
            "longitude": "-73.9832",
        },
        {
            "title": "Street Food Festival",
            "description": "Food stalls from all over the city in one street",
            "date": "2024-06-15",
            "venue": "Smorgasburg",
            "address": "90 Kent Ave, Brooklyn",
            "latitude": "40.7215",
            "longitude": "-73.9620",
        },
        {
            "title": "Harbour Fireworks",
            "description": "Fireworks show over the harbour for the summer solstice",
            "date": "2024-06-21",
            "venue": "Pier 17",
            "address": "89 South St, New York",
            "latitude": "40.7061",
            "longitude": "-74.0027",
        },
        {
            "title": "Wall Walk Berlin",
            "description": "Guided walk along the remains of the Berlin wall",
            "date": "2024-06-29",
            "venue": "Brandenburg Gate",
            "address": "Pariser Platz, Berlin",
            "latitude": "",
            "longitude": "",
        },
    ]


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing rows to a CSV file in the test's temp dir."""

    def _write(rows: list[dict], name: str = "events.csv", headers: list[str] | None = None) -> Path:
        path = tmp_path / name
        fieldnames = headers or (list(rows[0].keys()) if rows else EVENT_HEADERS)
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            writer.writerows(rows)
        return path

    return _write


@pytest.fixture
def events_csv(write_csv, sample_event_rows) -> Path:
    return write_csv(sample_event_rows)


@pytest.fixture
def job_store():
    from importer.jobs.store import InMemoryJobStore
    return InMemoryJobStore()


@pytest.fixture
def event_store():
    from importer.jobs.events import InMemoryEventStore
    return InMemoryEventStore()


@pytest.fixture
def queue():
    from importer.jobs.queue import InMemoryQueue
    return InMemoryQueue()


@pytest.fixture
def fake_geocoder() -> FakeGeocoder:
    return FakeGeocoder({"Pariser Platz, Berlin": (52.5163, 13.3777)})


@pytest.fixture
def make_orchestrator(job_store, event_store, queue):
    """Factory for an orchestrator over the in-memory stores with small batches."""
    from importer.jobs.orchestrator import OrchestratorConfig, PipelineOrchestrator

    def _make(batch_size: int = 2, geocoder: Geocoder | None = None, **config_kwargs) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            store=job_store,
            queue=queue,
            event_store=event_store,
            geocoder=geocoder,
            config=OrchestratorConfig.with_batch_size(batch_size, **config_kwargs),
        )

    return _make


@pytest.fixture
def sql_session_factory() -> Generator:
    """Session factory over a private in-memory SQLite database."""
    from importer.database import create_all_tables, create_db_engine, drop_all_tables, make_session_factory

    engine = create_db_engine("sqlite://")
    create_all_tables(engine)
    yield make_session_factory(engine)
    drop_all_tables(engine)
    engine.dispose()
