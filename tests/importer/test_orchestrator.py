# SPDX-License-Identifier: MIT
"""Tests for the pipeline orchestrator stage machine."""

import openpyxl
import pytest

from importer.config import Settings
from importer.geocoding.base import Geocoder, GeocodingResult
from importer.jobs.events import build_event as real_build_event
from importer.jobs.models import DatasetConfig, ProcessingStage
from importer.jobs.orchestrator import OrchestratorConfig
from importer.jobs.store import JobNotFoundError
from importer.readers.base import ReaderError

EXPECTED_STAGES = [
    ProcessingStage.DETECT_DATASET,
    ProcessingStage.ANALYZE_DUPLICATES,
    ProcessingStage.DETECT_SCHEMA,
    ProcessingStage.VALIDATE_SCHEMA,
    ProcessingStage.GEOCODE,
    ProcessingStage.CREATE_EVENTS,
]


def _stages_visited(orchestrator) -> list[ProcessingStage]:
    visited = []
    while True:
        task = orchestrator.queue.pop()
        if task is None:
            return visited
        job = orchestrator.store.load(task.job_id)
        if not visited or visited[-1] != job.stage:
            visited.append(job.stage)
        orchestrator.run_batch(task.job_id, task.batch_number, task.task_name)


class TestFullRun:
    """Test driving a job from upload to events."""

    def test_completes_in_stage_order(self, make_orchestrator, events_csv, fake_geocoder):
        orchestrator = make_orchestrator(geocoder=fake_geocoder)
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))

        assert _stages_visited(orchestrator) == EXPECTED_STAGES
        assert orchestrator.store.load(job.id).stage == ProcessingStage.COMPLETED

    def test_results(self, make_orchestrator, events_csv, fake_geocoder, event_store):
        orchestrator = make_orchestrator(geocoder=fake_geocoder)
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        executed = orchestrator.drain()

        job = orchestrator.store.load(job.id)
        # 3 batches for each of the five row-reading stages plus validation
        assert executed == 16
        assert job.total_rows == 5
        assert job.language == "eng"
        assert job.results == {
            "total_events": 5,
            "duplicates_skipped": 0,
            "geocoded": 1,
            "errors": 0,
            "rows_processed": 5,
        }
        assert job.progress["detect_dataset"] == job.progress["create_events"]
        assert job.progress["create_events"].rows_processed == 5
        assert job.progress["create_events"].batches == 3
        assert event_store.count("nyc") == 5

    def test_field_mappings_and_events(self, make_orchestrator, events_csv, fake_geocoder, event_store):
        orchestrator = make_orchestrator(geocoder=fake_geocoder)
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        mappings = orchestrator.store.load(job.id).field_mappings
        assert mappings.title_path == "title"
        assert mappings.timestamp_path == "date"
        assert mappings.location_path == "address"
        assert (mappings.latitude_path, mappings.longitude_path) == ("latitude", "longitude")

        events = {e.title: e for e in event_store.for_dataset("nyc")}
        jazz = events["Jazz Night in the Park"]
        assert (jazz.latitude, jazz.longitude) == (40.7812, -73.9665)
        assert jazz.coordinate_source == "import"
        assert jazz.timestamp.isoformat() == "2024-06-01T00:00:00+00:00"
        assert jazz.location_name == "Central Park"
        assert jazz.row_number == 0

        berlin = events["Wall Walk Berlin"]
        assert (berlin.latitude, berlin.longitude) == (52.5163, 13.3777)
        assert berlin.coordinate_source == "geocoded"
        assert berlin.coordinate_confidence == 0.9
        assert fake_geocoder.calls == ["Pariser Platz, Berlin"]

    def test_without_geocoder(self, make_orchestrator, events_csv, event_store):
        """Rows without coordinates still become events when nothing can geocode them."""
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.stage == ProcessingStage.COMPLETED
        assert job.geocoding_counts == {"imported": 4, "geocoded": 0, "failed": 0, "skipped": 1}
        berlin = next(e for e in event_store.for_dataset("nyc") if e.title == "Wall Walk Berlin")
        assert not berlin.has_coordinates

    def test_geocoding_disabled_skips_stage(self, make_orchestrator, events_csv, fake_geocoder):
        orchestrator = make_orchestrator(geocoder=fake_geocoder, geocoding_enabled=False)
        orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))

        visited = _stages_visited(orchestrator)
        assert ProcessingStage.GEOCODE not in visited
        assert fake_geocoder.calls == []

    def test_explicit_language(self, make_orchestrator, events_csv):
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc", language="deu"))
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.language == "deu"
        assert job.language_confidence == 1.0
        # English headers are still found through the fallback patterns
        assert job.field_mappings.title_path == "title"

    def test_field_mapping_overrides(self, make_orchestrator, events_csv, event_store):
        dataset = DatasetConfig(id="nyc", field_mapping_overrides={"title_path": "venue"})
        orchestrator = make_orchestrator()
        orchestrator.create_jobs(events_csv, dataset)
        orchestrator.drain()

        titles = sorted(e.title for e in event_store.for_dataset("nyc"))
        assert titles[0] == "Brandenburg Gate"

    def test_required_fields(self, make_orchestrator, write_csv, sample_event_rows, event_store):
        sample_event_rows[1]["venue"] = ""
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(write_csv(sample_event_rows), DatasetConfig(id="nyc", required_fields=["venue"]))
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.stage == ProcessingStage.COMPLETED
        assert event_store.count("nyc") == 4
        assert [(e.row, e.message) for e in job.errors] == [(1, "Missing required fields: venue")]


class TestDuplicates:
    """Test that duplicate rows never become events."""

    def test_internal_duplicates_are_skipped(self, make_orchestrator, write_csv, sample_event_rows, event_store):
        rows = sample_event_rows + [dict(sample_event_rows[0])]
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(write_csv(rows), DatasetConfig(id="nyc"))
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.duplicates.internal == {5: 0}
        assert job.duplicates_summary["internal"] == 1
        assert job.duplicates_summary["strategy"] == "content_hash"
        assert job.results["total_events"] == 5
        assert job.results["duplicates_skipped"] == 1
        assert event_store.count("nyc") == 5

    def test_reimport_finds_external_duplicates(self, make_orchestrator, events_csv, event_store):
        orchestrator = make_orchestrator()
        orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        [second] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        second = orchestrator.store.load(second.id)
        assert second.stage == ProcessingStage.COMPLETED
        assert len(second.duplicates.external) == 5
        assert second.events_created == 0
        assert second.results["duplicates_skipped"] == 5
        assert event_store.count("nyc") == 5

    def test_deduplication_disabled(self, make_orchestrator, write_csv, sample_event_rows, event_store):
        rows = sample_event_rows + [dict(sample_event_rows[0])]
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(write_csv(rows), DatasetConfig(id="nyc", deduplication_enabled=False))

        assert ProcessingStage.ANALYZE_DUPLICATES not in _stages_visited(orchestrator)
        job = orchestrator.store.load(job.id)
        assert job.duplicates_summary["strategy"] == "disabled"
        # The repeated row collides with the stored event instead
        assert job.existing_events_skipped == 1
        assert event_store.count("nyc") == 5


class TestFailureHandling:
    """Test row-level isolation and fatal errors."""

    def test_failing_row_does_not_fail_batch(self, make_orchestrator, events_csv, event_store, mocker):
        def flaky(row, row_number, job, unique_id, now=None):
            if row_number == 2:
                raise ValueError("boom")
            return real_build_event(row, row_number, job, unique_id, now=now)

        mocker.patch("importer.jobs.stages.build_event", side_effect=flaky)
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.stage == ProcessingStage.COMPLETED
        assert event_store.count("nyc") == 4
        assert [(e.row, e.message, e.kind) for e in job.errors] == [(2, "Failed to create event: boom", "row")]

    def test_geocoding_failures_do_not_block_completion(self, make_orchestrator, events_csv, fake_geocoder):
        fake_geocoder.known.clear()
        orchestrator = make_orchestrator(geocoder=fake_geocoder)
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.stage == ProcessingStage.COMPLETED
        assert job.geocoding_counts["failed"] == 1
        assert job.geocoding_cache == {"Pariser Platz, Berlin": None}
        assert job.errors[0].row == 4
        assert job.errors[0].stage == "geocode"

    def test_unexpected_geocoder_error_only_fails_the_row(self, make_orchestrator, events_csv, event_store):
        """A geocoder raising something other than GeocodingError still leaves the job COMPLETED."""

        class BrokenGeocoder(Geocoder):
            name = "broken"

            def geocode(self, address: str) -> GeocodingResult:
                raise RuntimeError("provider down")

        orchestrator = make_orchestrator(geocoder=BrokenGeocoder())
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.stage == ProcessingStage.COMPLETED
        assert event_store.count("nyc") == 5
        assert job.geocoding_counts["failed"] == 1
        assert [(e.row, e.kind, e.stage) for e in job.errors] == [(4, "row", "geocode")]
        assert "provider down" in job.errors[0].message

    def test_geocoding_failure_threshold(self, make_orchestrator, events_csv, fake_geocoder, event_store):
        fake_geocoder.known.clear()
        orchestrator = make_orchestrator(geocoder=fake_geocoder, max_geocoding_failure_rate=0.5)
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.stage == ProcessingStage.FAILED
        fatal = job.errors[-1]
        assert fatal.kind == "fatal"
        assert fatal.stage == "geocode"
        assert "Geocoding failure rate 100.0%" in fatal.message
        assert len(orchestrator.queue) == 0
        assert event_store.count() == 0

    def test_locked_schema_rejects_breaking_change(self, make_orchestrator, events_csv):
        current = {"type": "object", "properties": {"ticket_price": {"type": "number"}}, "required": []}
        dataset = DatasetConfig(id="nyc", schema_locked=True, current_schema=current)
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, dataset)
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.stage == ProcessingStage.FAILED
        assert job.errors[-1].message.startswith("Breaking schema changes for locked dataset nyc")
        assert job.errors[-1].row == 0
        assert job.schema_comparison["is_breaking"]

    def test_unlocked_schema_records_comparison(self, make_orchestrator, events_csv):
        current = {"type": "object", "properties": {"ticket_price": {"type": "number"}}, "required": []}
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc", current_schema=current))
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.stage == ProcessingStage.COMPLETED
        assert {c["type"] for c in job.schema_comparison["changes"]} == {"removed_field", "new_field"}

    def test_empty_file(self, make_orchestrator, write_csv):
        path = write_csv([], headers=["title", "date"])
        with pytest.raises(ReaderError):
            make_orchestrator().create_jobs(path, DatasetConfig(id="nyc"))

    def test_unknown_job(self, make_orchestrator):
        with pytest.raises(JobNotFoundError):
            make_orchestrator().run_batch("missing")


class TestMessages:
    """Test resumability and stale queue messages."""

    def test_resume_with_new_orchestrator(self, make_orchestrator, events_csv, event_store):
        """Any worker can pick up where another one stopped."""
        first = make_orchestrator()
        [job] = first.create_jobs(events_csv, DatasetConfig(id="nyc"))
        assert first.drain(max_tasks=7) == 7

        second = make_orchestrator()
        second.drain()

        job = second.store.load(job.id)
        assert job.stage == ProcessingStage.COMPLETED
        assert event_store.count("nyc") == 5

    def test_rerun_after_lost_save(self, make_orchestrator, events_csv, event_store, job_store, mocker):
        """A batch re-run after a crash never creates events twice."""
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        while True:
            task = orchestrator.queue.pop()
            if task.task_name == "create-events":
                break
            orchestrator.run_batch(task.job_id, task.batch_number, task.task_name)

        real_save = job_store.save
        calls = []

        def crash_once(saved_job):
            calls.append(saved_job.id)
            if len(calls) == 1:
                raise RuntimeError("worker died")
            real_save(saved_job)

        mocker.patch.object(job_store, "save", side_effect=crash_once)
        with pytest.raises(RuntimeError):
            orchestrator.run_batch(task.job_id, task.batch_number, task.task_name)

        # The queue redelivers the same message
        orchestrator.run_batch(task.job_id, task.batch_number, task.task_name)
        orchestrator.drain()

        job = job_store.load(job.id)
        assert job.stage == ProcessingStage.COMPLETED
        assert event_store.count("nyc") == 5
        assert job.events_created + job.existing_events_skipped == 5

    def test_message_for_other_stage_is_ignored(self, make_orchestrator, events_csv):
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))

        result = orchestrator.run_batch(job.id, 0, "create-events")
        assert result.stage == ProcessingStage.DETECT_DATASET
        assert result.total_rows == 0
        assert len(orchestrator.queue) == 1

    def test_old_batch_message_is_ignored(self, make_orchestrator, events_csv):
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.run_batch(job.id, 0, "detect-dataset")

        result = orchestrator.run_batch(job.id, 0, "detect-dataset")
        assert result.batch_number == 1
        assert result.total_rows == 2

    def test_message_for_finished_job_is_ignored(self, make_orchestrator, events_csv, event_store):
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        result = orchestrator.run_batch(job.id, 0, "create-events")
        assert result.stage == ProcessingStage.COMPLETED
        assert len(orchestrator.queue) == 0
        assert event_store.count("nyc") == 5

    def test_enqueued_payload(self, make_orchestrator, events_csv):
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain(max_tasks=1)

        [task] = orchestrator.queue.tasks
        assert (task.task_name, task.job_id, task.batch_number) == ("detect-dataset", job.id, 1)


class TestWorkbooks:
    """Test multi-sheet uploads."""

    def test_one_job_per_sheet(self, make_orchestrator, tmp_path, event_store):
        wb = openpyxl.Workbook()
        concerts = wb.active
        concerts.title = "Concerts"
        concerts.append(["title", "date"])
        for i in range(3):
            concerts.append([f"Concert number {i}", f"2024-07-0{i + 1}"])
        talks = wb.create_sheet("Talks")
        talks.append(["title", "date"])
        for i in range(2):
            talks.append([f"Talk number {i}", f"2024-08-0{i + 1}"])
        wb.create_sheet("Empty").append(["title"])
        path = tmp_path / "program.xlsx"
        wb.save(path)

        orchestrator = make_orchestrator()
        jobs = orchestrator.create_jobs(path, DatasetConfig(id="concerts"), sheet_datasets={1: DatasetConfig(id="talks")})
        orchestrator.drain()

        assert [(j.sheet_index, j.sheet_name, j.dataset.id) for j in jobs] == [
            (0, "Concerts", "concerts"),
            (1, "Talks", "talks"),
        ]
        assert all(orchestrator.store.load(j.id).stage == ProcessingStage.COMPLETED for j in jobs)
        assert event_store.count("concerts") == 3
        assert event_store.count("talks") == 2


class TestConfig:
    """Test orchestrator configuration."""

    def test_from_settings(self):
        app_settings = Settings()
        app_settings.batch.geocoding = 25
        config = OrchestratorConfig.from_settings(app_settings)

        assert config.batch_size(ProcessingStage.GEOCODE) == 25
        assert config.batch_size(ProcessingStage.DETECT_DATASET) == app_settings.batch.dataset_detection
        assert config.schema.max_unique_values == app_settings.schema_builder.max_unique_values
        assert config.max_geocoding_failure_rate is None

    def test_with_batch_size(self):
        config = OrchestratorConfig.with_batch_size(7, geocoding_enabled=False)
        assert config.batch_size(ProcessingStage.CREATE_EVENTS) == 7
        assert config.batch_size(ProcessingStage.ANALYZE_DUPLICATES) == 7
        assert not config.geocoding_enabled


class TestSwappedCoordinates:
    """Test the dataset-wide swap verdict."""

    CITIES = [
        ("Tokyo Jazz Festival", 35.6762, 139.6503),
        ("Osaka Food Fair", 34.6937, 135.5023),
        ("Sapporo Snow Festival", 43.0618, 141.3545),
        ("Fukuoka Yatai Night", 33.5904, 130.4017),
    ]

    def test_swapped_columns_are_repaired(self, make_orchestrator, write_csv, event_store):
        # Latitude and longitude columns hold each other's values
        rows = [
            {"title": title, "date": "2024-07-01", "latitude": lon, "longitude": lat}
            for title, lat, lon in self.CITIES
        ]
        path = write_csv(rows, name="japan.csv", headers=["title", "date", "latitude", "longitude"])
        dataset = DatasetConfig(
            id="japan",
            field_mapping_overrides={"latitude_path": "latitude", "longitude_path": "longitude"},
        )
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(path, dataset)
        orchestrator.drain()

        job = orchestrator.store.load(job.id)
        assert job.stage == ProcessingStage.COMPLETED
        assert job.auto_fix_swapped is True
        # Out-of-range values are not auto-detected as a latitude column
        assert job.detected_field_mappings.latitude_path is None
        assert job.geocoding_counts["imported"] == 4
        assert job.errors == []

        events = {e.title: e for e in event_store.for_dataset("japan")}
        for title, lat, lon in self.CITIES:
            assert (events[title].latitude, events[title].longitude) == (lat, lon)
            assert events[title].coordinate_source == "import"

    def test_correct_columns_are_left_alone(self, make_orchestrator, events_csv):
        orchestrator = make_orchestrator()
        [job] = orchestrator.create_jobs(events_csv, DatasetConfig(id="nyc"))
        orchestrator.drain()

        assert orchestrator.store.load(job.id).auto_fix_swapped is False
