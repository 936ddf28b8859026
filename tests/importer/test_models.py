# SPDX-License-Identifier: MIT
"""Tests for the import job model and stage transitions."""

import pytest

from importer.jobs.models import (
    STAGE_ORDER,
    TASK_NAMES,
    VALID_STAGE_TRANSITIONS,
    DatasetConfig,
    ImportJob,
    InvalidStageTransitionError,
    ProcessingStage,
)


@pytest.fixture
def job() -> ImportJob:
    return ImportJob.new(DatasetConfig(id="nyc"), "/uploads/events.csv", sheet_name="events")


class TestTransitions:
    """Test the stage transition table."""

    def test_every_active_stage_has_a_task(self):
        for stage in STAGE_ORDER[:-1]:
            assert stage in TASK_NAMES
        assert TASK_NAMES[ProcessingStage.GEOCODE] == "geocode-batch"

    def test_forward_moves(self, job):
        job.batch_number = 4
        job.transition_to(ProcessingStage.DETECT_SCHEMA)
        assert job.stage == ProcessingStage.DETECT_SCHEMA
        assert job.batch_number == 0

    def test_staying_keeps_batch(self, job):
        job.batch_number = 4
        job.transition_to(ProcessingStage.DETECT_DATASET)
        assert job.batch_number == 4

    def test_backward_moves_are_rejected(self, job):
        job.transition_to(ProcessingStage.GEOCODE)
        with pytest.raises(InvalidStageTransitionError) as exc_info:
            job.transition_to(ProcessingStage.DETECT_SCHEMA)
        assert str(exc_info.value) == "Invalid stage transition: geocode -> detect_schema"

    def test_terminal_stages_are_final(self, job):
        assert VALID_STAGE_TRANSITIONS[ProcessingStage.COMPLETED] == set()
        job.fail("boom")
        assert job.is_terminal
        with pytest.raises(InvalidStageTransitionError):
            job.transition_to(ProcessingStage.CREATE_EVENTS)

    def test_any_active_stage_can_fail(self):
        for stage in STAGE_ORDER[:-1]:
            assert ProcessingStage.FAILED in VALID_STAGE_TRANSITIONS[stage]


class TestImportJob:
    """Test job bookkeeping."""

    def test_fail_records_fatal_error(self, job):
        job.transition_to(ProcessingStage.CREATE_EVENTS)
        job.fail("database unavailable", row=2000)

        assert job.stage == ProcessingStage.FAILED
        error = job.errors[-1]
        assert (error.row, error.message, error.stage, error.kind) == (
            2000, "database unavailable", "create_events", "fatal",
        )

    def test_stage_progress(self, job):
        job.stage_progress().rows_processed += 10
        assert job.progress["detect_dataset"].rows_processed == 10
        assert job.stage_progress(ProcessingStage.GEOCODE).rows_processed == 0

    def test_roundtrip(self, job):
        job.language = "eng"
        job.seen_ids = {"nyc:hash:abc": 0}
        job.geocoding_counts["failed"] = 2
        job.add_error(None, "No data rows found", kind="batch")

        restored = ImportJob.from_dict(job.to_dict())
        assert restored.to_dict() == job.to_dict()
        assert restored.created_at == job.created_at

    def test_dataset_roundtrip(self):
        dataset = DatasetConfig(id="nyc", required_fields=["title"], current_schema={"type": "object"})
        assert DatasetConfig.from_dict(dataset.to_dict()) == dataset
