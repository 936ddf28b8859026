# SPDX-License-Identifier: MIT
"""Tests for the stuck-job sweep."""

from datetime import datetime, timedelta, timezone

from importer.jobs.models import DatasetConfig, ImportJob, ProcessingStage
from importer.jobs.sweeper import is_job_stuck, sweep_stuck_jobs

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _job(idle: timedelta, stage: ProcessingStage = ProcessingStage.GEOCODE) -> ImportJob:
    job = ImportJob.new(DatasetConfig(id="nyc"), "/uploads/events.csv")
    job.stage = stage
    job.last_run_at = NOW - idle
    return job


class TestIsJobStuck:
    """Test the stuck predicate."""

    def test_threshold_is_inclusive(self):
        assert is_job_stuck(_job(timedelta(hours=2)), NOW, timedelta(hours=2))
        assert not is_job_stuck(_job(timedelta(hours=1, minutes=59)), NOW, timedelta(hours=2))

    def test_terminal_jobs_are_never_stuck(self):
        assert not is_job_stuck(_job(timedelta(days=3), ProcessingStage.COMPLETED), NOW, timedelta(hours=2))
        assert not is_job_stuck(_job(timedelta(days=3), ProcessingStage.FAILED), NOW, timedelta(hours=2))

    def test_falls_back_to_updated_at(self):
        job = _job(timedelta(0))
        job.last_run_at = None
        job.updated_at = NOW - timedelta(hours=5)
        assert is_job_stuck(job, NOW, timedelta(hours=2))


class TestSweepStuckJobs:
    """Test failing stuck jobs."""

    def test_fails_only_stuck_jobs(self, job_store):
        stuck = _job(timedelta(hours=3))
        busy = _job(timedelta(minutes=10))
        done = _job(timedelta(days=1), ProcessingStage.COMPLETED)
        for job in (stuck, busy, done):
            job_store.save(job)

        result = sweep_stuck_jobs(job_store, threshold=timedelta(hours=2), now=NOW)

        assert result.checked == 2
        assert result.reset == 1
        assert result.job_ids == [stuck.id]

        stuck = job_store.load(stuck.id)
        assert stuck.stage == ProcessingStage.FAILED
        assert stuck.errors[-1].kind == "fatal"
        assert stuck.errors[-1].message == "Import job was stuck in stage geocode for 180 minutes"
        assert job_store.load(busy.id).stage == ProcessingStage.GEOCODE

    def test_dry_run_changes_nothing(self, job_store):
        stuck = _job(timedelta(hours=3))
        job_store.save(stuck)

        result = sweep_stuck_jobs(job_store, now=NOW, dry_run=True)

        assert result.dry_run
        assert result.job_ids == [stuck.id]
        assert job_store.load(stuck.id).stage == ProcessingStage.GEOCODE

    def test_job_that_resumed_is_left_alone(self, job_store, mocker):
        """A job that ran again between listing and reset is not failed."""
        stuck = _job(timedelta(hours=3))
        job_store.save(stuck)
        listed = job_store.list_jobs()

        stuck.last_run_at = NOW
        job_store.save(stuck)
        mocker.patch.object(job_store, "list_jobs", return_value=listed)

        result = sweep_stuck_jobs(job_store, now=NOW)

        assert result.reset == 0
        assert job_store.load(stuck.id).stage == ProcessingStage.GEOCODE
