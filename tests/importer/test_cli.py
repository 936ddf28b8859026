# SPDX-License-Identifier: MIT
"""Tests for the command line interface."""

import pytest
from click.testing import CliRunner

from importer.jobs.models import ProcessingStage
from importer.jobs.store import SqlJobStore
from importer.main import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestRunCommand:
    """Test importing a file end to end."""

    def test_run_completes(self, runner, events_csv):
        result = runner.invoke(cli, ["run", str(events_csv), "--dataset", "cli-run", "--no-geocoding"])

        assert result.exit_code == 0, result.output
        assert "Import Summary" in result.output

        jobs = [job for job in SqlJobStore().list_jobs() if job.dataset.id == "cli-run"]
        assert len(jobs) == 1
        assert jobs[0].stage == ProcessingStage.COMPLETED
        assert jobs[0].events_created == 5

    def test_run_rejects_empty_file(self, runner, write_csv):
        path = write_csv([], name="empty.csv", headers=["title", "date"])
        result = runner.invoke(cli, ["run", str(path), "--no-geocoding"])

        assert result.exit_code == 1
        assert "Cannot import empty.csv" in result.output

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["run", str(tmp_path / "nope.csv")])
        assert result.exit_code != 0


class TestStatusCommand:
    """Test job listing."""

    def test_lists_jobs(self, runner, events_csv):
        runner.invoke(cli, ["run", str(events_csv), "--dataset", "cli-status", "--no-geocoding"])
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Import Jobs" in result.output

    def test_job_details(self, runner, events_csv):
        runner.invoke(cli, ["run", str(events_csv), "--dataset", "cli-detail", "--no-geocoding"])
        job = next(job for job in SqlJobStore().list_jobs() if job.dataset.id == "cli-detail")

        result = runner.invoke(cli, ["status", job.id])

        assert result.exit_code == 0
        assert "Dataset: cli-detail" in result.output

    def test_unknown_job(self, runner):
        result = runner.invoke(cli, ["status", "missing"])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestSweepCommand:
    def test_dry_run(self, runner):
        result = runner.invoke(cli, ["sweep", "--dry-run", "--threshold-hours", "1"])

        assert result.exit_code == 0
        assert "Checked" in result.output
        assert "Would reset 0" in result.output


class TestPreviewCommand:
    """Test schema preview."""

    def test_preview(self, runner, events_csv):
        result = runner.invoke(cli, ["preview", str(events_csv)])

        assert result.exit_code == 0, result.output
        assert "Fields" in result.output
        assert "Field Mappings" in result.output

    def test_preview_empty(self, runner, write_csv):
        path = write_csv([], name="empty.csv", headers=["title"])
        result = runner.invoke(cli, ["preview", str(path)])

        assert result.exit_code == 0
        assert "No data rows found." in result.output
