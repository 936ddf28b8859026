"""
Pipeline orchestrator.

Drives an import job through its stages one batch per invocation. All
state needed between invocations lives on the persisted job, so any
worker can pick up the next queued task:

    orchestrator.create_jobs(path, dataset)          # enqueues detect-dataset
    task = queue.pop()
    orchestrator.run_batch(task.job_id, task.batch_number, task.task_name)

The host must not run two batches of the same job at the same time.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

from importer.config import Settings, settings as default_settings
from importer.geocoding.base import Geocoder
from importer.jobs.events import EventStore
from importer.jobs.models import (
    STAGE_ORDER,
    TASK_NAMES,
    DatasetConfig,
    ImportJob,
    ProcessingStage,
    utcnow,
)
from importer.jobs.queue import InMemoryQueue, Queue
from importer.jobs.stages import STAGE_PROCESSORS, StageContext, StageProcessor
from importer.jobs.store import JobStore
from importer.readers.base import BatchReader, ReaderError, get_reader
from importer.schema.builder import SchemaBuilderConfig


@dataclass
class OrchestratorConfig:
    """Batch sizes and thresholds for one orchestrator."""

    batch_sizes: dict[ProcessingStage, int] = field(
        default_factory=lambda: {
            ProcessingStage.DETECT_DATASET: 10000,
            ProcessingStage.ANALYZE_DUPLICATES: 5000,
            ProcessingStage.DETECT_SCHEMA: 10000,
            ProcessingStage.GEOCODE: 100,
            ProcessingStage.CREATE_EVENTS: 1000,
        }
    )
    schema: SchemaBuilderConfig = field(default_factory=SchemaBuilderConfig)
    geocoding_enabled: bool = True
    # None: failed geocodes never block completion
    max_geocoding_failure_rate: Optional[float] = None
    language_sample_rows: int = 100

    @classmethod
    def from_settings(cls, app_settings: Optional[Settings] = None) -> "OrchestratorConfig":
        app_settings = app_settings or default_settings
        batch = app_settings.batch
        return cls(
            batch_sizes={
                ProcessingStage.DETECT_DATASET: batch.dataset_detection,
                ProcessingStage.ANALYZE_DUPLICATES: batch.duplicate_analysis,
                ProcessingStage.DETECT_SCHEMA: batch.schema_detection,
                ProcessingStage.GEOCODE: batch.geocoding,
                ProcessingStage.CREATE_EVENTS: batch.event_creation,
            },
            schema=SchemaBuilderConfig.from_settings(app_settings.schema_builder),
            geocoding_enabled=app_settings.geocoding.enabled,
            max_geocoding_failure_rate=app_settings.geocoding.max_failure_rate,
        )

    def batch_size(self, stage: ProcessingStage) -> int:
        return self.batch_sizes.get(stage, 1000)

    @classmethod
    def with_batch_size(cls, size: int, **kwargs) -> "OrchestratorConfig":
        """Same batch size for every stage (handy in tests)."""
        stages = [s for s in STAGE_ORDER if s in TASK_NAMES]
        return cls(batch_sizes={stage: size for stage in stages}, **kwargs)


class PipelineOrchestrator:
    """Stage state machine over persisted import jobs."""

    def __init__(
        self,
        store: JobStore,
        queue: Queue,
        event_store: EventStore,
        geocoder: Optional[Geocoder] = None,
        config: Optional[OrchestratorConfig] = None,
        reader_factory: Callable[[str | Path], BatchReader] = get_reader,
        clock: Callable[[], datetime] = utcnow,
        processors: Optional[dict[ProcessingStage, StageProcessor]] = None,
    ):
        self.store = store
        self.queue = queue
        self.event_store = event_store
        self.geocoder = geocoder
        self.config = config or OrchestratorConfig.from_settings()
        self.reader_factory = reader_factory
        self.clock = clock
        self.processors = processors or STAGE_PROCESSORS

    # ------------------------------------------------------------------
    # Job creation
    # ------------------------------------------------------------------

    def create_jobs(
        self,
        file_path: str | Path,
        dataset: DatasetConfig,
        sheet_datasets: Optional[dict[int, DatasetConfig]] = None,
    ) -> list[ImportJob]:
        """
        Create one import job per non-empty sheet of a file.

        Args:
            file_path: Uploaded CSV or XLSX file
            dataset: Dataset the rows are imported into
            sheet_datasets: Per-sheet dataset overrides, by sheet index

        Returns:
            The created jobs, each with its first task enqueued

        Raises:
            ReaderError: If the file cannot be read or has no data rows
        """
        reader = self.reader_factory(file_path)
        sheets = [s for s in reader.list_sheets(Path(file_path)) if s.row_count > 0]
        if not sheets:
            raise ReaderError(f"No data rows found in {Path(file_path).name}")

        jobs = []
        for sheet in sheets:
            sheet_dataset = (sheet_datasets or {}).get(sheet.index, dataset)
            job = ImportJob.new(sheet_dataset, str(file_path), sheet_index=sheet.index, sheet_name=sheet.name)
            job.last_run_at = self.clock()
            self.store.save(job)
            self._enqueue(job)
            jobs.append(job)
            logger.info(f"Created import job {job.id} for sheet '{sheet.name}' ({sheet.row_count} rows)")
        return jobs

    # ------------------------------------------------------------------
    # Batch processing
    # ------------------------------------------------------------------

    def run_batch(
        self,
        job_id: str,
        batch_number: Optional[int] = None,
        task_name: Optional[str] = None,
    ) -> ImportJob:
        """
        Process one batch of a job and schedule what comes next.

        Messages for a finished job, another stage or an earlier batch are
        stale and leave the job untouched. Fatal errors fail the job and
        are recorded on it rather than raised.

        Args:
            job_id: Job to advance
            batch_number: Batch the queued message refers to
            task_name: Task name of the queued message

        Returns:
            The job as persisted after this invocation

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with logger.contextualize(job=job_id[:8]):
            return self._run_batch(job_id, batch_number, task_name)

    def _run_batch(self, job_id: str, batch_number: Optional[int], task_name: Optional[str]) -> ImportJob:
        job = self.store.load(job_id)

        if self._is_stale(job, batch_number, task_name):
            return job

        processor = self.processors[job.stage]
        now = self.clock()
        job.last_run_at = now
        ctx = StageContext(config=self.config, event_store=self.event_store, geocoder=self.geocoder, now=now)

        try:
            self._advance(ctx, job, processor)
        except Exception as e:
            logger.exception(f"Job {job.id} failed in stage {job.stage.value}: {e}")
            job.fail(str(e), row=job.batch_number * self.config.batch_size(job.stage))
            self.store.save(job)
            return job

        self.store.save(job)
        if not job.is_terminal:
            self._enqueue(job)
        return job

    def _is_stale(self, job: ImportJob, batch_number: Optional[int], task_name: Optional[str]) -> bool:
        if job.is_terminal:
            logger.warning(f"Job {job.id} is already {job.stage.value}, ignoring message")
            return True
        if task_name is not None and task_name != TASK_NAMES[job.stage]:
            logger.warning(f"Job {job.id}: stale '{task_name}' message, job is in stage {job.stage.value}")
            return True
        if batch_number is not None and batch_number != job.batch_number:
            logger.warning(f"Job {job.id}: stale message for batch {batch_number}, job is at {job.batch_number}")
            return True
        return False

    def _advance(self, ctx: StageContext, job: ImportJob, processor: StageProcessor) -> None:
        exhausted = True
        if processor.reads_rows:
            batch_size = self.config.batch_size(job.stage)
            start_row = job.batch_number * batch_size
            reader = self.reader_factory(job.file_path)
            rows = reader.read(Path(job.file_path), job.sheet_index, start_row, batch_size)
            exhausted = len(rows) < batch_size

            indexed = [(start_row + offset, row) for offset, row in enumerate(rows)]
            if processor.filters_duplicates and len(job.duplicates):
                skip = job.duplicate_row_numbers
                indexed = [(row_number, row) for row_number, row in indexed if row_number not in skip]

            processor.process_batch(ctx, job, indexed)

            progress = job.stage_progress()
            progress.rows_processed += len(rows)
            progress.total_rows = max(job.total_rows, progress.rows_processed)
            progress.batches += 1
            logger.info(
                f"Job {job.id}: {job.stage.value} batch {job.batch_number} done "
                f"({len(indexed)} of {len(rows)} rows processed)"
            )

        if not exhausted:
            job.batch_number += 1
            return

        processor.complete(ctx, job)
        self._transition(ctx, job)

    def _transition(self, ctx: StageContext, job: ImportJob) -> None:
        current = job.stage
        index = STAGE_ORDER.index(current)
        for candidate in STAGE_ORDER[index + 1:]:
            processor = self.processors.get(candidate)
            if processor is None or processor.is_applicable(ctx, job):
                job.transition_to(candidate)
                logger.info(f"Job {job.id}: {current.value} -> {candidate.value}")
                return
            processor.skip(ctx, job)

    def _enqueue(self, job: ImportJob) -> None:
        self.queue.enqueue(TASK_NAMES[job.stage], {"job_id": job.id, "batch_number": job.batch_number})

    # ------------------------------------------------------------------
    # In-process driver
    # ------------------------------------------------------------------

    def drain(self, max_tasks: Optional[int] = None, on_task: Optional[Callable[[ImportJob], None]] = None) -> int:
        """
        Run queued tasks until the in-memory queue is empty.

        Returns:
            Number of tasks executed
        """
        if not isinstance(self.queue, InMemoryQueue):
            raise TypeError("drain() needs an InMemoryQueue")

        executed = 0
        while max_tasks is None or executed < max_tasks:
            task = self.queue.pop()
            if task is None:
                break
            job = self.run_batch(task.job_id, task.batch_number, task.task_name)
            executed += 1
            if on_task is not None:
                on_task(job)
        return executed
