"""Import jobs: data model, persistence, stage processors and the orchestrator."""

from importer.jobs.events import Event, EventStore, InMemoryEventStore, SqlEventStore, build_event
from importer.jobs.models import (
    STAGE_ORDER,
    TASK_NAMES,
    VALID_STAGE_TRANSITIONS,
    DatasetConfig,
    ImportJob,
    InvalidStageTransitionError,
    JobError,
    ProcessingStage,
)
from importer.jobs.orchestrator import OrchestratorConfig, PipelineOrchestrator
from importer.jobs.queue import InMemoryQueue, Queue, QueuedTask
from importer.jobs.stages import GeocodingThresholdError, SchemaValidationError
from importer.jobs.store import InMemoryJobStore, JobNotFoundError, JobStore, SqlJobStore
from importer.jobs.sweeper import SweepResult, sweep_stuck_jobs

__all__ = [
    "DatasetConfig",
    "Event",
    "EventStore",
    "GeocodingThresholdError",
    "ImportJob",
    "InMemoryEventStore",
    "InMemoryJobStore",
    "InMemoryQueue",
    "InvalidStageTransitionError",
    "JobError",
    "JobNotFoundError",
    "JobStore",
    "OrchestratorConfig",
    "PipelineOrchestrator",
    "ProcessingStage",
    "Queue",
    "QueuedTask",
    "STAGE_ORDER",
    "SchemaValidationError",
    "SqlEventStore",
    "SqlJobStore",
    "SweepResult",
    "TASK_NAMES",
    "VALID_STAGE_TRANSITIONS",
    "build_event",
    "sweep_stuck_jobs",
]
