"""
Import job data model.

An ImportJob is one sheet of an uploaded file on its way to becoming
events. Everything the orchestrator needs between invocations lives on
the job and round-trips through ``to_dict``/``from_dict``.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from importer.deduplication.analysis import DuplicateRows
from importer.deduplication.ids import IdStrategy
from importer.schema.field_mapping import FieldMappings


class ProcessingStage(str, Enum):
    DETECT_DATASET = "detect_dataset"
    ANALYZE_DUPLICATES = "analyze_duplicates"
    DETECT_SCHEMA = "detect_schema"
    VALIDATE_SCHEMA = "validate_schema"
    GEOCODE = "geocode"
    CREATE_EVENTS = "create_events"
    COMPLETED = "completed"
    FAILED = "failed"


STAGE_ORDER = [
    ProcessingStage.DETECT_DATASET,
    ProcessingStage.ANALYZE_DUPLICATES,
    ProcessingStage.DETECT_SCHEMA,
    ProcessingStage.VALIDATE_SCHEMA,
    ProcessingStage.GEOCODE,
    ProcessingStage.CREATE_EVENTS,
    ProcessingStage.COMPLETED,
]

TERMINAL_STAGES = {ProcessingStage.COMPLETED, ProcessingStage.FAILED}

# Queue task name per stage
TASK_NAMES = {
    ProcessingStage.DETECT_DATASET: "detect-dataset",
    ProcessingStage.ANALYZE_DUPLICATES: "analyze-duplicates",
    ProcessingStage.DETECT_SCHEMA: "detect-schema",
    ProcessingStage.VALIDATE_SCHEMA: "validate-schema",
    ProcessingStage.GEOCODE: "geocode-batch",
    ProcessingStage.CREATE_EVENTS: "create-events",
}


def _build_transitions() -> dict[ProcessingStage, set[ProcessingStage]]:
    transitions: dict[ProcessingStage, set[ProcessingStage]] = {}
    for index, stage in enumerate(STAGE_ORDER):
        if stage in TERMINAL_STAGES:
            transitions[stage] = set()
            continue
        # Stay, move forward (skipping stages that do not apply) or fail
        transitions[stage] = {stage, *STAGE_ORDER[index + 1:], ProcessingStage.FAILED}
    transitions[ProcessingStage.FAILED] = set()
    return transitions


VALID_STAGE_TRANSITIONS = _build_transitions()


class InvalidStageTransitionError(Exception):
    """Raised when a job is moved to a stage it cannot reach from its current one."""

    def __init__(self, from_stage: ProcessingStage, to_stage: ProcessingStage):
        super().__init__(f"Invalid stage transition: {from_stage.value} -> {to_stage.value}")
        self.from_stage = from_stage
        self.to_stage = to_stage


def validate_transition(from_stage: ProcessingStage, to_stage: ProcessingStage) -> None:
    if to_stage not in VALID_STAGE_TRANSITIONS[from_stage]:
        raise InvalidStageTransitionError(from_stage, to_stage)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class JobError:
    """
    One entry of a job's error list.

    ``kind`` is ``row`` for a single bad row, ``batch`` for a problem with a
    whole batch or sheet, and ``fatal`` for the error that failed the job.
    """

    row: Optional[int]
    message: str
    stage: str
    kind: str = "row"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobError":
        return cls(**data)


@dataclass
class StageProgress:
    rows_processed: int = 0
    total_rows: int = 0
    batches: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageProgress":
        return cls(**data)


@dataclass
class DatasetConfig:
    """Per-dataset import configuration owned by the host."""

    id: str
    name: str = ""
    # ISO 639-3; None means detect from the data
    language: Optional[str] = None
    id_strategy: IdStrategy = field(default_factory=IdStrategy)
    deduplication_enabled: bool = True
    field_mapping_overrides: dict[str, Any] = field(default_factory=dict)
    schema_locked: bool = False
    current_schema: Optional[dict[str, Any]] = None
    required_fields: list[str] = field(default_factory=list)
    geocoding_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["id_strategy"] = self.id_strategy.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DatasetConfig":
        data = dict(data)
        data["id_strategy"] = IdStrategy.from_dict(data.get("id_strategy"))
        return cls(**data)


@dataclass
class ImportJob:
    """Persisted state of one sheet's import."""

    id: str
    dataset: DatasetConfig
    file_path: str
    sheet_index: int = 0
    sheet_name: str = ""
    stage: ProcessingStage = ProcessingStage.DETECT_DATASET
    batch_number: int = 0
    progress: dict[str, StageProgress] = field(default_factory=dict)
    total_rows: int = 0

    language: Optional[str] = None
    language_confidence: float = 0.0

    # Duplicate analysis
    seen_ids: dict[str, int] = field(default_factory=dict)
    duplicates: DuplicateRows = field(default_factory=DuplicateRows)
    duplicates_summary: Optional[dict[str, Any]] = None

    # Schema detection and validation
    schema_builder_state: Optional[dict[str, Any]] = None
    detected_schema: Optional[dict[str, Any]] = None
    schema_comparison: Optional[dict[str, Any]] = None
    detected_field_mappings: Optional[FieldMappings] = None

    # Geocoding
    auto_fix_swapped: Optional[bool] = None
    # Address -> result dict, or None when geocoding that address failed
    geocoding_cache: dict[str, Optional[dict[str, Any]]] = field(default_factory=dict)
    geocoding_counts: dict[str, int] = field(
        default_factory=lambda: {"imported": 0, "geocoded": 0, "failed": 0, "skipped": 0}
    )

    # Event creation
    events_created: int = 0
    existing_events_skipped: int = 0

    errors: list[JobError] = field(default_factory=list)
    results: Optional[dict[str, Any]] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_run_at: Optional[datetime] = None

    @classmethod
    def new(cls, dataset: DatasetConfig, file_path: str, sheet_index: int = 0, sheet_name: str = "") -> "ImportJob":
        return cls(
            id=uuid.uuid4().hex,
            dataset=dataset,
            file_path=str(file_path),
            sheet_index=sheet_index,
            sheet_name=sheet_name,
        )

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    @property
    def duplicate_row_numbers(self) -> set[int]:
        return self.duplicates.row_numbers

    @property
    def field_mappings(self) -> FieldMappings:
        """Detected mappings with the dataset's overrides applied."""
        detected = self.detected_field_mappings or FieldMappings()
        return detected.merged_with(self.dataset.field_mapping_overrides)

    def stage_progress(self, stage: Optional[ProcessingStage] = None) -> StageProgress:
        stage = stage or self.stage
        return self.progress.setdefault(stage.value, StageProgress())

    def add_error(self, row: Optional[int], message: str, kind: str = "row") -> JobError:
        error = JobError(row=row, message=message, stage=self.stage.value, kind=kind)
        self.errors.append(error)
        return error

    def transition_to(self, stage: ProcessingStage) -> None:
        """
        Move to another stage and reset the batch cursor.

        Raises:
            InvalidStageTransitionError: If the move is not allowed
        """
        validate_transition(self.stage, stage)
        if stage != self.stage:
            self.stage = stage
            self.batch_number = 0

    def fail(self, message: str, row: Optional[int] = None) -> None:
        self.add_error(row, message, kind="fatal")
        self.transition_to(ProcessingStage.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "dataset": self.dataset.to_dict(),
            "file_path": self.file_path,
            "sheet_index": self.sheet_index,
            "sheet_name": self.sheet_name,
            "stage": self.stage.value,
            "batch_number": self.batch_number,
            "progress": {stage: p.to_dict() for stage, p in self.progress.items()},
            "total_rows": self.total_rows,
            "language": self.language,
            "language_confidence": self.language_confidence,
            "seen_ids": dict(self.seen_ids),
            "duplicates": self.duplicates.to_dict(),
            "duplicates_summary": self.duplicates_summary,
            "schema_builder_state": self.schema_builder_state,
            "detected_schema": self.detected_schema,
            "schema_comparison": self.schema_comparison,
            "detected_field_mappings": (
                self.detected_field_mappings.to_dict() if self.detected_field_mappings else None
            ),
            "auto_fix_swapped": self.auto_fix_swapped,
            "geocoding_cache": dict(self.geocoding_cache),
            "geocoding_counts": dict(self.geocoding_counts),
            "events_created": self.events_created,
            "existing_events_skipped": self.existing_events_skipped,
            "errors": [e.to_dict() for e in self.errors],
            "results": self.results,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportJob":
        mappings = data.get("detected_field_mappings")
        return cls(
            id=data["id"],
            dataset=DatasetConfig.from_dict(data["dataset"]),
            file_path=data["file_path"],
            sheet_index=data.get("sheet_index", 0),
            sheet_name=data.get("sheet_name", ""),
            stage=ProcessingStage(data["stage"]),
            batch_number=data.get("batch_number", 0),
            progress={stage: StageProgress.from_dict(p) for stage, p in (data.get("progress") or {}).items()},
            total_rows=data.get("total_rows", 0),
            language=data.get("language"),
            language_confidence=data.get("language_confidence", 0.0),
            seen_ids=dict(data.get("seen_ids") or {}),
            duplicates=DuplicateRows.from_dict(data.get("duplicates")),
            duplicates_summary=data.get("duplicates_summary"),
            schema_builder_state=data.get("schema_builder_state"),
            detected_schema=data.get("detected_schema"),
            schema_comparison=data.get("schema_comparison"),
            detected_field_mappings=FieldMappings.from_dict(mappings) if mappings is not None else None,
            auto_fix_swapped=data.get("auto_fix_swapped"),
            geocoding_cache=dict(data.get("geocoding_cache") or {}),
            geocoding_counts=dict(
                data.get("geocoding_counts") or {"imported": 0, "geocoded": 0, "failed": 0, "skipped": 0}
            ),
            events_created=data.get("events_created", 0),
            existing_events_skipped=data.get("existing_events_skipped", 0),
            errors=[JobError.from_dict(e) for e in data.get("errors") or []],
            results=data.get("results"),
            created_at=_parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=_parse_datetime(data.get("updated_at")) or utcnow(),
            last_run_at=_parse_datetime(data.get("last_run_at")),
        )
