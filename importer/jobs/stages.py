"""
Stage processors.

One processor per pipeline stage. The orchestrator reads a batch, hands
it to the processor for the job's current stage and, once the stage's
rows are exhausted, calls ``complete`` and moves on. Processors mutate the
job in place; only the orchestrator saves it.

Row-level problems are recorded on the job and never abort a batch. Any
exception escaping a processor fails the job.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from loguru import logger

from importer.deduplication.analysis import DuplicateRows, analyze_duplicate_batch
from importer.deduplication.ids import get_by_path, resolve_unique_id
from importer.geocoding.base import Geocoder, GeocodingError
from importer.jobs.events import (
    EventStore,
    build_event,
    extract_address,
    extract_row_coordinates,
    missing_required_fields,
)
from importer.jobs.models import ImportJob, ProcessingStage
from importer.normalizers.coordinates import (
    detect_swapped_coordinates,
    extract_from_combined,
    parse_coordinate,
)
from importer.schema.builder import ProgressiveSchemaBuilder
from importer.schema.comparison import compare_schemas, generate_change_summary
from importer.schema.field_mapping import FieldMappings, detect_field_mappings
from importer.schema.language import detect_language_from_samples

if TYPE_CHECKING:
    from importer.jobs.orchestrator import OrchestratorConfig

IndexedRows = list[tuple[int, dict[str, Any]]]


class SchemaValidationError(Exception):
    """Raised when a locked dataset schema would change in a breaking way."""
    pass


class GeocodingThresholdError(Exception):
    """Raised when too many geocoding attempts failed."""
    pass


@dataclass
class StageContext:
    """Collaborators available to a processor during one invocation."""

    config: "OrchestratorConfig"
    event_store: EventStore
    geocoder: Optional[Geocoder]
    now: datetime


class StageProcessor(ABC):
    stage: ProcessingStage
    # False for stages that only act once the previous stage finished
    reads_rows: bool = True
    # Whether rows flagged as duplicates are dropped before processing
    filters_duplicates: bool = True

    def is_applicable(self, ctx: StageContext, job: ImportJob) -> bool:
        return True

    def skip(self, ctx: StageContext, job: ImportJob) -> None:
        logger.info(f"Job {job.id}: skipping stage {self.stage.value}")

    def process_batch(self, ctx: StageContext, job: ImportJob, rows: IndexedRows) -> None:
        pass

    @abstractmethod
    def complete(self, ctx: StageContext, job: ImportJob) -> None:
        """Finish the stage after its last batch."""
        pass


class DetectDatasetProcessor(StageProcessor):
    """Counts the sheet's rows and detects its language."""

    stage = ProcessingStage.DETECT_DATASET
    filters_duplicates = False

    def process_batch(self, ctx: StageContext, job: ImportJob, rows: IndexedRows) -> None:
        if job.batch_number == 0 and rows:
            if job.dataset.language:
                job.language = job.dataset.language
                job.language_confidence = 1.0
            else:
                sample = [row for _, row in rows[: ctx.config.language_sample_rows]]
                result = detect_language_from_samples(sample, headers=list(rows[0][1].keys()))
                job.language = result.code
                job.language_confidence = result.confidence
                logger.info(
                    f"Job {job.id}: detected language {result.name} "
                    f"(confidence {result.confidence:.2f}{'' if result.is_reliable else ', unreliable'})"
                )
        job.total_rows += len(rows)

    def complete(self, ctx: StageContext, job: ImportJob) -> None:
        if job.total_rows == 0:
            job.add_error(None, "No data rows found", kind="batch")
            logger.warning(f"Job {job.id}: sheet '{job.sheet_name}' has no data rows")
        if job.language is None:
            job.language = job.dataset.language or "eng"
        logger.info(f"Job {job.id}: {job.total_rows} rows in sheet '{job.sheet_name}'")


class AnalyzeDuplicatesProcessor(StageProcessor):
    """Finds internal and external duplicates under the dataset's id strategy."""

    stage = ProcessingStage.ANALYZE_DUPLICATES
    filters_duplicates = False

    def is_applicable(self, ctx: StageContext, job: ImportJob) -> bool:
        return job.dataset.deduplication_enabled

    def skip(self, ctx: StageContext, job: ImportJob) -> None:
        super().skip(ctx, job)
        job.duplicates = DuplicateRows()
        job.duplicates_summary = {"strategy": "disabled", **job.duplicates.summary(job.total_rows)}

    def process_batch(self, ctx: StageContext, job: ImportJob, rows: IndexedRows) -> None:
        if not rows:
            return
        dataset = job.dataset
        errors = analyze_duplicate_batch(
            [row for _, row in rows],
            start_row=rows[0][0],
            dataset_id=dataset.id,
            strategy=dataset.id_strategy,
            seen_ids=job.seen_ids,
            duplicates=job.duplicates,
            existing_ids=lambda ids: ctx.event_store.existing_unique_ids(dataset.id, ids),
        )
        for row_number, message in errors:
            job.add_error(row_number, f"Could not derive unique id: {message}")

    def complete(self, ctx: StageContext, job: ImportJob) -> None:
        job.duplicates_summary = {
            "strategy": job.dataset.id_strategy.type.value,
            **job.duplicates.summary(job.total_rows),
        }
        # Only needed while scanning
        job.seen_ids = {}
        summary = job.duplicates_summary
        logger.info(
            f"Job {job.id}: {summary['internal']} internal and {summary['external']} external duplicates"
        )


class DetectSchemaProcessor(StageProcessor):
    """Builds the schema progressively and detects field mappings at the end."""

    stage = ProcessingStage.DETECT_SCHEMA

    def process_batch(self, ctx: StageContext, job: ImportJob, rows: IndexedRows) -> None:
        if not rows:
            return
        builder = ProgressiveSchemaBuilder.restore(job.schema_builder_state, ctx.config.schema)
        result = builder.process_batch(row for _, row in rows)
        if result.schema_changed:
            logger.info(f"Job {job.id}: schema now at version {builder.state.version}")
        job.schema_builder_state = builder.get_state()

    def complete(self, ctx: StageContext, job: ImportJob) -> None:
        builder = ProgressiveSchemaBuilder.restore(job.schema_builder_state, ctx.config.schema)
        enums = builder.detect_enum_fields()
        job.detected_schema = builder.get_schema()
        job.schema_builder_state = builder.get_state()
        job.detected_field_mappings = detect_field_mappings(builder.get_field_statistics(), job.language or "eng")

        detected = {k: v for k, v in job.detected_field_mappings.to_dict().items() if v}
        logger.info(
            f"Job {job.id}: schema with {len(builder.get_field_statistics())} fields, "
            f"{len(enums)} enums; mappings {detected}"
        )


class ValidateSchemaProcessor(StageProcessor):
    """Compares the detected schema with the dataset's current one."""

    stage = ProcessingStage.VALIDATE_SCHEMA
    reads_rows = False

    def complete(self, ctx: StageContext, job: ImportJob) -> None:
        current = job.dataset.current_schema
        if not current:
            job.schema_comparison = None
            logger.info(f"Job {job.id}: dataset has no schema yet, accepting detected schema")
            return

        comparison = compare_schemas(current, job.detected_schema or {})
        job.schema_comparison = comparison.to_dict()
        summary = generate_change_summary(comparison)

        if comparison.is_breaking and job.dataset.schema_locked:
            raise SchemaValidationError(f"Breaking schema changes for locked dataset {job.dataset.id}\n{summary}")

        if comparison.changes:
            logger.info(f"Job {job.id}: {summary}")


class GeocodeProcessor(StageProcessor):
    """Validates imported coordinates and geocodes addresses of rows without them."""

    stage = ProcessingStage.GEOCODE

    def is_applicable(self, ctx: StageContext, job: ImportJob) -> bool:
        if not (ctx.config.geocoding_enabled and job.dataset.geocoding_enabled):
            return False
        mappings = job.field_mappings
        return mappings.has_coordinates or bool(mappings.location_path and ctx.geocoder is not None)

    @staticmethod
    def _coordinate_samples(rows: IndexedRows, mappings: FieldMappings) -> list[tuple[float, float]]:
        samples = []
        for _, row in rows:
            if mappings.latitude_path and mappings.longitude_path:
                lat = parse_coordinate(get_by_path(row, mappings.latitude_path))
                lon = parse_coordinate(get_by_path(row, mappings.longitude_path))
            elif mappings.coordinates_path:
                extraction = extract_from_combined(
                    get_by_path(row, mappings.coordinates_path), mappings.coordinates_format or "unknown"
                )
                lat, lon = extraction.latitude, extraction.longitude
            else:
                return []
            if lat is not None and lon is not None:
                samples.append((lat, lon))
        return samples

    def _geocode(self, ctx: StageContext, job: ImportJob, row_number: int, address: str) -> None:
        try:
            result = ctx.geocoder.geocode(address)
        except Exception as e:
            # Any geocoder failure only costs this row its coordinates
            job.geocoding_cache[address] = None
            job.geocoding_counts["failed"] += 1
            job.add_error(row_number, f"Geocoding failed for '{address}': {e}")
            if isinstance(e, GeocodingError):
                logger.debug(f"Job {job.id}: geocoding failed for row {row_number}: {e}")
            else:
                logger.warning(f"Job {job.id}: geocoder raised {type(e).__name__} for row {row_number}: {e}")
            return
        job.geocoding_cache[address] = result.to_dict()
        job.geocoding_counts["geocoded"] += 1

    def process_batch(self, ctx: StageContext, job: ImportJob, rows: IndexedRows) -> None:
        mappings = job.field_mappings

        if job.auto_fix_swapped is None:
            job.auto_fix_swapped = detect_swapped_coordinates(self._coordinate_samples(rows, mappings))
            if job.auto_fix_swapped:
                logger.warning(f"Job {job.id}: latitude and longitude look swapped, fixing them on import")

        counts = job.geocoding_counts
        for row_number, row in rows:
            coordinates = extract_row_coordinates(row, mappings, auto_fix=job.auto_fix_swapped)
            if coordinates is not None and coordinates.is_valid:
                counts["imported"] += 1
                continue
            if coordinates is not None:
                job.add_error(row_number, f"Invalid coordinates ({coordinates.validation_status.value})")

            address = extract_address(row, mappings)
            if not address or ctx.geocoder is None:
                counts["skipped"] += 1
                continue

            if address not in job.geocoding_cache:
                self._geocode(ctx, job, row_number, address)
            elif job.geocoding_cache[address] is None:
                counts["failed"] += 1
                job.add_error(row_number, f"Geocoding failed for '{address}' (cached)")
            else:
                counts["geocoded"] += 1

    def complete(self, ctx: StageContext, job: ImportJob) -> None:
        counts = job.geocoding_counts
        attempts = counts["geocoded"] + counts["failed"]
        logger.info(
            f"Job {job.id}: geocoding done - {counts['imported']} imported, {counts['geocoded']} geocoded, "
            f"{counts['failed']} failed, {counts['skipped']} skipped"
        )

        max_rate = ctx.config.max_geocoding_failure_rate
        if max_rate is not None and attempts:
            failure_rate = counts["failed"] / attempts
            if failure_rate > max_rate:
                raise GeocodingThresholdError(
                    f"Geocoding failure rate {failure_rate:.1%} exceeds the allowed {max_rate:.1%}"
                )


class CreateEventsProcessor(StageProcessor):
    """Materializes one event per unique row."""

    stage = ProcessingStage.CREATE_EVENTS

    def process_batch(self, ctx: StageContext, job: ImportJob, rows: IndexedRows) -> None:
        dataset = job.dataset
        events = []
        batch_ids: set[str] = set()

        for row_number, row in rows:
            missing = missing_required_fields(row, dataset.required_fields)
            if missing:
                job.add_error(row_number, f"Missing required fields: {', '.join(missing)}")
                continue

            try:
                unique_id, id_error = resolve_unique_id(row, dataset.id_strategy, dataset.id)
                if id_error:
                    logger.debug(f"Job {job.id}: row {row_number} falls back to content hash ({id_error})")
                if unique_id in batch_ids:
                    job.existing_events_skipped += 1
                    continue
                event = build_event(row, row_number, job, unique_id, now=ctx.now)
            except Exception as e:
                job.add_error(row_number, f"Failed to create event: {e}")
                logger.debug(f"Job {job.id}: row {row_number} failed: {e}")
                continue

            batch_ids.add(unique_id)
            events.append(event)

        existing = ctx.event_store.existing_unique_ids(dataset.id, [e.unique_id for e in events])
        created = ctx.event_store.create_many([e for e in events if e.unique_id not in existing])
        job.events_created += created
        job.existing_events_skipped += len(events) - created

    def complete(self, ctx: StageContext, job: ImportJob) -> None:
        job.results = {
            "total_events": job.events_created,
            "duplicates_skipped": len(job.duplicates) + job.existing_events_skipped,
            "geocoded": job.geocoding_counts["geocoded"],
            "errors": len(job.errors),
            "rows_processed": job.total_rows,
        }
        logger.info(f"Job {job.id}: created {job.events_created} events")


# Stage dispatch table
STAGE_PROCESSORS: dict[ProcessingStage, StageProcessor] = {
    processor.stage: processor
    for processor in (
        DetectDatasetProcessor(),
        AnalyzeDuplicatesProcessor(),
        DetectSchemaProcessor(),
        ValidateSchemaProcessor(),
        GeocodeProcessor(),
        CreateEventsProcessor(),
    )
}
