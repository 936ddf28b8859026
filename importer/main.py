#!/usr/bin/env python3
"""
Event import pipeline - command line entry point.

Usage:
    python -m importer.main run events.xlsx --dataset concerts
    python -m importer.main status
    python -m importer.main sweep --dry-run
    python -m importer.main preview events.csv
"""

import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
from loguru import logger
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from importer.config import settings
from importer.database import create_all_tables, ensure_sqlite_directory
from importer.deduplication.ids import IdStrategy, IdStrategyType
from importer.geocoding.nominatim import NominatimGeocoder
from importer.jobs.events import SqlEventStore
from importer.jobs.models import DatasetConfig, ProcessingStage
from importer.jobs.orchestrator import OrchestratorConfig, PipelineOrchestrator
from importer.jobs.queue import InMemoryQueue
from importer.jobs.store import JobNotFoundError, SqlJobStore
from importer.jobs.sweeper import sweep_stuck_jobs
from importer.readers.base import ReaderError, get_reader
from importer.schema.builder import ProgressiveSchemaBuilder, SchemaBuilderConfig
from importer.schema.field_mapping import detect_field_mappings
from importer.schema.language import detect_language_from_samples


console = Console()

STAGE_STYLES = {
    ProcessingStage.COMPLETED: "green",
    ProcessingStage.FAILED: "red",
}


def _init_database() -> None:
    ensure_sqlite_directory()
    create_all_tables()


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def cli(debug):
    """Event import pipeline"""
    if debug:
        from importer.utils.logging import setup_logging
        setup_logging(level="DEBUG")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--dataset", "dataset_id", default=None, help="Dataset id (defaults to the file name)")
@click.option("--language", default=None, help="ISO 639-3 language code (detected when omitted)")
@click.option(
    "--id-strategy",
    type=click.Choice([s.value for s in IdStrategyType]),
    default=IdStrategyType.CONTENT_HASH.value,
    help="How unique event ids are derived",
)
@click.option("--external-id-path", default=None, help="Column holding the external id")
@click.option("--no-dedup", is_flag=True, help="Skip duplicate analysis")
@click.option("--no-geocoding", is_flag=True, help="Do not geocode addresses")
def run(
    file: Path,
    dataset_id: Optional[str],
    language: Optional[str],
    id_strategy: str,
    external_id_path: Optional[str],
    no_dedup: bool,
    no_geocoding: bool,
):
    """Import FILE and drive every sheet's job to completion."""
    console.print("\n[bold blue]Event Import[/bold blue]")
    console.print(f"File: {file}")

    _init_database()

    dataset = DatasetConfig(
        id=dataset_id or file.stem,
        name=dataset_id or file.stem,
        language=language,
        id_strategy=IdStrategy(type=IdStrategyType(id_strategy), external_id_path=external_id_path),
        deduplication_enabled=not no_dedup,
        geocoding_enabled=not no_geocoding,
    )
    geocoder = NominatimGeocoder() if settings.geocoding.enabled and not no_geocoding else None

    store = SqlJobStore()
    orchestrator = PipelineOrchestrator(
        store=store,
        queue=InMemoryQueue(),
        event_store=SqlEventStore(),
        geocoder=geocoder,
        config=OrchestratorConfig.from_settings(),
    )

    try:
        jobs = orchestrator.create_jobs(file, dataset)
    except ReaderError as e:
        console.print(f"[red]Cannot import {file.name}: {e}[/red]")
        sys.exit(1)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Importing...", total=None)

        def on_task(job):
            progress.update(task, description=f"{job.sheet_name}: {job.stage.value} (batch {job.batch_number})")

        executed = orchestrator.drain(on_task=on_task)
        progress.update(task, description=f"[green]Done ({executed} batches)[/green]")

    console.print("\n[bold]Import Summary[/bold]")
    table = Table()
    table.add_column("Job")
    table.add_column("Sheet")
    table.add_column("Stage")
    table.add_column("Rows", justify="right")
    table.add_column("Events", justify="right")
    table.add_column("Duplicates", justify="right")
    table.add_column("Geocoded", justify="right")
    table.add_column("Errors", justify="right")

    failed = False
    for created in jobs:
        job = store.load(created.id)
        style = STAGE_STYLES.get(job.stage, "yellow")
        results = job.results or {}
        table.add_row(
            job.id[:8],
            job.sheet_name,
            f"[{style}]{job.stage.value}[/{style}]",
            f"{job.total_rows:,}",
            f"{job.events_created:,}",
            f"{results.get('duplicates_skipped', len(job.duplicates)):,}",
            f"{job.geocoding_counts['geocoded']:,}",
            f"{len(job.errors):,}",
        )
        failed = failed or job.stage == ProcessingStage.FAILED

    console.print(table)
    if failed:
        sys.exit(1)


@cli.command()
@click.argument("job_id", required=False)
def status(job_id: Optional[str]):
    """Show import jobs, or the errors of one job."""
    _init_database()
    store = SqlJobStore()

    if job_id:
        try:
            job = store.load(job_id)
        except JobNotFoundError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)

        console.print(f"\n[bold blue]Import job {job.id}[/bold blue]")
        console.print(f"Dataset: {job.dataset.id}  Sheet: {job.sheet_name}  Stage: {job.stage.value}")
        console.print(f"Rows: {job.total_rows:,}  Events: {job.events_created:,}  Language: {job.language}")

        if job.errors:
            table = Table(title="Errors")
            table.add_column("Row", justify="right")
            table.add_column("Stage")
            table.add_column("Kind")
            table.add_column("Message")
            for error in job.errors:
                table.add_row("" if error.row is None else str(error.row), error.stage, error.kind, error.message)
            console.print(table)
        return

    jobs = store.list_jobs()
    if not jobs:
        console.print("[yellow]No import jobs yet.[/yellow]")
        return

    table = Table(title="Import Jobs")
    table.add_column("Job")
    table.add_column("Dataset")
    table.add_column("Sheet")
    table.add_column("Stage")
    table.add_column("Batch", justify="right")
    table.add_column("Events", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Last run")
    for job in jobs:
        style = STAGE_STYLES.get(job.stage, "yellow")
        table.add_row(
            job.id,
            job.dataset.id,
            job.sheet_name,
            f"[{style}]{job.stage.value}[/{style}]",
            str(job.batch_number),
            f"{job.events_created:,}",
            str(len(job.errors)),
            job.last_run_at.strftime("%Y-%m-%d %H:%M") if job.last_run_at else "-",
        )
    console.print(table)


@cli.command()
@click.option(
    "--threshold-hours",
    type=float,
    default=None,
    help="Idle hours after which a job is stuck (default from settings)",
)
@click.option("--dry-run", is_flag=True, help="Only report stuck jobs")
def sweep(threshold_hours: Optional[float], dry_run: bool):
    """Fail import jobs that stopped making progress."""
    _init_database()
    hours = threshold_hours if threshold_hours is not None else settings.jobs.stuck_threshold_hours

    result = sweep_stuck_jobs(SqlJobStore(), threshold=timedelta(hours=hours), dry_run=dry_run)

    verb = "Would reset" if dry_run else "Reset"
    console.print(f"Checked {result.checked} active jobs. {verb} {result.reset}.")
    for job_id in result.job_ids:
        console.print(f"  - {job_id}")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sheet", type=int, default=0, help="Sheet index")
@click.option("--rows", "limit", type=int, default=1000, help="Number of rows to analyse")
def preview(file: Path, sheet: int, limit: int):
    """Show the detected schema and field mappings of FILE without importing it."""
    try:
        reader = get_reader(file)
        rows = reader.read(file, sheet, 0, limit)
    except ReaderError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if not rows:
        console.print("[yellow]No data rows found.[/yellow]")
        return

    builder = ProgressiveSchemaBuilder(config=SchemaBuilderConfig.from_settings())
    builder.process_batch(rows)
    builder.detect_enum_fields()
    language = detect_language_from_samples(rows[:100], headers=list(rows[0].keys()))
    mappings = detect_field_mappings(builder.get_field_statistics(), language.code)
    schema = builder.get_schema()

    console.print(f"\n[bold blue]Preview: {file.name}[/bold blue]")
    console.print(f"Rows analysed: {len(rows)}  Language: {language.name} ({language.confidence:.2f})\n")

    table = Table(title="Fields")
    table.add_column("Field")
    table.add_column("Type")
    table.add_column("Required")
    table.add_column("Nulls", justify="right")
    table.add_column("Distinct", justify="right")
    table.add_column("Enum")
    required = set(schema.get("required", []))
    for path, stats in builder.get_field_statistics().items():
        prop_type = schema["properties"].get(path, {}).get("type", "")
        table.add_row(
            path,
            prop_type if isinstance(prop_type, str) else " | ".join(prop_type),
            "yes" if path in required else "",
            str(stats.null_count),
            f"{stats.unique_values}{'+' if stats.overflowed else ''}",
            ", ".join(str(v) for v in stats.enum_values[:5]) if stats.is_enum else "",
        )
    console.print(table)

    mapping_table = Table(title="Field Mappings")
    mapping_table.add_column("Role")
    mapping_table.add_column("Column")
    for role, column in mappings.to_dict().items():
        mapping_table.add_row(role, column or "[dim]-[/dim]")
    console.print(mapping_table)
    logger.debug(f"Preview schema: {schema}")


if __name__ == "__main__":
    cli()
