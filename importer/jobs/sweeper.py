"""
Stuck-job sweep.

A job whose worker died mid-batch stays in its stage forever because
nothing re-queues it. The sweep fails such jobs once they have made no
progress for longer than the threshold; it never resumes them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger

from importer.jobs.models import ImportJob, ProcessingStage, TERMINAL_STAGES, utcnow
from importer.jobs.store import JobStore

ACTIVE_STAGES = {stage for stage in ProcessingStage if stage not in TERMINAL_STAGES}


@dataclass
class SweepResult:
    checked: int = 0
    reset: int = 0
    job_ids: list[str] = field(default_factory=list)
    dry_run: bool = False


def _last_activity(job: ImportJob) -> datetime:
    return job.last_run_at or job.updated_at


def is_job_stuck(job: ImportJob, now: datetime, threshold: timedelta) -> bool:
    if job.is_terminal:
        return False
    return now - _last_activity(job) >= threshold


def sweep_stuck_jobs(
    store: JobStore,
    threshold: timedelta = timedelta(hours=2),
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> SweepResult:
    """
    Fail every active job that has been idle for at least ``threshold``.

    Each candidate is reloaded and re-checked right before it is reset,
    so a job that made progress in the meantime is left alone.

    Args:
        store: Job store to sweep
        threshold: Idle time after which a job counts as stuck
        dry_run: Report stuck jobs without changing them
        now: Current time (defaults to the wall clock)

    Returns:
        SweepResult with the ids of the stuck jobs
    """
    now = now or utcnow()
    result = SweepResult(dry_run=dry_run)

    for job in store.list_jobs(stages=ACTIVE_STAGES):
        result.checked += 1
        if not is_job_stuck(job, now, threshold):
            continue

        if not dry_run:
            job = store.load(job.id)
            if not is_job_stuck(job, now, threshold):
                continue
            minutes = round((now - _last_activity(job)).total_seconds() / 60)
            job.fail(f"Import job was stuck in stage {job.stage.value} for {minutes} minutes")
            store.save(job)
            logger.info(f"Reset stuck import job {job.id} after {minutes} minutes")

        result.reset += 1
        result.job_ids.append(job.id)

    logger.info(
        f"Stuck-job sweep: checked {result.checked}, "
        f"{'would reset' if dry_run else 'reset'} {result.reset}"
    )
    return result
