"""
Job stores.

``load`` always returns a fresh ImportJob rebuilt from the persisted
document, so a processor mutating a loaded job never touches stored state
until ``save`` is called.
"""

import copy
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from importer.database import ImportJobRecord, get_session
from importer.jobs.models import ImportJob, ProcessingStage, utcnow


class JobNotFoundError(Exception):
    """Raised when a job id is not in the store."""

    def __init__(self, job_id: str):
        super().__init__(f"Import job not found: {job_id}")
        self.job_id = job_id


class JobStore(ABC):
    @abstractmethod
    def load(self, job_id: str) -> ImportJob:
        """
        Load a job by id.

        Raises:
            JobNotFoundError: If there is no such job
        """
        pass

    @abstractmethod
    def save(self, job: ImportJob) -> None:
        pass

    @abstractmethod
    def list_jobs(self, stages: Optional[set[ProcessingStage]] = None) -> list[ImportJob]:
        """All jobs, optionally only those in the given stages, oldest first."""
        pass


class InMemoryJobStore(JobStore):
    """Keeps serialized job documents in a dict."""

    def __init__(self):
        self._documents: dict[str, dict] = {}

    def load(self, job_id: str) -> ImportJob:
        document = self._documents.get(job_id)
        if document is None:
            raise JobNotFoundError(job_id)
        return ImportJob.from_dict(copy.deepcopy(document))

    def save(self, job: ImportJob) -> None:
        job.updated_at = utcnow()
        self._documents[job.id] = copy.deepcopy(job.to_dict())

    def list_jobs(self, stages: Optional[set[ProcessingStage]] = None) -> list[ImportJob]:
        jobs = [ImportJob.from_dict(copy.deepcopy(d)) for d in self._documents.values()]
        if stages is not None:
            jobs = [job for job in jobs if job.stage in stages]
        return sorted(jobs, key=lambda job: job.created_at)

    def __len__(self) -> int:
        return len(self._documents)


class SqlJobStore(JobStore):
    """Stores jobs in the ``import_jobs`` table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def load(self, job_id: str) -> ImportJob:
        with get_session(self.session_factory) as session:
            record = session.get(ImportJobRecord, job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            return ImportJob.from_dict(copy.deepcopy(record.document))

    def save(self, job: ImportJob) -> None:
        job.updated_at = utcnow()
        document = job.to_dict()
        with get_session(self.session_factory) as session:
            record = session.get(ImportJobRecord, job.id)
            if record is None:
                record = ImportJobRecord(id=job.id, created_at=job.created_at)
                session.add(record)
            record.dataset_id = job.dataset.id
            record.file_path = job.file_path
            record.sheet_index = job.sheet_index
            record.stage = job.stage.value
            record.batch_number = job.batch_number
            record.error_count = len(job.errors)
            record.document = document
            record.last_run_at = job.last_run_at
            record.updated_at = job.updated_at

    def list_jobs(self, stages: Optional[set[ProcessingStage]] = None) -> list[ImportJob]:
        stmt = select(ImportJobRecord).order_by(ImportJobRecord.created_at)
        if stages is not None:
            stmt = stmt.where(ImportJobRecord.stage.in_([s.value for s in stages]))
        with get_session(self.session_factory) as session:
            return [ImportJob.from_dict(copy.deepcopy(r.document)) for r in session.scalars(stmt)]
