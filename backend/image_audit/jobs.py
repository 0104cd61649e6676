"""Job state and the job store: process-lifetime table of conversion jobs.

Entries are never evicted; they live until the process restarts. The store
is injected into the scheduler so tests (or a durable backend later) can
substitute their own implementation.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional

from image_audit.errors import InvalidTransition, JobNotFound

logger = logging.getLogger("image_audit.jobs")


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Allowed forward moves; terminal states have none
TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


@dataclass
class Job:
    """Conversion job. results holds ConversionResult items, one per completed image."""

    id: str
    total_count: int
    status: JobStatus = JobStatus.PENDING
    completed_count: int = 0
    results: tuple = ()
    error: Optional[str] = None

    def snapshot(self) -> "Job":
        return replace(self, results=tuple(self.results))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "completedCount": self.completed_count,
            "totalCount": self.total_count,
            "results": [r.to_dict() for r in self.results],
            "error": self.error,
        }


class JobStore(ABC):
    """Interface used by the scheduler (writer) and the status endpoint (reader)."""

    @abstractmethod
    def create(self, job: Job) -> Job:
        raise NotImplementedError

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        """Snapshot of the job, or None for an unknown id."""
        raise NotImplementedError

    @abstractmethod
    def update(
        self,
        job_id: str,
        *,
        status: Optional[JobStatus] = None,
        results: Iterable = (),
        error: Optional[str] = None,
    ) -> Job:
        """Append results (advancing completed_count by the same amount) and/or change status."""
        raise NotImplementedError


class InMemoryJobStore(JobStore):
    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            self._jobs[job.id] = job.snapshot()
            return job.snapshot()

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot() if job is not None else None

    def update(self, job_id, *, status=None, results=(), error=None) -> Job:
        new_results = tuple(results)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            if job.status.is_terminal:
                raise InvalidTransition(f"Job {job_id} is already {job.status.value}")
            if status is not None and status != job.status and status not in TRANSITIONS[job.status]:
                raise InvalidTransition(f"Job {job_id} cannot move from {job.status.value} to {status.value}")
            if job.completed_count + len(new_results) > job.total_count:
                raise InvalidTransition(
                    f"Job {job_id} would complete {job.completed_count + len(new_results)} of {job.total_count} items"
                )
            # Results and count change together so readers never see them disagree
            job.results = job.results + new_results
            job.completed_count += len(new_results)
            if status is not None:
                job.status = status
            if error is not None:
                job.error = error
            return job.snapshot()
