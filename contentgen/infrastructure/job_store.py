"""Persistence contract for the AI generation queue."""
from __future__ import annotations

import math
import threading
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Protocol

from contentgen.domain import TERMINAL_STATUSES, Job, JobStatus
from contentgen.domain.jobs import utcnow


class JobNotFoundError(LookupError):
    """Raised when a job id is unknown to the store."""


class JobStateError(RuntimeError):
    """Raised when a transition is not allowed from the job's current status."""


@dataclass(slots=True)
class JobPage:
    jobs: list[Job]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(slots=True)
class QueueStats:
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed


class JobStore(Protocol):
    """Contract the queue worker and the application layer depend on.

    Implementations own atomicity: ``mark_processing`` must claim the job and
    increment ``attempts`` in one step.
    """

    def create(
        self,
        request_type: str,
        input_data: dict[str, Any],
        *,
        user_id: str | None = None,
        max_attempts: int = 3,
        idempotency_key: str | None = None,
    ) -> Job: ...

    def find_by_id(self, job_id: str) -> Job | None: ...

    def find_by_idempotency_key(
        self, idempotency_key: str, *, request_type: str, user_id: str | None = None
    ) -> Job | None: ...

    def find_pending(self) -> Job | None: ...

    def mark_processing(self, job_id: str) -> Job: ...

    def mark_completed(self, job_id: str, result: dict[str, Any]) -> Job: ...

    def mark_failed(self, job_id: str, error_message: str) -> Job: ...

    def reset_to_pending(self, job_id: str) -> Job: ...

    def cancel(self, job_id: str) -> Job | None: ...

    def find_all(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        status: JobStatus | None = None,
        request_type: str | None = None,
        user_id: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> JobPage: ...

    def get_stats(self) -> QueueStats: ...

    def cleanup(self, older_than_days: int) -> int: ...

    def reset(self) -> None: ...


class InMemoryJobStore:
    """Thread-safe in-memory store for development and tests.

    Returned jobs are copies; mutating them does not change stored state.
    """

    SORT_FIELDS = {"created_at", "processed_at", "status"}

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._job_counter = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _next_job_id(self) -> str:
        self._job_counter += 1
        return f"job-{self._job_counter:05d}"

    def _get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _copy(job: Job) -> Job:
        return replace(
            job,
            input_data=dict(job.input_data),
            result=dict(job.result) if job.result is not None else None,
        )

    # ------------------------------------------------------------------
    # queue operations
    # ------------------------------------------------------------------
    def create(
        self,
        request_type: str,
        input_data: dict[str, Any],
        *,
        user_id: str | None = None,
        max_attempts: int = 3,
        idempotency_key: str | None = None,
    ) -> Job:
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        with self._lock:
            job = Job(
                id=self._next_job_id(),
                request_type=request_type,
                input_data=dict(input_data),
                max_attempts=max_attempts,
                user_id=user_id,
                idempotency_key=idempotency_key,
            )
            self._jobs[job.id] = job
            return self._copy(job)

    def find_by_id(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return self._copy(job) if job else None

    def find_by_idempotency_key(
        self, idempotency_key: str, *, request_type: str, user_id: str | None = None
    ) -> Job | None:
        with self._lock:
            for job in self._jobs.values():
                if (
                    job.idempotency_key == idempotency_key
                    and job.request_type == request_type
                    and job.user_id == user_id
                ):
                    return self._copy(job)
        return None

    def find_pending(self) -> Job | None:
        with self._lock:
            pending = [job for job in self._jobs.values() if job.status is JobStatus.PENDING]
            if not pending:
                return None
            oldest = min(pending, key=lambda job: (job.created_at, job.id))
            return self._copy(oldest)

    def mark_processing(self, job_id: str) -> Job:
        with self._lock:
            job = self._get(job_id)
            if job.status is not JobStatus.PENDING:
                raise JobStateError(f"Job {job_id} is {job.status.value}, expected pending")
            job.status = JobStatus.PROCESSING
            job.attempts += 1
            return self._copy(job)

    def mark_completed(self, job_id: str, result: dict[str, Any]) -> Job:
        with self._lock:
            job = self._get(job_id)
            job.status = JobStatus.COMPLETED
            job.result = dict(result)
            job.error_message = None
            job.processed_at = utcnow()
            return self._copy(job)

    def mark_failed(self, job_id: str, error_message: str) -> Job:
        with self._lock:
            job = self._get(job_id)
            job.status = JobStatus.FAILED
            job.error_message = error_message
            job.processed_at = utcnow()
            return self._copy(job)

    def reset_to_pending(self, job_id: str) -> Job:
        with self._lock:
            job = self._get(job_id)
            if job.status is not JobStatus.PROCESSING:
                raise JobStateError(f"Job {job_id} is {job.status.value}, expected processing")
            job.status = JobStatus.PENDING
            job.error_message = None
            job.processed_at = None
            return self._copy(job)

    def cancel(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PENDING:
                return None
            job.status = JobStatus.FAILED
            job.error_message = "Cancelled by user"
            job.processed_at = utcnow()
            return self._copy(job)

    # ------------------------------------------------------------------
    # reporting
    # ------------------------------------------------------------------
    def find_all(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        status: JobStatus | None = None,
        request_type: str | None = None,
        user_id: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> JobPage:
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")
        if sort_by not in self.SORT_FIELDS:
            raise ValueError(f"Unsupported sort field: {sort_by}")

        with self._lock:
            jobs = [
                job
                for job in self._jobs.values()
                if (status is None or job.status is status)
                and (request_type is None or job.request_type == request_type)
                and (user_id is None or job.user_id == user_id)
            ]

            def sort_key(job: Job) -> tuple:
                value = getattr(job, sort_by)
                if sort_by == "status":
                    value = job.status.value
                # jobs without processed_at sort first
                return (value is not None, value or 0, job.id)

            jobs.sort(key=sort_key, reverse=sort_order == "desc")
            start = (page - 1) * limit
            window = [self._copy(job) for job in jobs[start : start + limit]]
            return JobPage(jobs=window, page=page, limit=limit, total=len(jobs))

    def get_stats(self) -> QueueStats:
        stats = QueueStats()
        with self._lock:
            for job in self._jobs.values():
                name = job.status.value
                setattr(stats, name, getattr(stats, name) + 1)
        return stats

    def cleanup(self, older_than_days: int) -> int:
        cutoff = utcnow() - timedelta(days=older_than_days)
        with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status in TERMINAL_STATUSES
                and job.processed_at is not None
                and job.processed_at < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()
            self._job_counter = 0
