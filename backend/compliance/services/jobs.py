"""
Job Lifecycle Tracker

Durable state machine for long-running work. The jobs table is the single
source of truth; callers never hold locks of their own.

  create_job     → PENDING, progress 0
  update_status  → PROCESSING / COMPLETED / FAILED
  cancel_job     → FAILED with a cancellation message (PENDING / PROCESSING only)
  cleanup_older_than(cutoff) deletes terminal jobs last updated before cutoff

Invariants enforced on every write:
  - progress never decreases; COMPLETED forces progress = 100
  - result is set iff COMPLETED, error is set iff FAILED
  - end_time is set iff the job is terminal
  - a terminal job is never written again (JobStateError)

The last rule is what makes cancellation safe: a background runner that
finishes after the user cancelled gets JobStateError instead of silently
overwriting FAILED with a late success. Row locks (SELECT ... FOR UPDATE)
serialize the read-check-write on PostgreSQL.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select

from compliance.core.exceptions import JobNotFoundError, JobStateError, NotCancelableError, ValidationError
from compliance.db.session import SessionFactory, session_scope
from compliance.models.base import utcnow
from compliance.models.jobs import TERMINAL_STATUSES, Job, JobStatus, JobType

logger = logging.getLogger(__name__)

CANCELLATION_MESSAGE = "Job was canceled by the user"

MAX_PAGE_SIZE = 100


@dataclass
class JobPage:
    items:       list[Job]
    total:       int
    page:        int
    page_size:   int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


class JobTracker:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    # -----------------------------------------------------------------------
    # Create / read
    # -----------------------------------------------------------------------

    async def create_job(
        self,
        job_type:    JobType,
        query:       str = "",
        owner_id:    str | None = None,
        document_id: str | None = None,
        params:      dict[str, Any] | None = None,
    ) -> Job:
        now = utcnow()
        job = Job(
            job_type=JobType(job_type),
            status=JobStatus.PENDING,
            progress=0,
            query=query,
            owner_id=owner_id,
            document_id=document_id,
            params=params or {},
            start_time=now,
            created_at=now,
            updated_at=now,
        )
        async with session_scope(self._session_factory) as session:
            session.add(job)
        logger.info("Job created | id=%s type=%s owner=%s", job.id, job.job_type.value, owner_id)
        return job

    async def get_job(self, job_id: str) -> Job:
        async with session_scope(self._session_factory) as session:
            job = await session.get(Job, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(
        self,
        *,
        owner_id:  str | None = None,
        job_type:  JobType | None = None,
        status:    JobStatus | None = None,
        page:      int = 1,
        page_size: int = 10,
    ) -> JobPage:
        """Jobs matching all given filters, newest first."""
        if page < 1:
            raise ValidationError("page must be >= 1", details={"field": "page"})
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}",
                details={"field": "page_size"},
            )

        conditions = []
        if owner_id is not None:
            conditions.append(Job.owner_id == owner_id)
        if job_type is not None:
            conditions.append(Job.job_type == JobType(job_type))
        if status is not None:
            conditions.append(Job.status == JobStatus(status))

        async with session_scope(self._session_factory) as session:
            total = await session.scalar(select(func.count()).select_from(Job).where(*conditions))
            rows = await session.scalars(
                select(Job)
                .where(*conditions)
                .order_by(Job.created_at.desc(), Job.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = list(rows)

        return JobPage(items=items, total=total or 0, page=page, page_size=page_size)

    # -----------------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------------

    async def update_status(
        self,
        job_id:   str,
        status:   JobStatus,
        progress: int | None = None,
        result:   Any = None,
        error:    str | None = None,
    ) -> Job:
        """
        Apply one transition and return the updated job.

        Raises:
            JobNotFoundError: unknown id.
            JobStateError:    the job is already terminal, or the target
                              state is PENDING.
        """
        status = JobStatus(status)
        async with session_scope(self._session_factory) as session:
            job = await session.get(Job, job_id, with_for_update=True)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status.is_terminal:
                raise JobStateError(job_id, job.status.value)
            if status is JobStatus.PENDING and job.status is not JobStatus.PENDING:
                raise JobStateError(job_id, job.status.value, f"Job {job_id} cannot return to pending")

            self._apply(job, status, progress, result, error)

        logger.info(
            "Job status | id=%s status=%s progress=%d",
            job.id, job.status.value, job.progress,
        )
        return job

    @staticmethod
    def _apply(job: Job, status: JobStatus, progress: int | None, result: Any, error: str | None) -> None:
        now = utcnow()
        if progress is not None:
            job.progress = max(job.progress, min(100, max(0, int(progress))))

        job.status = status
        if status is JobStatus.COMPLETED:
            job.progress = 100
            job.result   = result if result is not None else {}
            job.error    = None
            job.end_time = now
        elif status is JobStatus.FAILED:
            job.error    = error or "Job failed"
            job.result   = None
            job.end_time = now
        else:
            job.result   = None
            job.error    = None
            job.end_time = None
        job.updated_at = now

    async def cancel_job(self, job_id: str) -> Job:
        """
        Cancel a PENDING or PROCESSING job by failing it immediately.

        In-flight remote calls are not interrupted; the owning runner sees
        JobStateError at its next checkpoint and stops.
        """
        async with session_scope(self._session_factory) as session:
            job = await session.get(Job, job_id, with_for_update=True)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status in TERMINAL_STATUSES:
                raise NotCancelableError(job_id, job.status.value)
            self._apply(job, JobStatus.FAILED, None, None, CANCELLATION_MESSAGE)

        logger.info("Job cancelled | id=%s", job_id)
        return job

    # -----------------------------------------------------------------------
    # Retention
    # -----------------------------------------------------------------------

    async def cleanup_older_than(self, cutoff: datetime) -> int:
        """Delete COMPLETED / FAILED jobs whose last update precedes ``cutoff``."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(Job).where(
                    Job.status.in_(TERMINAL_STATUSES),
                    Job.updated_at < cutoff,
                )
            )
        count = result.rowcount or 0
        logger.info("Job cleanup | deleted=%d cutoff=%s", count, cutoff.isoformat())
        return count
