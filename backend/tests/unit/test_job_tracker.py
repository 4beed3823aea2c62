"""
Unit Tests: JobTracker
══════════════════════
Runs against a real SQLite database (aiosqlite) so the state machine is
exercised through the same SQL the service issues in production.

Coverage targets:
  ✅ create_job: PENDING, progress 0, no end_time
  ✅ progress is monotonic; COMPLETED forces 100 and sets result + end_time
  ✅ FAILED sets error + end_time, clears result
  ✅ terminal jobs reject every further write
  ✅ cancel: PENDING/PROCESSING only, fixed message
  ✅ list_jobs: filters, newest first, pagination metadata
  ✅ cleanup_older_than removes only old terminal jobs
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update

from compliance.core.exceptions import JobNotFoundError, JobStateError, NotCancelableError, ValidationError
from compliance.db.session import session_scope
from compliance.models.base import utcnow
from compliance.models.jobs import Job, JobStatus, JobType
from compliance.services.jobs import CANCELLATION_MESSAGE, JobTracker


@pytest.fixture
def tracker(session_factory) -> JobTracker:
    return JobTracker(session_factory)


@pytest.mark.unit
class TestJobTransitions:

    async def test_create_job_starts_pending(self, tracker):
        job = await tracker.create_job(JobType.WEB_SEARCH, query="gdpr", owner_id="u1", params={"focus": "all"})

        assert job.status is JobStatus.PENDING
        assert job.progress == 0
        assert job.end_time is None
        assert job.result is None and job.error is None

        stored = await tracker.get_job(job.id)
        assert stored.query == "gdpr"
        assert stored.params == {"focus": "all"}
        assert stored.owner_id == "u1"

    async def test_unknown_job_raises_not_found(self, tracker):
        with pytest.raises(JobNotFoundError):
            await tracker.get_job("missing")
        with pytest.raises(JobNotFoundError):
            await tracker.update_status("missing", JobStatus.PROCESSING, progress=10)

    async def test_progress_never_decreases(self, tracker):
        job = await tracker.create_job(JobType.SEARCH, query="q")

        await tracker.update_status(job.id, JobStatus.PROCESSING, progress=40)
        updated = await tracker.update_status(job.id, JobStatus.PROCESSING, progress=20)

        assert updated.progress == 40

    async def test_progress_is_clamped_to_range(self, tracker):
        job = await tracker.create_job(JobType.SEARCH, query="q")

        updated = await tracker.update_status(job.id, JobStatus.PROCESSING, progress=250)

        assert updated.progress == 100

    async def test_completed_sets_result_and_end_time(self, tracker):
        job = await tracker.create_job(JobType.SEARCH, query="q")
        await tracker.update_status(job.id, JobStatus.PROCESSING, progress=60)

        done = await tracker.update_status(job.id, JobStatus.COMPLETED, result={"answer": 42})

        assert done.status is JobStatus.COMPLETED
        assert done.progress == 100
        assert done.result == {"answer": 42}
        assert done.error is None
        assert done.end_time is not None
        assert done.end_time >= done.start_time

    async def test_failed_sets_error_and_end_time(self, tracker):
        job = await tracker.create_job(JobType.SEARCH, query="q")

        failed = await tracker.update_status(job.id, JobStatus.FAILED, error="search: upstream 500")

        assert failed.status is JobStatus.FAILED
        assert failed.error == "search: upstream 500"
        assert failed.result is None
        assert failed.end_time is not None

    async def test_terminal_job_rejects_further_writes(self, tracker):
        job = await tracker.create_job(JobType.SEARCH, query="q")
        await tracker.update_status(job.id, JobStatus.COMPLETED, result={})

        with pytest.raises(JobStateError):
            await tracker.update_status(job.id, JobStatus.PROCESSING, progress=50)
        with pytest.raises(JobStateError):
            await tracker.update_status(job.id, JobStatus.FAILED, error="late")

        stored = await tracker.get_job(job.id)
        assert stored.status is JobStatus.COMPLETED

    async def test_cannot_return_to_pending(self, tracker):
        job = await tracker.create_job(JobType.SEARCH, query="q")
        await tracker.update_status(job.id, JobStatus.PROCESSING, progress=10)

        with pytest.raises(JobStateError):
            await tracker.update_status(job.id, JobStatus.PENDING)


@pytest.mark.unit
class TestJobCancellation:

    async def test_cancel_pending_job(self, tracker):
        job = await tracker.create_job(JobType.WEB_SCRAPING, query="Scrape 1 URLs")

        cancelled = await tracker.cancel_job(job.id)

        assert cancelled.status is JobStatus.FAILED
        assert cancelled.error == CANCELLATION_MESSAGE
        assert cancelled.end_time is not None

    async def test_cancel_processing_job_keeps_progress(self, tracker):
        job = await tracker.create_job(JobType.WEB_SCRAPING, query="q")
        await tracker.update_status(job.id, JobStatus.PROCESSING, progress=30)

        cancelled = await tracker.cancel_job(job.id)

        assert cancelled.progress == 30
        assert cancelled.status is JobStatus.FAILED

    async def test_cancel_terminal_job_is_rejected(self, tracker):
        job = await tracker.create_job(JobType.SEARCH, query="q")
        await tracker.update_status(job.id, JobStatus.COMPLETED, result={})

        with pytest.raises(NotCancelableError):
            await tracker.cancel_job(job.id)

    async def test_runner_cannot_overwrite_cancellation(self, tracker):
        job = await tracker.create_job(JobType.SEARCH, query="q")
        await tracker.update_status(job.id, JobStatus.PROCESSING, progress=10)
        await tracker.cancel_job(job.id)

        with pytest.raises(JobStateError):
            await tracker.update_status(job.id, JobStatus.COMPLETED, result={"late": True})


@pytest.mark.unit
class TestJobListing:

    async def test_filters_and_newest_first(self, tracker, session_factory):
        older = await tracker.create_job(JobType.SEARCH, query="a", owner_id="u1")
        newer = await tracker.create_job(JobType.SEARCH, query="b", owner_id="u1")
        await tracker.create_job(JobType.WEB_SEARCH, query="c", owner_id="u1")
        await tracker.create_job(JobType.SEARCH, query="d", owner_id="u2")

        async with session_scope(session_factory) as session:
            await session.execute(
                update(Job).where(Job.id == older.id).values(created_at=utcnow() - timedelta(minutes=5))
            )

        page = await tracker.list_jobs(owner_id="u1", job_type=JobType.SEARCH)

        assert [j.id for j in page.items] == [newer.id, older.id]
        assert page.total == 2

    async def test_pagination_metadata(self, tracker):
        for i in range(5):
            await tracker.create_job(JobType.SEARCH, query=f"q{i}")

        page = await tracker.list_jobs(page=2, page_size=2)

        assert len(page.items) == 2
        assert page.total == 5
        assert page.total_pages == 3
        assert page.has_next is True
        assert page.has_prev is True

    async def test_status_filter(self, tracker):
        job = await tracker.create_job(JobType.SEARCH, query="q")
        await tracker.create_job(JobType.SEARCH, query="other")
        await tracker.update_status(job.id, JobStatus.FAILED, error="x")

        page = await tracker.list_jobs(status=JobStatus.FAILED)

        assert [j.id for j in page.items] == [job.id]

    @pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0), (1, 101)])
    async def test_invalid_paging_rejected(self, tracker, page, page_size):
        with pytest.raises(ValidationError):
            await tracker.list_jobs(page=page, page_size=page_size)


@pytest.mark.unit
class TestJobCleanup:

    async def test_cleanup_removes_only_old_terminal_jobs(self, tracker, session_factory):
        old_done    = await tracker.create_job(JobType.SEARCH, query="old done")
        old_running = await tracker.create_job(JobType.SEARCH, query="old running")
        new_done    = await tracker.create_job(JobType.SEARCH, query="new done")

        await tracker.update_status(old_done.id, JobStatus.COMPLETED, result={})
        await tracker.update_status(old_running.id, JobStatus.PROCESSING, progress=10)
        await tracker.update_status(new_done.id, JobStatus.FAILED, error="x")

        eight_days_ago = utcnow() - timedelta(days=8)
        async with session_scope(session_factory) as session:
            await session.execute(
                update(Job)
                .where(Job.id.in_([old_done.id, old_running.id]))
                .values(updated_at=eight_days_ago)
            )

        deleted = await tracker.cleanup_older_than(utcnow() - timedelta(days=7))

        assert deleted == 1
        with pytest.raises(JobNotFoundError):
            await tracker.get_job(old_done.id)
        assert (await tracker.get_job(old_running.id)).status is JobStatus.PROCESSING
        assert (await tracker.get_job(new_done.id)).status is JobStatus.FAILED
