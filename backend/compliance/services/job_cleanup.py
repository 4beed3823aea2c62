"""
Job retention.

Terminal jobs (COMPLETED / FAILED) older than ``job_retention_days`` are
deleted. In the API process JobCleanupLoop runs the sweep once at startup
and then every ``job_cleanup_interval_seconds``; with the Celery backend
the beat schedule calls run_job_cleanup() from workers.tasks instead.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from compliance.models.base import utcnow
from compliance.services.jobs import JobTracker

logger = logging.getLogger(__name__)


async def run_job_cleanup(tracker: JobTracker, retention_days: int = 7) -> int:
    """Delete expired terminal jobs; returns the count (0 if the sweep failed)."""
    cutoff = utcnow() - timedelta(days=retention_days)
    try:
        return await tracker.cleanup_older_than(cutoff)
    except Exception:
        logger.exception("Job cleanup failed | retention_days=%d", retention_days)
        return 0


class JobCleanupLoop:
    def __init__(
        self,
        tracker:          JobTracker,
        retention_days:   int = 7,
        interval_seconds: float = 24 * 3600,
    ) -> None:
        self._tracker          = tracker
        self._retention_days   = retention_days
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="job-cleanup-loop")
        logger.info(
            "Job cleanup loop started | retention_days=%d interval=%ss",
            self._retention_days, self._interval_seconds,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Job cleanup loop stopped")

    async def _loop(self) -> None:
        while True:
            await run_job_cleanup(self._tracker, self._retention_days)
            await asyncio.sleep(self._interval_seconds)
