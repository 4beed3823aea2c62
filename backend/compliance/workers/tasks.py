"""
Celery Tasks

Task: process_document
  Runs DocumentPipeline.process_document for one id. The pipeline's own
  conditional claim makes redelivery harmless: a document that is no
  longer PENDING is returned untouched.

Task: cleanup_expired_jobs
  Beat-scheduled retention sweep (terminal jobs older than
  JOB_RETENTION_DAYS).

Task: requeue_stale_documents
  Re-publishes documents stuck in PENDING, e.g. after a broker outage
  during upload, and documents a dead worker left PROCESSING for
  longer than STUCK_PROCESSING_MINUTES.

Each task builds its own ServiceContext inside its own event loop and
closes it afterwards; async engines and HTTP clients cannot be shared
across the loops asyncio.run() creates.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncGenerator

from celery import Task

from compliance.core.config import get_settings
from compliance.core.context import ServiceContext, build_service_context
from compliance.core.exceptions import DocumentNotFoundError
from compliance.models.base import utcnow
from compliance.services.job_cleanup import run_job_cleanup
from compliance.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


@asynccontextmanager
async def worker_context() -> AsyncGenerator[ServiceContext, None]:
    ctx = build_service_context(get_settings(), celery_app=celery_app)
    try:
        yield ctx
    finally:
        await ctx.close()


# ---------------------------------------------------------------------------
# Document processing
# ---------------------------------------------------------------------------

@celery_app.task(
    name="compliance.workers.tasks.process_document",
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=270,
    time_limit=330,
)
def process_document(self: Task, *, document_id: str) -> dict[str, Any]:
    return run_async(_process_document_async(document_id))


async def _process_document_async(document_id: str) -> dict[str, Any]:
    async with worker_context() as ctx:
        try:
            document = await ctx.pipeline.process_document(document_id)
        except DocumentNotFoundError:
            logger.error("Document not found | doc=%s", document_id)
            return {"status": "not_found", "document_id": document_id}

    logger.info("Processing finished | doc=%s status=%s", document_id, document.processing_status.value)
    return {
        "status":      document.processing_status.value,
        "document_id": document_id,
        "from_cache":  document.from_cache,
    }


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

@celery_app.task(name="compliance.workers.tasks.cleanup_expired_jobs")
def cleanup_expired_jobs() -> dict[str, int]:
    return run_async(_cleanup_expired_jobs_async())


async def _cleanup_expired_jobs_async() -> dict[str, int]:
    async with worker_context() as ctx:
        deleted = await run_job_cleanup(ctx.tracker, ctx.settings.job_retention_days)
    return {"deleted": deleted}


@celery_app.task(name="compliance.workers.tasks.requeue_stale_documents")
def requeue_stale_documents() -> dict[str, int]:
    return run_async(_requeue_stale_documents_async())


async def _requeue_stale_documents_async() -> dict[str, int]:
    async with worker_context() as ctx:
        now      = utcnow()
        cutoff   = now - timedelta(minutes=ctx.settings.stale_document_minutes)
        stuck    = now - timedelta(minutes=ctx.settings.stuck_processing_minutes)
        requeued = await ctx.documents.requeue_stale_documents(cutoff, processing_older_than=stuck)
    return {"requeued": requeued}


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="compliance.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    return {"status": "ok", "worker": "healthy"}
