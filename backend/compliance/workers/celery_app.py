"""
Celery Application Factory

Optional background backend (BACKGROUND_BACKEND=celery). The API process
only publishes; workers run the document pipeline and the periodic
maintenance tasks.

Queue topology:
  documents.process   document pipeline, priority from source classification
  jobs.maintenance    job retention sweep, stale-document requeue
  system.health       internal health-check tasks

Task payloads carry ids only. Raw document bytes never travel through the
broker; the worker loads them from document storage.
"""

from __future__ import annotations

import logging
import os

from celery import Celery
from celery.signals import after_setup_logger, task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Broker / backend URLs from environment
# ---------------------------------------------------------------------------

BROKER_URL: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
RESULT_BACKEND: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")

JOB_CLEANUP_INTERVAL_SECONDS = int(os.getenv("JOB_CLEANUP_INTERVAL_SECONDS", str(24 * 3600)))
STALE_SCAN_INTERVAL_SECONDS  = 60

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)
JOBS_EXCHANGE      = Exchange("jobs", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.process",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.process",
        queue_arguments={"x-max-priority": 10},
        durable=True,
    ),
    Queue(
        "jobs.maintenance",
        exchange=JOBS_EXCHANGE,
        routing_key="jobs.maintenance",
        durable=True,
    ),
    Queue(
        "system.health",
        Exchange("system", type="direct"),
        routing_key="system.health",
        durable=True,
    ),
)

TASK_ROUTES = {
    "compliance.workers.tasks.process_document":        {"queue": "documents.process"},
    "compliance.workers.tasks.cleanup_expired_jobs":    {"queue": "jobs.maintenance"},
    "compliance.workers.tasks.requeue_stale_documents": {"queue": "jobs.maintenance"},
    "compliance.workers.tasks.health_check":            {"queue": "system.health"},
}

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("compliance_pipeline")

    app.conf.update(
        broker_url=BROKER_URL,
        result_backend=RESULT_BACKEND,

        # JSON only; pickle payloads are rejected
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.process",
        task_default_exchange="documents",
        task_default_routing_key="documents.process",

        task_acks_late=True,         # ack only after the task finishes
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # OCR retries happen inside the pipeline; these bound the whole task
        task_soft_time_limit=300,
        task_time_limit=360,

        result_expires=3600,   # state lives in the database, not in Celery results

        timezone="UTC",
        enable_utc=True,

        beat_schedule={
            "cleanup-expired-jobs": {
                "task":     "compliance.workers.tasks.cleanup_expired_jobs",
                "schedule": JOB_CLEANUP_INTERVAL_SECONDS,
                "options":  {"queue": "jobs.maintenance"},
            },
            "requeue-stale-documents-every-60s": {
                "task":     "compliance.workers.tasks.requeue_stale_documents",
                "schedule": STALE_SCAN_INTERVAL_SECONDS,
                "options":  {"queue": "jobs.maintenance"},
            },
        },

        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["compliance.workers"])
    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: logging
# ---------------------------------------------------------------------------

@after_setup_logger.connect
def on_setup_logger(logger, loglevel, **_):
    for handler in logger.handlers:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s | %(message)s")
        )


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, (kwargs or {}).get("document_id", "-"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s",
        task_id, task.name, state,
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "-"), exception,
        exc_info=True,
    )
