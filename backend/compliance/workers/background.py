"""
Detached background execution for the API process.

BackgroundTasks
    Owns every fire-and-forget coroutine started by a request. Tasks are
    strongly referenced until they finish (asyncio only keeps weak refs),
    and any exception that escapes is logged from the done-callback since
    nothing else observes that call stack. drain() waits for in-flight
    work on shutdown and in tests.

Document schedulers
    The upload path only needs "process this document later". Two
    implementations satisfy it:
      LocalDocumentScheduler   spawn DocumentPipeline.process_document in-process
      CeleryDocumentScheduler  publish workers.tasks.process_document to the broker
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class BackgroundTasks:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("Background task cancelled | name=%s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed | name=%s error=%s: %s",
                task.get_name(), type(exc).__name__, exc,
                exc_info=exc,
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every task spawned so far (and any they spawn) to finish."""
        while self._tasks:
            pending = list(self._tasks)
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                logger.warning("Background drain timed out | pending=%d", len(not_done))
                return

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


# ---------------------------------------------------------------------------
# Document processing schedulers
# ---------------------------------------------------------------------------

class DocumentScheduler(ABC):
    @abstractmethod
    async def schedule(self, document_id: str, priority: int = 0) -> None:
        ...


class LocalDocumentScheduler(DocumentScheduler):
    def __init__(self, tasks: BackgroundTasks, pipeline) -> None:
        self._tasks    = tasks
        self._pipeline = pipeline

    async def schedule(self, document_id: str, priority: int = 0) -> None:
        self._tasks.spawn(
            self._pipeline.process_document(document_id),
            name=f"process-document-{document_id}",
        )
        logger.info("Document scheduled | doc=%s backend=asyncio", document_id)


class CeleryDocumentScheduler(DocumentScheduler):
    """
    Publishes to the ``documents.process`` queue.

    send_task by name keeps the API process from importing the task
    module (and with it the worker bootstrap).
    """

    TASK_NAME = "compliance.workers.tasks.process_document"

    def __init__(self, celery_app) -> None:
        self._celery = celery_app

    async def schedule(self, document_id: str, priority: int = 0) -> None:
        await asyncio.to_thread(
            self._celery.send_task,
            self.TASK_NAME,
            kwargs={"document_id": document_id},
            queue="documents.process",
            priority=priority,
        )
        logger.info("Document scheduled | doc=%s backend=celery priority=%d", document_id, priority)
