"""
Service context: every collaborator, built once per process.

Entry points (FastAPI lifespan, Celery worker bootstrap, tests) call
build_service_context() and pass the result down; there are no module
level singletons for the cache, tracker or providers. Any collaborator can
be overridden by keyword, which is how the test suite swaps in SQLite, a
fake Redis client and stub providers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine

from compliance.core.config import Settings
from compliance.db.session import SessionFactory, create_engine_and_sessionmaker, create_session_factory
from compliance.providers.analysis import LLMAnalysisProvider
from compliance.providers.base import AnalysisProvider, OCRProvider, SearchProvider
from compliance.providers.ocr import HttpOCRProvider
from compliance.providers.search import HttpSearchProvider
from compliance.services.cache import CacheService
from compliance.services.document_pipeline import CacheTTLs, DocumentPipeline
from compliance.services.documents import DocumentService
from compliance.services.job_runner import AsyncJobRunner
from compliance.services.jobs import JobTracker
from compliance.services.orchestration import OrchestrationService
from compliance.services.scraper import WebScraper
from compliance.storage.documents import DocumentStorage, build_storage
from compliance.workers.background import (
    BackgroundTasks,
    CeleryDocumentScheduler,
    DocumentScheduler,
    LocalDocumentScheduler,
)

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    settings:        Settings
    engine:          AsyncEngine
    session_factory: SessionFactory
    cache:           CacheService
    storage:         DocumentStorage
    ocr:             OCRProvider
    search:          SearchProvider
    analysis:        AnalysisProvider
    scraper:         WebScraper
    tracker:         JobTracker
    pipeline:        DocumentPipeline
    documents:       DocumentService
    orchestration:   OrchestrationService
    runner:          AsyncJobRunner
    tasks:           BackgroundTasks
    scheduler:       DocumentScheduler
    _closeables:     list[Any] = field(default_factory=list, repr=False)

    async def close(self) -> None:
        """Cancel background work, then release HTTP clients, Redis and the engine."""
        await self.tasks.cancel_all()
        for resource in self._closeables:
            aclose = getattr(resource, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception as exc:
                logger.warning("Close failed | resource=%s error=%s", type(resource).__name__, exc)
        await self.cache.close()
        await self.engine.dispose()
        logger.info("Service context closed")


def build_service_context(settings: Settings, **overrides: Any) -> ServiceContext:
    """
    Wire the full object graph from Settings.

    Recognised overrides: engine, session_factory, redis, storage, ocr,
    search, analysis, scraper, celery_app.
    """
    if "engine" in overrides:
        engine = overrides["engine"]
        session_factory = overrides.get("session_factory") or create_session_factory(engine)
    else:
        engine, session_factory = create_engine_and_sessionmaker(settings)

    redis_client = overrides["redis"] if "redis" in overrides else aioredis.from_url(
        settings.redis_url, decode_responses=True,
    )
    cache = CacheService(
        redis_client,
        enabled=settings.cache_enabled,
        default_ttl=settings.document_cache_ttl,
        timeout_seconds=settings.cache_timeout_seconds,
    )

    closeables: list[Any] = []

    def provided(name: str, factory):
        if name in overrides:
            return overrides[name]
        instance = factory()
        closeables.append(instance)
        return instance

    storage  = overrides.get("storage") or build_storage(settings)
    ocr      = provided("ocr", lambda: HttpOCRProvider.from_settings(settings))
    search   = provided("search", lambda: HttpSearchProvider.from_settings(settings))
    analysis = overrides.get("analysis") or LLMAnalysisProvider.from_settings(settings)
    scraper  = provided("scraper", lambda: WebScraper.from_settings(settings))

    tasks    = BackgroundTasks()
    tracker  = JobTracker(session_factory)
    pipeline = DocumentPipeline(
        session_factory,
        cache,
        storage,
        ocr,
        settings.ocr_retry_policy,
        CacheTTLs(success=settings.document_cache_ttl, failure=settings.document_cache_failure_ttl),
    )

    scheduler: DocumentScheduler
    if settings.background_backend == "celery":
        celery_app = overrides.get("celery_app")
        if celery_app is None:
            from compliance.workers.celery_app import celery_app
        scheduler = CeleryDocumentScheduler(celery_app)
    else:
        scheduler = LocalDocumentScheduler(tasks, pipeline)

    documents = DocumentService(
        session_factory,
        storage,
        cache,
        scheduler,
        max_upload_bytes=settings.max_upload_bytes,
    )
    orchestration = OrchestrationService(
        documents,
        pipeline,
        search,
        analysis,
        settings.search_retry_policy,
        settings.analysis_retry_policy,
    )
    runner = AsyncJobRunner(
        tracker,
        orchestration,
        search,
        scraper,
        tasks,
        settings.search_retry_policy,
    )

    logger.info(
        "Service context built | env=%s storage=%s background=%s cache=%s",
        settings.app_env, settings.storage_backend, settings.background_backend,
        "on" if cache.enabled else "off",
    )
    return ServiceContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        cache=cache,
        storage=storage,
        ocr=ocr,
        search=search,
        analysis=analysis,
        scraper=scraper,
        tracker=tracker,
        pipeline=pipeline,
        documents=documents,
        orchestration=orchestration,
        runner=runner,
        tasks=tasks,
        scheduler=scheduler,
        _closeables=closeables,
    )
