"""
Database engine and session management.

Flow:
  1. build_service_context() calls create_engine_and_sessionmaker() once per
     process and hands the session factory to every store (JobTracker,
     DocumentService, DocumentPipeline).
  2. Stores open short transactions through session_scope(); each
     operation commits on exit and rolls back if it raises.
  3. close() on the service context disposes the engine.

There is no module-level engine: the API process, the Celery worker and
the test suite each build their own from Settings.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from compliance.core.config import Settings
from compliance.models import documents as _documents  # noqa: F401  (registers tables)
from compliance.models import jobs as _jobs  # noqa: F401
from compliance.models.base import Base

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def create_engine(settings: Settings) -> AsyncEngine:
    kwargs: dict = {"echo": settings.db_echo_sql}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,          # detect stale connections before use
            pool_recycle=3600,           # recycle connections every hour
        )
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def create_engine_and_sessionmaker(settings: Settings) -> tuple[AsyncEngine, SessionFactory]:
    engine = create_engine(settings)
    return engine, create_session_factory(engine)


# ---------------------------------------------------------------------------
# Transaction scope
# ---------------------------------------------------------------------------

@asynccontextmanager
async def session_scope(factory: SessionFactory) -> AsyncGenerator[AsyncSession, None]:
    """
    One session, one transaction.

    Usage::

        async with session_scope(self._session_factory) as session:
            job = await session.get(Job, job_id)
            job.progress = 50
        # committed here
    """
    async with factory() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Schema / health helpers
# ---------------------------------------------------------------------------

async def init_models(engine: AsyncEngine) -> None:
    """Create all tables. Development and tests only; production uses migrations."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured: %s", ", ".join(sorted(Base.metadata.tables)))


async def check_db_health(engine: AsyncEngine) -> dict:
    """Ping the database; used by /ready."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
