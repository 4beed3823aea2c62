"""
Root conftest.py: shared fixtures for ALL tests (unit + integration)

Fixture hierarchy (all function-scoped):
  settings        : Settings pointing at a per-test SQLite file
  engine          : aiosqlite engine with tables created
  session_factory : async_sessionmaker bound to the engine
  fake_redis      : in-memory stand-in for redis.asyncio.Redis
  cache           : CacheService over fake_redis
  storage         : LocalDocumentStorage under tmp_path
  ocr / search / analysis / scraper : MagicMock(spec=...) with AsyncMock methods
  services        : full ServiceContext wired with all of the above
  app / async_client : FastAPI app + httpx client over ASGITransport

Environment strategy:
  - No PostgreSQL, Redis, OCR, search or LLM service is needed.
  - Retry delays are zero so retry paths run instantly.
  - Background work runs as asyncio tasks; tests call
    services.tasks.drain() before asserting on results.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # full FastAPI stack
"""

from __future__ import annotations

import fnmatch
import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("DATABASE_URL",       "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV",            "development")
os.environ.setdefault("BACKGROUND_BACKEND", "asyncio")
os.environ.setdefault("OPENAI_API_KEY",     "sk-test-key")

from compliance.core.config import Settings  # noqa: E402
from compliance.core.context import ServiceContext, build_service_context  # noqa: E402
from compliance.db.session import create_engine, create_session_factory, init_models  # noqa: E402
from compliance.providers.base import (  # noqa: E402
    AnalysisProvider,
    AnalysisResult,
    OCRPage,
    OCRProvider,
    OCRResult,
    SearchProvider,
    SearchResult,
    SearchSource,
)
from compliance.services.cache import CacheService  # noqa: E402
from compliance.services.scraper import ScrapedContent, ScrapeOptions, WebScraper, is_government_url  # noqa: E402
from compliance.storage.documents import LocalDocumentStorage  # noqa: E402


# ─────────────────────────────────────────────────────────────────────────────
# Fake Redis: just the commands CacheService uses
# ─────────────────────────────────────────────────────────────────────────────

class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.sets:  dict[str, set[str]] = {}
        self.ttls:  dict[str, int | None] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.ttls[key]  = ex
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None or self.sets.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def exists(self, key):
        self._check()
        return int(key in self.store or key in self.sets)

    async def scan_iter(self, match="*", count=None):
        self._check()
        for key in [*self.store, *self.sets]:
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def sadd(self, key, *members):
        self._check()
        current = self.sets.setdefault(key, set())
        added = len(set(members) - current)
        current.update(members)
        return added

    async def srem(self, key, *members):
        self._check()
        current = self.sets.get(key, set())
        removed = len(current & set(members))
        current.difference_update(members)
        if not current:
            self.sets.pop(key, None)
            self.ttls.pop(key, None)
        return removed

    async def scard(self, key):
        self._check()
        return len(self.sets.get(key, ()))

    async def smembers(self, key):
        self._check()
        return set(self.sets.get(key, ()))

    async def expire(self, key, seconds):
        self._check()
        if key not in self.store and key not in self.sets:
            return False
        self.ttls[key] = seconds
        return True

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Sample file bytes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal PDF that passes the %PDF magic-byte check."""
    return (
        b"%PDF-1.4\n"
        b"1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
        b"2 0 obj\n<< /Type /Pages /Kids [] /Count 0 >>\nendobj\n"
        b"trailer\n<< /Root 1 0 R >>\n%%EOF"
    )


@pytest.fixture
def sample_txt_bytes() -> bytes:
    return b"Data retention policy.\nRecords are kept for seven years.\n"


@pytest.fixture
def exe_bytes() -> bytes:
    """Windows PE executable; must be rejected."""
    return b"MZ\x90\x00" + b"\x00" * 100


def make_ocr_result(*pages: str, model: str = "mistral-ocr-latest") -> OCRResult:
    return OCRResult(pages=[OCRPage(index=i, text=t) for i, t in enumerate(pages)], model=model)


# ─────────────────────────────────────────────────────────────────────────────
# Settings / database
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'compliance.db'}",
        upload_dir=str(tmp_path / "uploads"),
        ocr_max_retries=2,
        ocr_initial_delay=0.0,
        search_max_retries=0,
        llm_max_retries=0,
        job_cleanup_enabled=False,
        background_backend="asyncio",
        app_env="development",
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine(settings)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


# ─────────────────────────────────────────────────────────────────────────────
# Cache / storage
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis) -> CacheService:
    return CacheService(fake_redis, enabled=True, default_ttl=604800, timeout_seconds=1.0)


@pytest.fixture
def storage(tmp_path) -> LocalDocumentStorage:
    return LocalDocumentStorage(tmp_path / "uploads")


# ─────────────────────────────────────────────────────────────────────────────
# Provider mocks
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def ocr():
    """OCR provider returning two pages of clean text by default."""
    provider = MagicMock(spec=OCRProvider)
    provider.extract_text = AsyncMock(
        return_value=make_ocr_result(
            "Section 1. Operators must keep records.\n![img-0.png](img-0.png)",
            "Section 2. Reports are due annually.",
        )
    )
    return provider


@pytest.fixture
def search():
    provider = MagicMock(spec=SearchProvider)
    provider.search = AsyncMock(
        return_value=SearchResult(
            sources=[
                SearchSource(title="Agency rule", url="https://www.epa.gov/rule", snippet="Final rule", is_government_source=True),
                SearchSource(title="Law firm blog", url="https://blog.example.com/rule", snippet="Commentary"),
                SearchSource(title="Federal Register", url="https://www.federalregister.gov/d/1", snippet="Notice", is_government_source=True),
            ],
            summary="Two agency sources and one commentary.",
        )
    )
    return provider


@pytest.fixture
def analysis():
    provider = MagicMock(spec=AnalysisProvider)
    provider.analyze = AsyncMock(
        return_value=AnalysisResult(
            summary="Operators must keep records for seven years.",
            obligations=["Keep records"],
            risks=["Fines for missing reports"],
        )
    )
    return provider


@pytest.fixture
def scraper():
    """WebScraper mock that succeeds for every URL, preserving input order."""
    mock = MagicMock(spec=WebScraper)
    mock.default_options = ScrapeOptions()

    async def _scrape_many(urls, options=None):
        return [
            ScrapedContent(
                url=u,
                title=f"Page {u}",
                text_content="content",
                content_type="text/html",
                is_government=is_government_url(u),
            )
            for u in urls
        ]

    mock.scrape_many = AsyncMock(side_effect=_scrape_many)
    return mock


# ─────────────────────────────────────────────────────────────────────────────
# Service context
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def services(
    settings, engine, session_factory, fake_redis, storage, ocr, search, analysis, scraper,
) -> AsyncGenerator[ServiceContext, None]:
    ctx = build_service_context(
        settings,
        engine=engine,
        session_factory=session_factory,
        redis=fake_redis,
        storage=storage,
        ocr=ocr,
        search=search,
        analysis=analysis,
        scraper=scraper,
    )
    yield ctx
    await ctx.tasks.cancel_all()


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI test client
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def app(settings, services):
    """
    FastAPI app with the test ServiceContext already installed.

    ASGITransport does not run the lifespan, so app.state.services is set
    directly instead of being built on startup.
    """
    from compliance.main import create_app

    application = create_app(settings)
    application.state.services = services
    return application


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
