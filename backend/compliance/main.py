"""
FastAPI Application: Entry Point

Compliance Pipeline API

Architecture:
  - All routes are versioned under /api/v1/
  - Every collaborator lives in one ServiceContext, built in the lifespan
    and stored on app.state.services
  - Uploads and async jobs answer 202 and continue in the background
    (asyncio tasks in-process, or Celery when BACKGROUND_BACKEND=celery)
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. CORS: restrict to configured origins
  2. Request ID injection: X-Request-ID header on every response
  3. Gzip: compress responses > 1 KB
  4. Request logging: one log line per request with latency

Exception mapping (ErrorResponse envelope):
  ValidationError                    400
  NotFoundError                      404
  JobStateError / NotCancelableError 409
  RequestValidationError             422
  PermanentRemoteError               502
  TransientRemoteError               503
  anything else                      500
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from compliance.api.v1.documents import router as documents_router
from compliance.api.v1.jobs import router as jobs_router
from compliance.api.v1.orchestration import router as orchestration_router
from compliance.core.config import Settings, get_settings
from compliance.core.context import build_service_context
from compliance.core.exceptions import (
    ComplianceError,
    JobStateError,
    NotFoundError,
    PermanentRemoteError,
    RemoteServiceError,
    TransientRemoteError,
    ValidationError,
)
from compliance.db.session import check_db_health, init_models
from compliance.schemas.documents import ErrorDetail, ErrorResponse
from compliance.services.job_cleanup import JobCleanupLoop

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10.0


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def error_status(exc: ComplianceError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, JobStateError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, PermanentRemoteError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, (TransientRemoteError, RemoteServiceError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _request_id(request: Request) -> str:
    return request.headers.get("X-Request-ID") or str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(settings: Settings | None = None, **overrides: Any) -> FastAPI:
    """
    Build the API.

    ``overrides`` are forwarded to build_service_context() when the
    lifespan starts (tests use them to inject SQLite and fakes).
    """
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: build the service context, optionally create tables, verify
        DB connectivity, start the retention loop.
        Shutdown: let in-flight background work finish, then close everything.
        """
        logger.info(
            "Starting Compliance Pipeline | env=%s background=%s storage=%s",
            settings.app_env, settings.background_backend, settings.storage_backend,
        )
        services = build_service_context(settings, **overrides)
        app.state.services = services

        if settings.db_create_tables:
            await init_models(services.engine)

        db_health = await check_db_health(services.engine)
        if db_health["status"] != "ok":
            logger.critical("Database health check failed at startup: %s", db_health)
            await services.close()
            raise RuntimeError(f"DB unavailable: {db_health}")
        logger.info("Database: connected")

        cleanup: JobCleanupLoop | None = None
        if settings.background_backend == "asyncio" and settings.job_cleanup_enabled:
            cleanup = JobCleanupLoop(
                services.tracker,
                retention_days=settings.job_retention_days,
                interval_seconds=settings.job_cleanup_interval_seconds,
            )
            cleanup.start()

        yield

        logger.info("Shutting down Compliance Pipeline")
        if cleanup is not None:
            await cleanup.stop()
        await services.tasks.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        await services.close()

    app = FastAPI(
        title="Compliance Pipeline",
        description=(
            "Document OCR, regulatory web search and LLM analysis with "
            "background jobs, content-addressed caching and retries."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID", "X-User-ID"],
        expose_headers=["X-Request-ID", "X-Document-ID", "Location"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = _request_id(request)
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | user=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.headers.get("X-User-ID", "-"),
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(ComplianceError)
    async def compliance_exception_handler(request: Request, exc: ComplianceError):
        code = error_status(exc)
        if code >= 500:
            logger.warning("Request failed | path=%s error=%s", request.url.path, exc.message)
        details = [
            ErrorDetail(field=str(exc.details["field"]), message=exc.message, code=exc.error_code)
        ] if "field" in exc.details else []
        body = ErrorResponse(
            error_code=exc.error_code,
            message=exc.message,
            details=details,
            request_id=request.headers.get("X-Request-ID"),
        )
        return JSONResponse(status_code=code, content=body.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to structured ErrorResponse."""
        details = [
            ErrorDetail(
                field=".".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
            request_id=request.headers.get("X-Request-ID"),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions; never expose stack traces."""
        request_id = _request_id(request)
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        body = ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router,     prefix="/api/v1")
    app.include_router(jobs_router,          prefix="/api/v1")
    app.include_router(orchestration_router, prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (used by the load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "compliance-pipeline"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="Returns 200 only if the database is reachable. Cache state is reported, not required.",
    )
    async def readiness(request: Request) -> JSONResponse:
        services = request.app.state.services
        db_status = await check_db_health(services.engine)
        cache_ok  = await services.cache.ping() if services.cache.enabled else None
        content = {
            "database": db_status,
            "cache":    {"enabled": services.cache.enabled, "reachable": cache_ok},
        }
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", **content},
            )
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ready", **content})

    return app


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "compliance.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=_settings.app_env == "development",
        log_level="debug" if _settings.debug else "info",
        access_log=True,
    )
