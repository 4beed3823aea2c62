"""
Async Job Runner

For requests that must not block the HTTP response: submit_*() creates a
PENDING job, spawns run(job_id) as a detached task and returns the job
immediately. The client polls the job.

Progress checkpoints (monotonic by construction, one task per job):

    10                      claimed (PENDING → PROCESSING)
    20                      primary extraction starts
    20 + 40 * done / total  after each sub-batch / orchestration stage
    90                      secondary processing done (result assembled)
    100                     COMPLETED

Batches are processed sequentially, one sub-batch at a time, so progress
never needs reconciling across concurrent updates.

Cancellation is cooperative: cancel_job() fails the job in the tracker and
the next checkpoint raises JobStateError here, which makes the runner stop
without writing anything else. Every other exception becomes a FAILED job
with a readable error. Task cancellation (shutdown) records a FAILED job
and then propagates.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Awaitable, Callable

from compliance.core.exceptions import ComplianceError, JobNotFoundError, JobStateError, ValidationError
from compliance.core.retry import RetryPolicy, execute_with_retry, is_retryable_error
from compliance.models.jobs import Job, JobStatus, JobType
from compliance.providers.base import SearchProvider, SearchResult
from compliance.schemas.orchestration import MAX_QUERY_LENGTH, OrchestrationRequest, OverallStatus
from compliance.services.jobs import JobTracker
from compliance.services.scraper import ScrapedContent, ScrapeOptions, WebScraper, is_government_url, scrape_metadata
from compliance.workers.background import BackgroundTasks

logger = logging.getLogger(__name__)

PROGRESS_CLAIMED    = 10
PROGRESS_EXTRACTING = 20
PROGRESS_EXTRACTED  = 60
PROGRESS_ASSEMBLED  = 90

INTERRUPTED_MESSAGE = "Job interrupted by shutdown"

MAX_SCRAPE_URLS = 100


def extraction_progress(done: int, total: int) -> int:
    """Linear 20 → 60 over the primary extraction phase."""
    if total <= 0:
        return PROGRESS_EXTRACTED
    span = PROGRESS_EXTRACTED - PROGRESS_EXTRACTING
    return PROGRESS_EXTRACTING + round(span * min(done, total) / total)


def default_batch_size(total: int) -> int:
    return max(1, math.ceil(total / 10))


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, ComplianceError):
        return exc.message
    return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__


def _require_query(query: str) -> str:
    query = (query or "").strip()
    if not query:
        raise ValidationError("Query is required", details={"field": "query"})
    if len(query) > MAX_QUERY_LENGTH:
        raise ValidationError(
            f"Query must be at most {MAX_QUERY_LENGTH} characters",
            details={"field": "query"},
        )
    return query


class _OrchestrationFailed(ComplianceError):
    error_code = "ORCHESTRATION_FAILED"


class _Checkpoint:
    """Progress writer bound to one job; raises JobStateError once the job is terminal."""

    def __init__(self, tracker: JobTracker, job_id: str) -> None:
        self._tracker = tracker
        self._job_id  = job_id
        self.value    = 0

    async def __call__(self, progress: int) -> None:
        progress = max(self.value, progress)
        await self._tracker.update_status(self._job_id, JobStatus.PROCESSING, progress=progress)
        self.value = progress


Handler = Callable[[Job, _Checkpoint], Awaitable[Any]]


class AsyncJobRunner:
    def __init__(
        self,
        tracker:       JobTracker,
        orchestration,
        search:        SearchProvider,
        scraper:       WebScraper,
        tasks:         BackgroundTasks,
        search_policy: RetryPolicy,
    ) -> None:
        self._tracker       = tracker
        self._orchestration = orchestration
        self._search        = search
        self._scraper       = scraper
        self._tasks         = tasks
        self._search_policy = search_policy
        self._handlers: dict[JobType, Handler] = {
            JobType.SEARCH:            self._run_search,
            JobType.WEB_SEARCH:        self._run_web_search,
            JobType.WEB_SCRAPING:      self._run_scrape,
            JobType.DOCUMENT_ANALYSIS: self._run_document_analysis,
        }

    # -----------------------------------------------------------------------
    # Submission
    # -----------------------------------------------------------------------

    async def _submit(self, job_type: JobType, query: str, owner_id: str | None, **kwargs) -> Job:
        job = await self._tracker.create_job(job_type, query=query, owner_id=owner_id, **kwargs)
        self._tasks.spawn(self.run(job.id), name=f"job-{job_type.value}-{job.id}")
        return job

    async def submit_search(
        self,
        query:           str,
        owner_id:        str | None = None,
        max_sources:     int = 5,
        government_only: bool = True,
        batch_size:      int | None = None,
        extract_links:   bool = False,
    ) -> Job:
        query = _require_query(query)
        return await self._submit(
            JobType.SEARCH, query, owner_id,
            params={
                "max_sources":     max(1, max_sources),
                "government_only": government_only,
                "batch_size":      batch_size,
                "extract_links":   extract_links,
            },
        )

    async def submit_web_search(
        self,
        query:       str,
        owner_id:    str | None = None,
        max_results: int = 10,
        focus:       str = "government",
    ) -> Job:
        query = _require_query(query)
        if focus not in ("government", "all"):
            raise ValidationError("focus must be 'government' or 'all'", details={"field": "focus"})
        return await self._submit(
            JobType.WEB_SEARCH, query, owner_id,
            params={"max_results": max(1, max_results), "focus": focus},
        )

    async def submit_scrape(
        self,
        urls:          list[str],
        owner_id:      str | None = None,
        batch_size:    int | None = None,
        extract_links: bool = False,
    ) -> Job:
        urls = [u.strip() for u in urls if u and u.strip()]
        if not urls:
            raise ValidationError("At least one URL is required", details={"field": "urls"})
        if len(urls) > MAX_SCRAPE_URLS:
            raise ValidationError(f"At most {MAX_SCRAPE_URLS} URLs per job", details={"field": "urls"})
        if batch_size is not None and batch_size < 1:
            raise ValidationError("batch_size must be >= 1", details={"field": "batch_size"})
        return await self._submit(
            JobType.WEB_SCRAPING, f"Scrape {len(urls)} URLs", owner_id,
            params={"urls": urls, "batch_size": batch_size, "extract_links": extract_links},
        )

    async def submit_document_analysis(
        self,
        request:  OrchestrationRequest,
        owner_id: str | None = None,
    ) -> Job:
        self._orchestration.validate(request)
        return await self._submit(
            JobType.DOCUMENT_ANALYSIS, request.query, owner_id,
            document_id=request.document_ref if not request.document_is_url else None,
            params=request.model_dump(mode="json"),
        )

    # -----------------------------------------------------------------------
    # Background entry point
    # -----------------------------------------------------------------------

    async def run(self, job_id: str) -> None:
        """Execute one job to a terminal state. Only task cancellation propagates."""
        try:
            job = await self._tracker.get_job(job_id)
            if job.status is not JobStatus.PENDING:
                logger.info("Job runner skip | id=%s status=%s", job_id, job.status.value)
                return

            checkpoint = _Checkpoint(self._tracker, job_id)
            await checkpoint(PROGRESS_CLAIMED)
            logger.info("Job runner claimed | id=%s type=%s", job_id, job.job_type.value)

            result = await self._handlers[job.job_type](job, checkpoint)

            await self._tracker.update_status(job_id, JobStatus.COMPLETED, progress=100, result=result)
            logger.info("Job runner completed | id=%s", job_id)

        except JobStateError as exc:
            logger.info("Job runner abandoned | id=%s reason=%s", job_id, exc.message)
        except JobNotFoundError:
            logger.warning("Job runner abandoned | id=%s reason=job deleted", job_id)
        except asyncio.CancelledError:
            logger.warning("Job runner interrupted | id=%s", job_id)
            await self._fail(job_id, INTERRUPTED_MESSAGE)
            raise
        except Exception as exc:
            logger.error("Job runner failed | id=%s", job_id, exc_info=True)
            await self._fail(job_id, _error_message(exc))

    async def _fail(self, job_id: str, error: str) -> None:
        try:
            await self._tracker.update_status(job_id, JobStatus.FAILED, error=error)
        except (JobStateError, JobNotFoundError) as exc:
            logger.info("Job runner could not record failure | id=%s reason=%s", job_id, exc.message)
        except Exception:
            logger.exception("Job runner could not record failure | id=%s", job_id)

    # -----------------------------------------------------------------------
    # Handlers
    # -----------------------------------------------------------------------

    async def _search_with_retry(self, query: str, max_results: int, focus: str) -> SearchResult:
        return await execute_with_retry(
            lambda: self._search.search(query, max_results, focus),
            is_retryable_error,
            self._search_policy,
            description="search",
        )

    async def _scrape_in_batches(
        self,
        urls:       list[str],
        batch_size: int,
        options:    ScrapeOptions,
        checkpoint: _Checkpoint,
    ) -> list[ScrapedContent]:
        results: list[ScrapedContent] = []
        total = len(urls)
        for start in range(0, total, batch_size):
            batch = urls[start:start + batch_size]
            results.extend(await self._scraper.scrape_many(batch, options))
            await checkpoint(extraction_progress(len(results), total))
        return results

    def _scrape_options(self, params: dict) -> ScrapeOptions:
        defaults = self._scraper.default_options
        return ScrapeOptions(
            extract_links=bool(params.get("extract_links")),
            timeout_seconds=defaults.timeout_seconds,
            user_agent=defaults.user_agent,
            respect_robots_txt=defaults.respect_robots_txt,
        )

    async def _run_scrape(self, job: Job, checkpoint: _Checkpoint) -> dict:
        urls       = list(job.params.get("urls") or [])
        batch_size = job.params.get("batch_size") or default_batch_size(len(urls))

        await checkpoint(PROGRESS_EXTRACTING)
        started = time.monotonic()
        results = await self._scrape_in_batches(urls, batch_size, self._scrape_options(job.params), checkpoint)
        metadata = scrape_metadata(results, started, time.monotonic())

        await checkpoint(PROGRESS_ASSEMBLED)
        return {
            "urls":            urls,
            "scraped_content": [r.model_dump(mode="json") for r in results],
            "metadata":        metadata,
        }

    async def _run_search(self, job: Job, checkpoint: _Checkpoint) -> dict:
        max_sources     = int(job.params.get("max_sources") or 5)
        government_only = bool(job.params.get("government_only", True))
        focus           = "government" if government_only else "all"

        search = await self._search_with_retry(job.query, max_sources * 2, focus)
        sources = search.sources
        if government_only:
            sources = [s for s in sources if s.is_government_source or is_government_url(s.url)]
        sources = sources[:max_sources]

        await checkpoint(PROGRESS_EXTRACTING)
        urls       = [s.url for s in sources]
        batch_size = job.params.get("batch_size") or default_batch_size(len(urls))
        started    = time.monotonic()
        results    = await self._scrape_in_batches(urls, batch_size, self._scrape_options(job.params), checkpoint)
        metadata   = scrape_metadata(results, started, time.monotonic())
        metadata["total_sources_found"] = len(search.sources)

        await checkpoint(PROGRESS_ASSEMBLED)
        return {
            "query":           job.query,
            "search_results":  SearchResult(sources=sources, summary=search.summary).model_dump(mode="json"),
            "scraped_content": [r.model_dump(mode="json") for r in results],
            "metadata":        metadata,
        }

    async def _run_web_search(self, job: Job, checkpoint: _Checkpoint) -> dict:
        await checkpoint(PROGRESS_EXTRACTING)
        search = await self._search_with_retry(
            job.query,
            int(job.params.get("max_results") or 10),
            job.params.get("focus") or "government",
        )
        await checkpoint(PROGRESS_EXTRACTED)
        await checkpoint(PROGRESS_ASSEMBLED)
        return {"query": job.query, **search.model_dump(mode="json")}

    async def _run_document_analysis(self, job: Job, checkpoint: _Checkpoint) -> dict:
        request = OrchestrationRequest.model_validate(job.params)
        total   = 3 if request.document_ref else 2
        done    = 0

        async def on_stage_complete(stage: str, succeeded: bool) -> None:
            nonlocal done
            done += 1
            await checkpoint(extraction_progress(done, total))

        await checkpoint(PROGRESS_EXTRACTING)
        result = await self._orchestration.process(
            request,
            owner_id=job.owner_id,
            on_stage_complete=on_stage_complete,
        )
        if result.status is OverallStatus.FAILED:
            joined = "; ".join(f"{stage}: {msg}" for stage, msg in result.errors.items())
            raise _OrchestrationFailed(joined or "All orchestration stages failed")

        await checkpoint(PROGRESS_ASSEMBLED)
        return result.model_dump(mode="json")
