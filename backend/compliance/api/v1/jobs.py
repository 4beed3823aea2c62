"""
Async Job API Router

  POST /api/v1/jobs/search             search + scrape top sources   (202)
  POST /api/v1/jobs/web-search         search only                   (202)
  POST /api/v1/jobs/scrape             scrape a list of URLs         (202)
  POST /api/v1/jobs/document-analysis  full orchestration            (202)
  GET  /api/v1/jobs                    paginated list, newest first
  GET  /api/v1/jobs/{job_id}           poll one job
  POST /api/v1/jobs/{job_id}/cancel    fail a PENDING / PROCESSING job

Submissions always answer 202 once the job row exists. Any failure after
that point is reported through the polled job's `error` field.

When the caller sends X-User-ID, jobs owned by someone else are reported
as not found.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from compliance.api.deps import OwnerId, Runner, Tracker
from compliance.core.exceptions import JobNotFoundError
from compliance.models.jobs import Job, JobStatus, JobType
from compliance.schemas.documents import ErrorResponse
from compliance.schemas.jobs import (
    JobListResponse,
    JobResponse,
    JobSubmittedResponse,
    ScrapeJobRequest,
    SearchJobRequest,
    WebSearchJobRequest,
)
from compliance.schemas.orchestration import OrchestrationRequest
from compliance.services.jobs import JobTracker

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/jobs",
    tags=["Jobs"],
)

_SUBMIT_RESPONSES = {
    202: {"model": JobSubmittedResponse, "description": "Job accepted; poll the returned URL"},
    400: {"model": ErrorResponse, "description": "Invalid job parameters"},
    422: {"model": ErrorResponse, "description": "Malformed request body"},
}


def _accepted(job: Job) -> JSONResponse:
    poll_url = f"/api/v1/jobs/{job.id}"
    body = JobSubmittedResponse(
        job_id=job.id,
        status=job.status,
        job_type=job.job_type,
        poll_url=poll_url,
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json"),
        headers={"Location": poll_url},
    )


async def _owned_job(tracker: JobTracker, job_id: str, owner_id: str | None) -> Job:
    job = await tracker.get_job(job_id)
    if owner_id is not None and job.owner_id != owner_id:
        raise JobNotFoundError(job_id)
    return job


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

@router.post(
    "/search",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobSubmittedResponse,
    summary="Search and scrape the top sources",
    responses=_SUBMIT_RESPONSES,
)
async def submit_search(body: SearchJobRequest, runner: Runner, owner_id: OwnerId) -> JSONResponse:
    job = await runner.submit_search(
        body.query,
        owner_id=owner_id,
        max_sources=body.max_sources,
        government_only=body.government_only,
        batch_size=body.batch_size,
        extract_links=body.extract_links,
    )
    return _accepted(job)


@router.post(
    "/web-search",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobSubmittedResponse,
    summary="Run a web search",
    responses=_SUBMIT_RESPONSES,
)
async def submit_web_search(body: WebSearchJobRequest, runner: Runner, owner_id: OwnerId) -> JSONResponse:
    job = await runner.submit_web_search(
        body.query,
        owner_id=owner_id,
        max_results=body.max_results,
        focus=body.focus,
    )
    return _accepted(job)


@router.post(
    "/scrape",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobSubmittedResponse,
    summary="Scrape a list of URLs",
    responses=_SUBMIT_RESPONSES,
)
async def submit_scrape(body: ScrapeJobRequest, runner: Runner, owner_id: OwnerId) -> JSONResponse:
    job = await runner.submit_scrape(
        body.urls,
        owner_id=owner_id,
        batch_size=body.batch_size,
        extract_links=body.extract_links,
    )
    return _accepted(job)


@router.post(
    "/document-analysis",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobSubmittedResponse,
    summary="Run document extraction, search and analysis in the background",
    responses=_SUBMIT_RESPONSES,
)
async def submit_document_analysis(
    body:     OrchestrationRequest,
    runner:   Runner,
    owner_id: OwnerId,
) -> JSONResponse:
    job = await runner.submit_document_analysis(body, owner_id=owner_id)
    return _accepted(job)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs, newest first",
    responses={400: {"model": ErrorResponse}},
)
async def list_jobs(
    tracker:   Tracker,
    owner_id:  OwnerId,
    job_type:  JobType | None   = Query(None, alias="type"),
    status_:   JobStatus | None = Query(None, alias="status"),
    page:      int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
) -> JobListResponse:
    result = await tracker.list_jobs(
        owner_id=owner_id,
        job_type=job_type,
        status=status_,
        page=page,
        page_size=page_size,
    )
    return JobListResponse(
        items=[JobResponse.model_validate(job) for job in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
        has_next=result.has_next,
        has_prev=result.has_prev,
    )


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Poll one job",
    responses={404: {"model": ErrorResponse}},
)
async def get_job(job_id: str, tracker: Tracker, owner_id: OwnerId) -> JobResponse:
    return JobResponse.model_validate(await _owned_job(tracker, job_id, owner_id))


@router.post(
    "/{job_id}/cancel",
    response_model=JobResponse,
    summary="Cancel a pending or running job",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Job already completed or failed"},
    },
)
async def cancel_job(job_id: str, tracker: Tracker, owner_id: OwnerId) -> JobResponse:
    await _owned_job(tracker, job_id, owner_id)
    job = await tracker.cancel_job(job_id)
    logger.info("Job cancel requested | id=%s owner=%s", job_id, owner_id or "-")
    return JobResponse.model_validate(job)
