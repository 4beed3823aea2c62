"""
Job API schemas: submission requests, job views and the paginated list.

Submission endpoints answer 202 with a JobSubmittedResponse; the client
then polls GET /api/v1/jobs/{job_id} until status is completed or failed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from compliance.models.jobs import JobStatus, JobType
from compliance.schemas.orchestration import MAX_QUERY_LENGTH


# ---------------------------------------------------------------------------
# Submission requests
# ---------------------------------------------------------------------------

class SearchJobRequest(BaseModel):
    """Search, then scrape the top sources."""
    query:           str  = Field(..., min_length=1, max_length=MAX_QUERY_LENGTH)
    max_sources:     int  = Field(5, ge=1, le=50)
    government_only: bool = True
    batch_size:      int | None = Field(None, ge=1)
    extract_links:   bool = False


class WebSearchJobRequest(BaseModel):
    query:       str = Field(..., min_length=1, max_length=MAX_QUERY_LENGTH)
    max_results: int = Field(10, ge=1, le=50)
    focus:       Literal["government", "all"] = "government"


class ScrapeJobRequest(BaseModel):
    urls:          list[str] = Field(..., min_length=1, max_length=100)
    batch_size:    int | None = Field(None, ge=1)
    extract_links: bool = False


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class JobSubmittedResponse(BaseModel):
    job_id:   str
    status:   JobStatus
    job_type: JobType
    poll_url: str = Field(..., description="GET this URL to follow progress")


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:          str
    job_type:    JobType
    status:      JobStatus
    progress:    int = Field(..., ge=0, le=100)
    query:       str
    document_id: str | None = None
    owner_id:    str | None = None
    params:      dict[str, Any] = Field(default_factory=dict)
    start_time:  datetime
    end_time:    datetime | None = None
    result:      Any = None
    error:       str | None = None
    created_at:  datetime
    updated_at:  datetime


class JobListResponse(BaseModel):
    items:       list[JobResponse]
    total:       int
    page:        int
    page_size:   int
    total_pages: int
    has_next:    bool
    has_prev:    bool
