"""
Orchestration request / result models.

The result always carries start and completion timestamps and a per-stage
error map, whatever the outcome. Stage keys:

    documentProcessing   document extraction (stored document or URL)
    searchProcessing     search provider
    analysisProcessing   analysis provider
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from compliance.core.exceptions import PartialPipelineFailure
from compliance.providers.base import AnalysisResult, SearchResult

MAX_QUERY_LENGTH = 2000

STAGE_DOCUMENT = "documentProcessing"
STAGE_SEARCH   = "searchProcessing"
STAGE_ANALYSIS = "analysisProcessing"


class OverallStatus(str, Enum):
    SUCCESS         = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED          = "failed"


class OrchestrationRequest(BaseModel):
    query:                         str
    document_ref:                  str | None = Field(None, description="Stored document id or http(s) URL")
    additional_context:            str | None = None
    max_search_results:            int  = Field(10, ge=1, le=50)
    prioritize_government_sources: bool = True

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        return value.strip()

    @field_validator("document_ref")
    @classmethod
    def _blank_ref_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def document_is_url(self) -> bool:
        return bool(self.document_ref and self.document_ref.lower().startswith(("http://", "https://")))


class OrchestrationResult(BaseModel):
    query:          str
    document_ref:   str | None = None
    extracted_text: str | None = None
    search_results: SearchResult | None = None
    analysis:       AnalysisResult | None = None
    status:         OverallStatus
    errors:         dict[str, str] = Field(default_factory=dict)
    started_at:     datetime
    completed_at:   datetime

    def raise_for_status(self) -> "OrchestrationResult":
        """Raise PartialPipelineFailure unless every attempted stage succeeded."""
        if self.status is not OverallStatus.SUCCESS:
            raise PartialPipelineFailure(
                self.errors,
                message=f"Orchestration finished with status {self.status.value}",
            )
        return self
