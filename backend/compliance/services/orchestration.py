"""
Orchestration Pipeline

One logical compliance request, three independently attempted stages:

  1. Document   stored document id (processed inline if still PENDING) or
                an http(s) URL sent straight to OCR
  2. Search     query enriched with a 500-char summary of the document text
  3. Analysis   document text + search sources + additional context → LLM

Each stage is wrapped in its own error boundary; a failed stage records a
message under its key in ``errors`` and the next stage runs with whatever
is available. The analysis stage can run on the bare query alone.

Overall status:
  SUCCESS          every attempted stage succeeded
  PARTIAL_SUCCESS  at least one succeeded and at least one failed
  FAILED           nothing succeeded (or nothing could be attempted)

Only ValidationError (bad query) escapes process(); it is raised before
any stage runs.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from compliance.core.exceptions import ComplianceError, ValidationError
from compliance.core.retry import RetryPolicy, execute_with_retry, is_retryable_error
from compliance.models.base import utcnow
from compliance.models.documents import DocumentProcessingStatus
from compliance.processing.text import summarize_for_search
from compliance.providers.base import AnalysisProvider, AnalysisResult, SearchProvider, SearchResult
from compliance.schemas.orchestration import (
    MAX_QUERY_LENGTH,
    STAGE_ANALYSIS,
    STAGE_DOCUMENT,
    STAGE_SEARCH,
    OrchestrationRequest,
    OrchestrationResult,
    OverallStatus,
)

logger = logging.getLogger(__name__)

DOCUMENT_CONTEXT_CHARS = 5000
MAX_CONTEXT_SOURCES    = 10

StageCallback = Callable[[str, bool], Awaitable[None]]


class StageFailed(ComplianceError):
    """Stage-local failure with a message meant for the errors map."""


def _stage_message(exc: BaseException) -> str:
    if isinstance(exc, ComplianceError):
        message = exc.message
    else:
        message = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
    attempts = getattr(exc, "attempts", None)
    if attempts and attempts > 1:
        message = f"{message} (after {attempts} attempts)"
    return message


def overall_status(attempted: list[str], errors: dict[str, str]) -> OverallStatus:
    succeeded = [s for s in attempted if s not in errors]
    if not attempted or not succeeded:
        return OverallStatus.FAILED
    if len(succeeded) == len(attempted):
        return OverallStatus.SUCCESS
    return OverallStatus.PARTIAL_SUCCESS


def build_analysis_context(
    document_text:      str | None,
    search:             SearchResult | None,
    additional_context: str | None,
) -> str:
    parts: list[str] = []

    if document_text:
        parts.append(f"DOCUMENT CONTENT:\n{document_text[:DOCUMENT_CONTEXT_CHARS]}\n\n")

    if search and search.sources:
        parts.append("SEARCH RESULTS:\n")
        for i, source in enumerate(search.sources[:MAX_CONTEXT_SOURCES], start=1):
            label = "GOVERNMENT SOURCE" if source.is_government_source else "NON-GOVERNMENT SOURCE"
            parts.append(f"[{i}] {source.title} ({label})\nURL: {source.url}\n{source.snippet}\n\n")
        if search.summary:
            parts.append(f"SEARCH SUMMARY: {search.summary}\n\n")

    if additional_context:
        parts.append(f"ADDITIONAL CONTEXT:\n{additional_context}\n\n")

    return "".join(parts)


class OrchestrationService:
    def __init__(
        self,
        documents,
        pipeline,
        search:          SearchProvider,
        analysis:        AnalysisProvider,
        search_policy:   RetryPolicy,
        analysis_policy: RetryPolicy,
    ) -> None:
        self._documents       = documents
        self._pipeline        = pipeline
        self._search          = search
        self._analysis        = analysis
        self._search_policy   = search_policy
        self._analysis_policy = analysis_policy

    @staticmethod
    def validate(request: OrchestrationRequest) -> None:
        if not request.query:
            raise ValidationError("Query is required", details={"field": "query"})
        if len(request.query) > MAX_QUERY_LENGTH:
            raise ValidationError(
                f"Query must be at most {MAX_QUERY_LENGTH} characters",
                details={"field": "query"},
            )

    async def process(
        self,
        request:           OrchestrationRequest,
        owner_id:          str | None = None,
        on_stage_complete: StageCallback | None = None,
    ) -> OrchestrationResult:
        """
        Run every applicable stage and aggregate the outcome.

        ``on_stage_complete(stage, succeeded)`` is awaited after each stage;
        the async job runner uses it to advance progress.
        """
        self.validate(request)
        started_at = utcnow()
        attempted: list[str] = []
        errors:    dict[str, str] = {}

        async def finish_stage(stage: str, exc: BaseException | None) -> None:
            attempted.append(stage)
            if exc is not None:
                errors[stage] = _stage_message(exc)
                logger.warning("Orchestration stage failed | stage=%s error=%s", stage, errors[stage])
            if on_stage_complete is not None:
                await on_stage_complete(stage, exc is None)

        # -- 1. document ----------------------------------------------------
        document_text: str | None = None
        if request.document_ref:
            try:
                document_text = await self._document_stage(request, owner_id)
            except Exception as exc:
                await finish_stage(STAGE_DOCUMENT, exc)
            else:
                await finish_stage(STAGE_DOCUMENT, None)

        # -- 2. search ------------------------------------------------------
        search_results: SearchResult | None = None
        try:
            search_results = await self._search_stage(request, document_text)
        except Exception as exc:
            await finish_stage(STAGE_SEARCH, exc)
        else:
            await finish_stage(STAGE_SEARCH, None)

        # -- 3. analysis ----------------------------------------------------
        analysis: AnalysisResult | None = None
        context = build_analysis_context(document_text, search_results, request.additional_context)
        try:
            analysis = await execute_with_retry(
                lambda: self._analysis.analyze(context, request.query),
                is_retryable_error,
                self._analysis_policy,
                description="analysis",
            )
        except Exception as exc:
            await finish_stage(STAGE_ANALYSIS, exc)
        else:
            await finish_stage(STAGE_ANALYSIS, None)

        status = overall_status(attempted, errors)
        logger.info(
            "Orchestration done | status=%s stages=%s failed=%s",
            status.value, ",".join(attempted), ",".join(errors) or "-",
        )
        return OrchestrationResult(
            query=request.query,
            document_ref=request.document_ref,
            extracted_text=document_text,
            search_results=search_results,
            analysis=analysis,
            status=status,
            errors=errors,
            started_at=started_at,
            completed_at=utcnow(),
        )

    # -----------------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------------

    async def _document_stage(self, request: OrchestrationRequest, owner_id: str | None) -> str:
        if request.document_is_url:
            processed = await self._pipeline.extract_from_url(request.document_ref)
            return processed.extracted_text

        document = await self._documents.get_document(request.document_ref, owner_id)
        if document.processing_status is DocumentProcessingStatus.PENDING:
            document = await self._pipeline.process_document(document.id)

        if document.processing_status is DocumentProcessingStatus.PROCESSED and document.extracted_text:
            return document.extracted_text
        if document.processing_status is DocumentProcessingStatus.FAILED:
            raise StageFailed(f"Document processing failed: {document.processing_error or 'unknown error'}")
        raise StageFailed(f"Document is not ready (status={document.processing_status.value})")

    async def _search_stage(self, request: OrchestrationRequest, document_text: str | None) -> SearchResult:
        query = request.query
        if document_text:
            query = f"{query} {summarize_for_search(document_text)}"
        focus = "government" if request.prioritize_government_sources else "all"

        return await execute_with_retry(
            lambda: self._search.search(query, request.max_search_results, focus),
            is_retryable_error,
            self._search_policy,
            description="search",
        )
