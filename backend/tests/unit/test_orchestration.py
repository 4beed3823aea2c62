"""
Unit Tests: OrchestrationService
════════════════════════════════
Stage isolation and overall-status aggregation.

Coverage targets:
  ✅ All stages succeed → SUCCESS, timestamps set
  ✅ Search fails permanently → PARTIAL_SUCCESS, analysis still runs
  ✅ Every attempted stage fails → FAILED
  ✅ Query-only request: document stage skipped
  ✅ URL reference goes straight to OCR
  ✅ PENDING stored document is processed inline
  ✅ Search query enriched with a document summary; focus follows the flag
  ✅ Blank / oversized query → ValidationError before any stage
  ✅ raise_for_status() for strict callers
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from compliance.core.exceptions import PartialPipelineFailure, PermanentRemoteError, ValidationError
from compliance.models.documents import DocumentProcessingStatus
from compliance.schemas.orchestration import (
    STAGE_ANALYSIS,
    STAGE_DOCUMENT,
    STAGE_SEARCH,
    OrchestrationRequest,
    OverallStatus,
)
from compliance.services.orchestration import build_analysis_context, overall_status


@pytest.mark.unit
class TestOrchestration:

    async def test_all_stages_succeed(self, services, analysis):
        result = await services.orchestration.process(
            OrchestrationRequest(query="record keeping rules", document_ref="https://agency.gov/rule.pdf")
        )

        assert result.status is OverallStatus.SUCCESS
        assert result.errors == {}
        assert result.extracted_text.startswith("--- Page 1 ---")
        assert len(result.search_results.sources) == 3
        assert result.analysis.summary.startswith("Operators")
        assert result.started_at <= result.completed_at
        analysis.analyze.assert_awaited_once()

    async def test_search_permanent_failure_is_partial_success(self, services, search, analysis):
        search.search.side_effect = PermanentRemoteError("search", "invalid api key", status=401)

        result = await services.orchestration.process(OrchestrationRequest(query="gdpr fines"))

        assert result.status is OverallStatus.PARTIAL_SUCCESS
        assert set(result.errors) == {STAGE_SEARCH}
        assert "invalid api key" in result.errors[STAGE_SEARCH]
        assert result.search_results is None
        assert result.analysis is not None
        assert search.search.await_count == 1
        analysis.analyze.assert_awaited_once()

    async def test_every_stage_failing_is_failed(self, services, ocr, search, analysis):
        ocr.extract_text.side_effect = PermanentRemoteError("ocr", "bad document", status=400)
        search.search.side_effect = PermanentRemoteError("search", "forbidden", status=403)
        analysis.analyze.side_effect = PermanentRemoteError("analysis", "context too long", status=400)

        result = await services.orchestration.process(
            OrchestrationRequest(query="q", document_ref="https://x.gov/a.pdf")
        )

        assert result.status is OverallStatus.FAILED
        assert set(result.errors) == {STAGE_DOCUMENT, STAGE_SEARCH, STAGE_ANALYSIS}
        assert result.completed_at >= result.started_at

    async def test_query_only_skips_document_stage(self, services, ocr):
        result = await services.orchestration.process(OrchestrationRequest(query="q", document_ref="   "))

        assert result.status is OverallStatus.SUCCESS
        assert result.document_ref is None
        assert result.extracted_text is None
        ocr.extract_text.assert_not_awaited()

    async def test_pending_stored_document_is_processed_inline(self, services, ocr, sample_pdf_bytes):
        services.scheduler.schedule = AsyncMock()
        document = await services.documents.upload_document("rule.pdf", sample_pdf_bytes, owner_id="u1")

        result = await services.orchestration.process(
            OrchestrationRequest(query="q", document_ref=document.id), owner_id="u1",
        )

        assert result.status is OverallStatus.SUCCESS
        assert "Section 1." in result.extracted_text
        stored = await services.documents.get_document(document.id)
        assert stored.processing_status is DocumentProcessingStatus.PROCESSED

    async def test_other_owners_document_is_a_document_stage_failure(self, services, sample_pdf_bytes):
        services.scheduler.schedule = AsyncMock()
        document = await services.documents.upload_document("rule.pdf", sample_pdf_bytes, owner_id="alice")

        result = await services.orchestration.process(
            OrchestrationRequest(query="q", document_ref=document.id), owner_id="bob",
        )

        assert result.status is OverallStatus.PARTIAL_SUCCESS
        assert "not found" in result.errors[STAGE_DOCUMENT]

    async def test_search_query_enrichment_and_focus(self, services, search):
        await services.orchestration.process(
            OrchestrationRequest(
                query="retention",
                document_ref="https://agency.gov/rule.pdf",
                max_search_results=7,
                prioritize_government_sources=False,
            )
        )

        query, max_results, focus = search.search.await_args.args
        assert query.startswith("retention --- Page 1 --- Section 1.")
        assert "\n" not in query
        assert max_results == 7
        assert focus == "all"

    @pytest.mark.parametrize("query", ["", "   ", "x" * 2001])
    async def test_invalid_query_rejected_before_any_stage(self, services, search, query):
        with pytest.raises(ValidationError):
            await services.orchestration.process(OrchestrationRequest(query=query))

        search.search.assert_not_awaited()

    async def test_stage_callback_reports_each_stage(self, services, search):
        search.search.side_effect = PermanentRemoteError("search", "down", status=404)
        seen: list[tuple[str, bool]] = []

        async def on_stage(stage: str, ok: bool) -> None:
            seen.append((stage, ok))

        await services.orchestration.process(
            OrchestrationRequest(query="q", document_ref="https://a.gov/x.pdf"),
            on_stage_complete=on_stage,
        )

        assert seen == [(STAGE_DOCUMENT, True), (STAGE_SEARCH, False), (STAGE_ANALYSIS, True)]

    async def test_raise_for_status(self, services, search):
        search.search.side_effect = PermanentRemoteError("search", "down", status=404)
        result = await services.orchestration.process(OrchestrationRequest(query="q"))

        with pytest.raises(PartialPipelineFailure) as exc_info:
            result.raise_for_status()

        assert set(exc_info.value.errors) == {STAGE_SEARCH}


@pytest.mark.unit
class TestOrchestrationHelpers:

    @pytest.mark.parametrize(
        "attempted,errors,expected",
        [
            (["a", "b"], {}, OverallStatus.SUCCESS),
            (["a", "b"], {"a": "x"}, OverallStatus.PARTIAL_SUCCESS),
            (["a", "b"], {"a": "x", "b": "y"}, OverallStatus.FAILED),
            ([], {}, OverallStatus.FAILED),
        ],
    )
    def test_overall_status(self, attempted, errors, expected):
        assert overall_status(attempted, errors) is expected

    def test_analysis_context_sections(self, search):
        sources = search.search.return_value

        context = build_analysis_context("Document body", sources, "Focus on EU law")

        assert "DOCUMENT CONTENT" in context
        assert "Document body" in context
        assert "GOVERNMENT" in context and "NON-GOVERNMENT" in context
        assert sources.summary in context
        assert "Focus on EU law" in context
