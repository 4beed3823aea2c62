"""
Document Processing Pipeline

Runs in the background after an upload has been accepted (PENDING):

  1. Claim        PENDING → PROCESSING with a conditional UPDATE; a second
                  worker that loses the race does nothing.
  2. Identity     doc:<id>[:user:<owner>] hit → copy the cached outcome
                  (PROCESSED or FAILED) and stop; no remote call.
  3. Content      hash:<sha256> hit → reuse the shared OCR result, SADD
                  this document to hash:<sha256>:refs, warm the identity key,
                  PROCESSED, stop.
  4. OCR          full miss → provider call through execute_with_retry().
                  Success: format text, score confidence, persist, write
                  both cache keys and the reference. Stored bytes that no
                  longer match the row's hash correct the row first.
                  Failure: cache the FAILED outcome on the identity key
                  (short TTL), persist FAILED.

Every terminal write is a conditional UPDATE ... WHERE processing_status =
'processing', so each document transitions exactly once. The whole run is
wrapped in an error boundary: nothing escapes without the document being
marked FAILED first.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import update

from compliance.core.exceptions import DocumentNotFoundError, PermanentRemoteError, RemoteServiceError
from compliance.core.retry import RetryPolicy, execute_with_retry, is_retryable_error
from compliance.db.session import SessionFactory, session_scope
from compliance.models.base import utcnow
from compliance.models.documents import Document, DocumentProcessingStatus
from compliance.processing.confidence import score_confidence
from compliance.processing.text import format_ocr_text, raw_ocr_text
from compliance.providers.base import OCRProvider, OCRResult
from compliance.schemas.cache import (
    CachedOutcome,
    ContentHashCacheEntry,
    DocumentCacheEntry,
    ProcessedDocument,
)
from compliance.services.cache import CacheService
from compliance.storage.documents import DocumentStorage

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_TTL = 7 * 24 * 3600
DEFAULT_FAILURE_TTL = DEFAULT_SUCCESS_TTL // 7

INTERRUPTED_MESSAGE = "Processing interrupted by shutdown"


@dataclass(frozen=True)
class CacheTTLs:
    success: int = DEFAULT_SUCCESS_TTL
    failure: int = DEFAULT_FAILURE_TTL


class EmptyExtractionError(PermanentRemoteError):
    error_code = "EMPTY_EXTRACTION"

    def __init__(self) -> None:
        super().__init__("ocr", "no text could be extracted from the document")


def build_processed_document(ocr: OCRResult) -> ProcessedDocument:
    """Turn a raw OCR response into persisted text + confidence."""
    if not ocr.has_text:
        raise EmptyExtractionError()
    return ProcessedDocument(
        extracted_text=format_ocr_text(ocr),
        confidence_score=score_confidence(raw_ocr_text(ocr), ocr.page_count),
        page_count=ocr.page_count,
        model=ocr.model,
    )


def describe_failure(exc: BaseException) -> str:
    attempts = getattr(exc, "attempts", None)
    if isinstance(exc, RemoteServiceError):
        message = exc.message
    elif str(exc):
        message = f"{type(exc).__name__}: {exc}"
    else:
        message = type(exc).__name__
    if attempts and attempts > 1:
        return f"{message} (after {attempts} attempts)"
    return message


class DocumentPipeline:
    def __init__(
        self,
        session_factory: SessionFactory,
        cache:           CacheService,
        storage:         DocumentStorage,
        ocr:             OCRProvider,
        retry_policy:    RetryPolicy,
        ttls:            CacheTTLs | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache           = cache
        self._storage         = storage
        self._ocr             = ocr
        self._retry_policy    = retry_policy
        self._ttls            = ttls or CacheTTLs()

    # -----------------------------------------------------------------------
    # Public entry points
    # -----------------------------------------------------------------------

    async def process_document(self, document_id: str) -> Document:
        """
        Drive one document to PROCESSED or FAILED and return the final row.

        Documents that are not PENDING are returned untouched.

        Raises:
            DocumentNotFoundError: unknown id.
        """
        document = await self._claim(document_id)
        if document.processing_status is not DocumentProcessingStatus.PROCESSING:
            logger.info(
                "Pipeline skip | doc=%s status=%s",
                document_id, document.processing_status.value,
            )
            return document

        logger.info("Pipeline start | doc=%s owner=%s", document_id, document.owner_id)
        try:
            return await self._run(document)
        except asyncio.CancelledError:
            logger.warning("Pipeline interrupted | doc=%s", document_id)
            await self._mark_failed(document_id, INTERRUPTED_MESSAGE)
            raise
        except Exception as exc:
            logger.exception("Pipeline crashed | doc=%s", document_id)
            return await self._mark_failed(document_id, f"Internal processing error: {type(exc).__name__}")

    async def extract_from_url(self, url: str) -> ProcessedDocument:
        """OCR a remote document by URL; no persistence, no caching."""
        ocr = await execute_with_retry(
            lambda: self._ocr.extract_text(url),
            is_retryable_error,
            self._retry_policy,
            description=f"ocr url={url}",
        )
        return build_processed_document(ocr)

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    async def _run(self, document: Document) -> Document:
        identity_key = CacheService.document_key(document.id, document.owner_id)

        cached = await self._cache.get(identity_key, DocumentCacheEntry)
        if cached is not None:
            return await self._apply_identity_hit(document, cached)

        shared = await self._cache.get(CacheService.content_hash_key(document.content_hash), ContentHashCacheEntry)
        if shared is not None:
            return await self._apply_hash_hit(document, shared, identity_key)

        try:
            content = await self._storage.load(document.storage_location)
        except FileNotFoundError:
            return await self._mark_failed(document.id, "Stored document content is missing")

        content_hash = CacheService.compute_content_hash(content)
        if content_hash != document.content_hash:
            logger.warning(
                "Pipeline hash mismatch | doc=%s stored=%s actual=%s",
                document.id, document.content_hash, content_hash,
            )
            await self._correct_content_hash(document.id, content_hash)

        try:
            ocr = await execute_with_retry(
                lambda: self._ocr.extract_text(content, media_type=document.media_type),
                is_retryable_error,
                self._retry_policy,
                description=f"ocr doc={document.id}",
            )
            processed = build_processed_document(ocr)
        except Exception as exc:
            if not isinstance(exc, RemoteServiceError) and not is_retryable_error(exc):
                raise
            error = describe_failure(exc)
            logger.warning("Pipeline OCR failed | doc=%s error=%s", document.id, error)
            await self._cache.set(
                identity_key,
                DocumentCacheEntry(
                    document_id=document.id,
                    status=CachedOutcome.FAILED,
                    processed_at=utcnow(),
                    error=error,
                    content_hash=content_hash,
                ),
                ttl=self._ttls.failure,
            )
            return await self._mark_failed(document.id, error)

        final = await self._mark_processed(document.id, processed, from_cache=False)

        now = utcnow()
        await self._cache.set(
            identity_key,
            DocumentCacheEntry(
                document_id=document.id,
                status=CachedOutcome.PROCESSED,
                processed_at=now,
                result=processed,
                content_hash=content_hash,
            ),
            ttl=self._ttls.success,
        )
        await self._cache.set(
            CacheService.content_hash_key(content_hash),
            ContentHashCacheEntry(result=processed, processed_at=now),
            ttl=self._ttls.success,
        )
        await self._cache.add_reference(
            CacheService.content_refs_key(content_hash), document.id, ttl=self._ttls.success,
        )
        logger.info(
            "Pipeline done | doc=%s pages=%d confidence=%.3f",
            document.id, processed.page_count, processed.confidence_score,
        )
        return final

    async def _apply_identity_hit(self, document: Document, cached: DocumentCacheEntry) -> Document:
        logger.info("Pipeline identity cache hit | doc=%s outcome=%s", document.id, cached.status.value)
        if cached.status is CachedOutcome.PROCESSED and cached.result is not None:
            return await self._mark_processed(document.id, cached.result, from_cache=True)
        return await self._mark_failed(document.id, cached.error or "Processing previously failed")

    async def _apply_hash_hit(
        self,
        document:     Document,
        shared:       ContentHashCacheEntry,
        identity_key: str,
    ) -> Document:
        logger.info("Pipeline content cache hit | doc=%s hash=%s", document.id, document.content_hash)
        await self._cache.add_reference(
            CacheService.content_refs_key(document.content_hash), document.id, ttl=self._ttls.success,
        )

        await self._cache.set(
            identity_key,
            DocumentCacheEntry(
                document_id=document.id,
                status=CachedOutcome.PROCESSED,
                processed_at=shared.processed_at,
                result=shared.result,
                content_hash=document.content_hash,
            ),
            ttl=self._ttls.success,
        )
        return await self._mark_processed(document.id, shared.result, from_cache=True)

    # -----------------------------------------------------------------------
    # Persistence (conditional transitions)
    # -----------------------------------------------------------------------

    async def _claim(self, document_id: str) -> Document:
        async with session_scope(self._session_factory) as session:
            await session.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.processing_status == DocumentProcessingStatus.PENDING,
                )
                .values(processing_status=DocumentProcessingStatus.PROCESSING, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            document = await session.get(Document, document_id, populate_existing=True)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def _correct_content_hash(self, document_id: str, content_hash: str) -> None:
        async with session_scope(self._session_factory) as session:
            await session.execute(
                update(Document)
                .where(Document.id == document_id)
                .values(content_hash=content_hash, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

    async def _finish(self, document_id: str, values: dict) -> Document:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.processing_status == DocumentProcessingStatus.PROCESSING,
                )
                .values(updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.warning("Pipeline lost transition | doc=%s", document_id)
            document = await session.get(Document, document_id, populate_existing=True)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def _mark_processed(self, document_id: str, processed: ProcessedDocument, *, from_cache: bool) -> Document:
        return await self._finish(
            document_id,
            {
                "processing_status": DocumentProcessingStatus.PROCESSED,
                "extracted_text":    processed.extracted_text,
                "confidence_score":  processed.confidence_score,
                "page_count":        processed.page_count,
                "processing_error":  None,
                "from_cache":        from_cache,
                "processed_at":      utcnow(),
            },
        )

    async def _mark_failed(self, document_id: str, error: str) -> Document:
        logger.error("Pipeline failed | doc=%s error=%s", document_id, error)
        return await self._finish(
            document_id,
            {
                "processing_status": DocumentProcessingStatus.FAILED,
                "processing_error":  error,
                "processed_at":      utcnow(),
            },
        )
