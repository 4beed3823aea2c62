"""
Document Service

Upload flow (synchronous part, returns 202):
  1. Validate: non-empty, size cap, dangerous extension / executable header,
     magic-byte media type (PDF, DOCX, DOC, TXT, PNG, JPEG)
  2. Compute SHA-256 content hash
  3. Store bytes under a generated name  <unix-ms>-<random hex><ext>
  4. Insert the Document row (PENDING, priority from source classification)
  5. Schedule background processing (DocumentPipeline)

If scheduling fails the row stays PENDING, and a worker that dies mid-run
leaves it PROCESSING; requeue_stale_documents() picks both up again later.

Deletion removes the stored bytes, the row and the identity cache key, and
detaches the document from its shared content-hash entry, deleting that
entry once no document references it.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, select, update

from compliance.core.exceptions import DocumentNotFoundError
from compliance.db.session import SessionFactory, session_scope
from compliance.models.base import utcnow
from compliance.models.documents import Document, DocumentProcessingStatus, SourceClassification
from compliance.processing.validation import sanitize_filename, secure_filename, validate_upload
from compliance.services.cache import CacheService
from compliance.storage.documents import DocumentStorage
from compliance.workers.background import DocumentScheduler

logger = logging.getLogger(__name__)


class DocumentService:
    def __init__(
        self,
        session_factory:  SessionFactory,
        storage:          DocumentStorage,
        cache:            CacheService,
        scheduler:        DocumentScheduler,
        max_upload_bytes: int = 10 * 1024 * 1024,
    ) -> None:
        self._session_factory  = session_factory
        self._storage          = storage
        self._cache            = cache
        self._scheduler        = scheduler
        self._max_upload_bytes = max_upload_bytes

    # -----------------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------------

    async def upload_document(
        self,
        filename:              str,
        content:               bytes,
        owner_id:              str | None = None,
        source_classification: SourceClassification | str = SourceClassification.PRIVATE,
    ) -> Document:
        """
        Validate, store and register an upload, then schedule processing.

        Raises:
            ValidationError: the file was rejected; nothing is stored.
        """
        media_type     = validate_upload(filename, content, self._max_upload_bytes)
        classification = SourceClassification(source_classification)
        content_hash   = CacheService.compute_content_hash(content)
        stored_name    = secure_filename(filename)

        location = await self._storage.save(stored_name, content, media_type)

        now = utcnow()
        document = Document(
            original_name=sanitize_filename(filename),
            stored_filename=stored_name,
            media_type=media_type,
            size_bytes=len(content),
            storage_location=location,
            owner_id=owner_id,
            source_classification=classification,
            priority=classification.priority,
            processing_status=DocumentProcessingStatus.PENDING,
            content_hash=content_hash,
            created_at=now,
            updated_at=now,
        )
        try:
            async with session_scope(self._session_factory) as session:
                session.add(document)
        except Exception:
            await self._storage.delete(location)
            raise

        logger.info(
            "Document uploaded | doc=%s owner=%s type=%s size=%d hash=%s",
            document.id, owner_id, media_type, len(content), content_hash[:12],
        )

        try:
            await self._scheduler.schedule(document.id, document.priority)
        except Exception as exc:
            logger.error(
                "Document scheduling failed; left PENDING for requeue | doc=%s error=%s",
                document.id, exc,
            )
        return document

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def get_document(self, document_id: str, owner_id: str | None = None) -> Document:
        async with session_scope(self._session_factory) as session:
            document = await session.get(Document, document_id)
        if document is None or (owner_id is not None and document.owner_id != owner_id):
            raise DocumentNotFoundError(document_id)
        return document

    async def get_document_status(self, document_id: str, owner_id: str | None = None) -> Document:
        """Same lookup as get_document; routes render only the status fields."""
        return await self.get_document(document_id, owner_id)

    async def list_documents(
        self,
        owner_id: str | None = None,
        status:   DocumentProcessingStatus | None = None,
        limit:    int = 100,
    ) -> list[Document]:
        stmt = select(Document).order_by(Document.created_at.desc(), Document.id.desc()).limit(limit)
        if owner_id is not None:
            stmt = stmt.where(Document.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(Document.processing_status == DocumentProcessingStatus(status))
        async with session_scope(self._session_factory) as session:
            return list(await session.scalars(stmt))

    # -----------------------------------------------------------------------
    # Delete
    # -----------------------------------------------------------------------

    async def delete_document(self, document_id: str, owner_id: str | None = None) -> None:
        document = await self.get_document(document_id, owner_id)

        async with session_scope(self._session_factory) as session:
            await session.execute(delete(Document).where(Document.id == document.id))

        try:
            await self._storage.delete(document.storage_location)
        except FileNotFoundError:
            logger.warning("Document bytes already gone | doc=%s", document.id)

        await self._cache.delete(CacheService.document_key(document.id, document.owner_id))
        await self._detach_from_hash_entry(document)
        logger.info("Document deleted | doc=%s", document.id)

    async def _detach_from_hash_entry(self, document: Document) -> None:
        refs_key = CacheService.content_refs_key(document.content_hash)
        if document.id not in await self._cache.references(refs_key):
            return

        remaining = await self._cache.remove_reference(refs_key, document.id)
        if remaining is None:
            return
        if remaining:
            logger.debug("Hash entry detached | key=%s remaining=%d", refs_key, remaining)
            return

        await self._cache.delete(CacheService.content_hash_key(document.content_hash))
        await self._cache.delete(refs_key)
        logger.debug("Hash entry removed | hash=%s", document.content_hash)

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    async def requeue_stale_documents(
        self,
        older_than:            datetime,
        processing_older_than: datetime | None = None,
    ) -> int:
        """
        Re-schedule documents still PENDING since before ``older_than``.

        With ``processing_older_than`` set, PROCESSING rows untouched since
        that cutoff (their worker died mid-run) are first reset to PENDING
        and re-scheduled with them.
        """
        async with session_scope(self._session_factory) as session:
            if processing_older_than is not None:
                reset = await session.execute(
                    update(Document)
                    .where(
                        Document.processing_status == DocumentProcessingStatus.PROCESSING,
                        Document.updated_at < processing_older_than,
                    )
                    .values(processing_status=DocumentProcessingStatus.PENDING, updated_at=utcnow())
                    .returning(Document.id, Document.priority)
                    .execution_options(synchronize_session=False)
                )
                stuck = reset.all()
            else:
                stuck = []
            pending = (
                await session.execute(
                    select(Document.id, Document.priority).where(
                        Document.processing_status == DocumentProcessingStatus.PENDING,
                        Document.created_at < older_than,
                    )
                )
            ).all()

        rows = dict(pending)
        rows.update(dict(stuck))
        for document_id, priority in rows.items():
            await self._scheduler.schedule(document_id, priority)
        if stuck:
            logger.warning("Stuck documents reset | count=%d", len(stuck))
        if rows:
            logger.info("Stale documents requeued | count=%d", len(rows))
        return len(rows)
