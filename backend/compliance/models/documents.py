"""
SQLAlchemy ORM Model: Documents

Tracks a single uploaded file from upload → OCR → stored extracted text.

State machine (processing_status column):
    pending     bytes stored, background processing scheduled
    processing  claimed by the document pipeline
    processed   extracted_text and confidence_score populated
    failed      OCR gave up (see processing_error)

Each transition happens exactly once; the pipeline uses conditional
UPDATEs (WHERE processing_status = ...) so a second worker picking up the
same document cannot re-run it.

content_hash (SHA-256 of the raw bytes) is not unique: byte-identical
uploads are legal and share one hash-keyed cache entry.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Float, Index, Integer, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from compliance.models.base import Base, UTCDateTime, utcnow


class DocumentProcessingStatus(str, Enum):
    PENDING    = "pending"
    PROCESSING = "processing"
    PROCESSED  = "processed"
    FAILED     = "failed"


class SourceClassification(str, Enum):
    GOVERNMENT = "government"
    PUBLIC     = "public"
    PRIVATE    = "private"

    @property
    def priority(self) -> int:
        return _PRIORITY[self]


_PRIORITY = {
    SourceClassification.GOVERNMENT: 10,
    SourceClassification.PUBLIC:     5,
    SourceClassification.PRIVATE:    0,
}


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="documents_confidence_range",
        ),
        Index("idx_documents_owner_created", "owner_id", "created_at"),
        Index("idx_documents_status_created", "processing_status", "created_at"),
        Index("idx_documents_content_hash", "content_hash"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    original_name:   Mapped[str] = mapped_column(Text, nullable=False)
    stored_filename: Mapped[str] = mapped_column(Text, nullable=False)
    media_type: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Detected from magic bytes, never trusted from the client",
    )
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_location: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Filesystem path or s3://bucket/key",
    )
    owner_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    source_classification: Mapped[SourceClassification] = mapped_column(
        SQLEnum(SourceClassification, native_enum=False, length=16,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SourceClassification.PRIVATE,
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    processing_status: Mapped[DocumentProcessingStatus] = mapped_column(
        SQLEnum(DocumentProcessingStatus, native_enum=False, length=16,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DocumentProcessingStatus.PENDING,
    )
    processing_error: Mapped[Optional[str]]   = mapped_column(Text, nullable=True)
    extracted_text:   Mapped[Optional[str]]   = mapped_column(Text, nullable=True)
    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    page_count:       Mapped[Optional[int]]   = mapped_column(Integer, nullable=True)

    content_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 hex digest of the raw bytes",
    )
    from_cache: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at:   Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at:   Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} name={self.original_name!r} "
            f"status={self.processing_status}>"
        )
