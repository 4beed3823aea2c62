"""
Document API Pydantic Response Schemas

Covers the document endpoints under /api/v1/documents:
  - Upload acknowledgement (202 Accepted, processing is asynchronous)
  - Full document view including extracted text
  - Lightweight status view for polling
  - The uniform error envelope used by every 4xx/5xx response

Design decisions:
  - document_id is always server-generated; never client-supplied.
  - content_hash is the SHA-256 of the raw bytes, computed server-side.
  - processing_status is the pipeline state, separate from HTTP status.
  - All timestamps are UTC.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from compliance.models.documents import DocumentProcessingStatus, SourceClassification


# ---------------------------------------------------------------------------
# Upload acknowledgement: 202 Accepted
# ---------------------------------------------------------------------------

class DocumentUploadResponse(BaseModel):
    """
    Returned immediately after a successful upload.
    HTTP 202: the file is stored, processing happens in the background.
    """
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    document_id:           str                      = Field(..., validation_alias="id")
    original_name:         str
    media_type:            str                      = Field(..., description="Detected from magic bytes")
    size_bytes:            int
    content_hash:          str                      = Field(..., description="SHA-256 hex digest of the file")
    source_classification: SourceClassification
    priority:              int
    processing_status:     DocumentProcessingStatus = Field(
        DocumentProcessingStatus.PENDING,
        description="Poll /documents/{id}/status for updates",
    )
    created_at:            datetime


# ---------------------------------------------------------------------------
# Document views
# ---------------------------------------------------------------------------

class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:                    str
    original_name:         str
    media_type:            str
    size_bytes:            int
    owner_id:              str | None = None
    source_classification: SourceClassification
    priority:              int
    processing_status:     DocumentProcessingStatus
    processing_error:      str | None   = None
    extracted_text:        str | None   = None
    confidence_score:      float | None = None
    page_count:            int | None   = None
    content_hash:          str
    from_cache:            bool
    processed_at:          datetime | None = None
    created_at:            datetime
    updated_at:            datetime


class DocumentStatusResponse(BaseModel):
    """Polled by clients to track background processing."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    document_id:       str = Field(..., validation_alias="id")
    processing_status: DocumentProcessingStatus
    processing_error:  str | None   = None
    confidence_score:  float | None = None
    page_count:        int | None   = None
    from_cache:        bool
    processed_at:      datetime | None = None
    updated_at:        datetime


class DocumentListResponse(BaseModel):
    items: list[DocumentResponse]
    total: int


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error; may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")
