"""
Cache payloads for processed documents.

Two key families share these models:

  doc:<document_id>[:user:<user_id>]   DocumentCacheEntry
      Outcome of the first processing attempt for one document, success
      or failure. Checked first by the pipeline.

  hash:<sha256>                        ContentHashCacheEntry
      Successful OCR result shared by every document with byte-identical
      content. The referencing document ids live in the Redis set at
      hash:<sha256>:refs; both keys are deleted when the last referencing
      document is removed.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class CachedOutcome(str, Enum):
    PROCESSED = "processed"
    FAILED    = "failed"


class ProcessedDocument(BaseModel):
    """What the pipeline persists for a successful extraction."""
    extracted_text:   str
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    page_count:       int   = 0
    model:            str | None = None


class DocumentCacheEntry(BaseModel):
    document_id:  str
    status:       CachedOutcome
    processed_at: datetime
    result:       ProcessedDocument | None = None
    error:        str | None = None
    content_hash: str | None = None


class ContentHashCacheEntry(BaseModel):
    result:       ProcessedDocument
    processed_at: datetime
