"""
Document API Router

  POST   /api/v1/documents/upload               multipart upload (202)
  GET    /api/v1/documents                      list, newest first
  GET    /api/v1/documents/{document_id}        full view incl. extracted text
  GET    /api/v1/documents/{document_id}/status poll processing state
  DELETE /api/v1/documents/{document_id}

Request lifecycle for upload:
  1. Read the multipart file (size capped before reading the body)
  2. DocumentService validates, hashes, stores and inserts the row
  3. Background processing is scheduled → returns 202

File type is detected from magic bytes, NOT the client Content-Type.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, File, Form, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response

from compliance.api.deps import Documents, OwnerId, Services
from compliance.core.exceptions import ValidationError
from compliance.models.documents import DocumentProcessingStatus, SourceClassification
from compliance.schemas.documents import (
    DocumentListResponse,
    DocumentResponse,
    DocumentStatusResponse,
    DocumentUploadResponse,
    ErrorResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)

# multipart boundary and headers
_FORM_OVERHEAD_BYTES = 4096


# ---------------------------------------------------------------------------
# POST /documents/upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a document for OCR processing",
    description=(
        "Accepts PDF, DOCX, DOC, TXT, PNG and JPEG files. "
        "Returns 202 immediately; processing is asynchronous. "
        "Poll GET /documents/{id}/status for progress."
    ),
    responses={
        202: {"model": DocumentUploadResponse, "description": "File accepted for processing"},
        400: {"model": ErrorResponse, "description": "Invalid file type, size or content"},
        422: {"model": ErrorResponse, "description": "Malformed multipart request"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)
async def upload_document(
    request:               Request,
    services:              Services,
    owner_id:              OwnerId,
    file:                  UploadFile           = File(..., description="Document file"),
    source_classification: SourceClassification = Form(SourceClassification.PRIVATE),
) -> JSONResponse:
    max_bytes = services.settings.max_upload_bytes

    # Guard: reject oversized requests before reading the body
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_bytes + _FORM_OVERHEAD_BYTES:
        raise ValidationError(
            f"File exceeds the {max_bytes} byte limit",
            details={"field": "file", "size_bytes": int(content_length)},
        )

    content = await file.read()
    document = await services.documents.upload_document(
        file.filename or "",
        content,
        owner_id=owner_id,
        source_classification=source_classification,
    )

    body = DocumentUploadResponse.model_validate(document)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json"),
        headers={
            "X-Document-ID": document.id,
            "Location":      f"/api/v1/documents/{document.id}/status",
        },
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=DocumentListResponse,
    summary="List documents, newest first",
)
async def list_documents(
    documents: Documents,
    owner_id:  OwnerId,
    status_:   DocumentProcessingStatus | None = Query(None, alias="status"),
    limit:     int = Query(100, ge=1, le=500),
) -> DocumentListResponse:
    items = await documents.list_documents(owner_id=owner_id, status=status_, limit=limit)
    return DocumentListResponse(
        items=[DocumentResponse.model_validate(d) for d in items],
        total=len(items),
    )


@router.get(
    "/{document_id}",
    response_model=DocumentResponse,
    summary="Get a document including its extracted text",
    responses={404: {"model": ErrorResponse}},
)
async def get_document(document_id: str, documents: Documents, owner_id: OwnerId) -> DocumentResponse:
    return DocumentResponse.model_validate(await documents.get_document(document_id, owner_id))


@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusResponse,
    summary="Poll processing status",
    responses={404: {"model": ErrorResponse}},
)
async def get_document_status(
    document_id: str,
    documents:   Documents,
    owner_id:    OwnerId,
) -> DocumentStatusResponse:
    return DocumentStatusResponse.model_validate(
        await documents.get_document_status(document_id, owner_id)
    )


# ---------------------------------------------------------------------------
# DELETE /documents/{document_id}
# ---------------------------------------------------------------------------

@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a document, its stored bytes and its cache entries",
    responses={404: {"model": ErrorResponse}},
)
async def delete_document(document_id: str, documents: Documents, owner_id: OwnerId) -> Response:
    await documents.delete_document(document_id, owner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
