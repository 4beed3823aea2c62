"""
Exception taxonomy for the compliance pipeline.

  ComplianceError                 base, carries a stable error_code
  ├── ValidationError             malformed input, rejected before any stage runs
  ├── RemoteServiceError          outbound call to OCR / search / analysis failed
  │   ├── TransientRemoteError    network, timeout, 5xx, 429  (retried)
  │   └── PermanentRemoteError    4xx other than 429          (never retried)
  ├── CacheError                  raised inside the cache layer, always swallowed
  ├── PartialPipelineFailure      orchestration finished with failed stages
  ├── NotFoundError
  │   ├── JobNotFoundError
  │   └── DocumentNotFoundError
  └── JobStateError               illegal lifecycle transition
      └── NotCancelableError

The HTTP layer maps these onto status codes in main.py; services never
raise fastapi.HTTPException themselves.
"""

from __future__ import annotations

from typing import Any


class ComplianceError(Exception):
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ComplianceError):
    error_code = "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Remote collaborators
# ---------------------------------------------------------------------------

class RemoteServiceError(ComplianceError):
    """
    Failure of a call to an external provider.

    ``status`` is the upstream HTTP status when one was received, None for
    transport-level failures. ``attempts`` is filled in by the retry
    executor once the call has been given up on.
    """

    error_code = "REMOTE_SERVICE_ERROR"

    def __init__(
        self,
        service: str,
        message: str,
        *,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{service}: {message}", details=details)
        self.service  = service
        self.status   = status
        self.attempts = 1

    @property
    def retryable(self) -> bool:
        if self.status is None:
            return True
        return self.status == 429 or self.status >= 500


class TransientRemoteError(RemoteServiceError):
    error_code = "REMOTE_SERVICE_UNAVAILABLE"

    @property
    def retryable(self) -> bool:
        return True


class PermanentRemoteError(RemoteServiceError):
    error_code = "REMOTE_SERVICE_REJECTED"

    @property
    def retryable(self) -> bool:
        return False


def remote_error_from_status(service: str, status: int, message: str) -> RemoteServiceError:
    """Pick the transient/permanent subclass for an upstream HTTP status."""
    if status == 429 or status >= 500:
        return TransientRemoteError(service, message, status=status)
    return PermanentRemoteError(service, message, status=status)


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

class CacheError(ComplianceError):
    error_code = "CACHE_ERROR"


class PartialPipelineFailure(ComplianceError):
    error_code = "PARTIAL_PIPELINE_FAILURE"

    def __init__(self, errors: dict[str, str], *, message: str | None = None) -> None:
        stages = ", ".join(sorted(errors)) or "none"
        super().__init__(
            message or f"Pipeline stages failed: {stages}",
            details={"errors": dict(errors)},
        )
        self.errors = dict(errors)


# ---------------------------------------------------------------------------
# Lookups and lifecycle
# ---------------------------------------------------------------------------

class NotFoundError(ComplianceError):
    error_code = "NOT_FOUND"


class JobNotFoundError(NotFoundError):
    error_code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found", details={"job_id": job_id})
        self.job_id = job_id


class DocumentNotFoundError(NotFoundError):
    error_code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str) -> None:
        super().__init__(
            f"Document {document_id} not found",
            details={"document_id": document_id},
        )
        self.document_id = document_id


class JobStateError(ComplianceError):
    error_code = "INVALID_JOB_STATE"

    def __init__(self, job_id: str, status: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Job {job_id} is already {status}",
            details={"job_id": job_id, "status": status},
        )
        self.job_id = job_id
        self.status = status


class NotCancelableError(JobStateError):
    error_code = "JOB_NOT_CANCELABLE"

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(
            job_id,
            status,
            f"Cannot cancel job {job_id} with status {status}",
        )
