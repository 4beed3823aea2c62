"""
Composed FastAPI Dependencies

Route handlers import from here; this is the single wiring point between
the HTTP layer and the ServiceContext built in the application lifespan.

Callers are identified by the X-User-ID header. Authentication itself is
handled upstream (gateway / ingress); the header only scopes documents
and jobs to an owner.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request

from compliance.core.context import ServiceContext
from compliance.services.documents import DocumentService
from compliance.services.job_runner import AsyncJobRunner
from compliance.services.jobs import JobTracker
from compliance.services.orchestration import OrchestrationService


def get_services(request: Request) -> ServiceContext:
    return request.app.state.services


def get_owner_id(
    x_user_id: Annotated[str | None, Header(max_length=128)] = None,
) -> str | None:
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


def get_document_service(services: Annotated[ServiceContext, Depends(get_services)]) -> DocumentService:
    return services.documents


def get_job_tracker(services: Annotated[ServiceContext, Depends(get_services)]) -> JobTracker:
    return services.tracker


def get_job_runner(services: Annotated[ServiceContext, Depends(get_services)]) -> AsyncJobRunner:
    return services.runner


def get_orchestration(services: Annotated[ServiceContext, Depends(get_services)]) -> OrchestrationService:
    return services.orchestration


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Services      = Annotated[ServiceContext, Depends(get_services)]
OwnerId       = Annotated[str | None, Depends(get_owner_id)]
Documents     = Annotated[DocumentService, Depends(get_document_service)]
Tracker       = Annotated[JobTracker, Depends(get_job_tracker)]
Runner        = Annotated[AsyncJobRunner, Depends(get_job_runner)]
Orchestration = Annotated[OrchestrationService, Depends(get_orchestration)]
