"""
Synchronous orchestration endpoint.

POST /api/v1/orchestration/process runs document extraction, search and
analysis inline and answers 200 with the aggregated result whenever the
request itself was valid; stage failures are reported in the body
(`status` and `errors`), not through the HTTP status. Use
POST /api/v1/jobs/document-analysis for the same work in the background.
"""

from __future__ import annotations

from fastapi import APIRouter

from compliance.api.deps import Orchestration, OwnerId
from compliance.schemas.documents import ErrorResponse
from compliance.schemas.orchestration import OrchestrationRequest, OrchestrationResult

router = APIRouter(
    prefix="/orchestration",
    tags=["Orchestration"],
)


@router.post(
    "/process",
    response_model=OrchestrationResult,
    summary="Run the full compliance pipeline synchronously",
    responses={400: {"model": ErrorResponse, "description": "Missing or oversized query"}},
)
async def process(
    body:          OrchestrationRequest,
    orchestration: Orchestration,
    owner_id:      OwnerId,
) -> OrchestrationResult:
    return await orchestration.process(body, owner_id=owner_id)
