"""
Pipeline Trigger API Router

POST /api/v1/documents/{document_id}/extract   → 202, queues document/text.extract
POST /api/v1/documents/{document_id}/analyze   → 202, queues document/analyze.requested

Both routes take the organization from the verified JWT, never from the
request. A repeated request inside the idempotency window returns 202 with
`duplicate=true` and no new run.

Errors:
  404 DOCUMENT_NOT_FOUND     unknown document or another organization's document
  403 DOCUMENT_ACCESS_DENIED caller is not related to the document
  429 AI_RATE_LIMITED        more than the per-user analysis quota
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, status

from docintel.api.dependencies import CurrentUser, RunDrainer, Triggers
from docintel.schemas.api import AnalyzeRequest, ErrorResponse, PipelineAcceptedResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Document Pipeline"],
)

_ERROR_RESPONSES = {
    status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
}


@router.post(
    "/{document_id}/extract",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=PipelineAcceptedResponse,
    responses=_ERROR_RESPONSES,
    summary="Queue text extraction for an uploaded document",
)
async def request_extraction(
    document_id: UUID,
    user: CurrentUser,
    triggers: Triggers,
    background_tasks: BackgroundTasks,
    drain_runs: RunDrainer,
) -> PipelineAcceptedResponse:
    result = await triggers.request_extraction_by_id(str(user.organization_id), str(document_id))
    if drain_runs is not None and result.queued:
        background_tasks.add_task(drain_runs)
    return PipelineAcceptedResponse(
        document_id=document_id,
        event=result.event,
        run_ids=result.run_ids,
        duplicate=not result.queued,
    )


@router.post(
    "/{document_id}/analyze",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=PipelineAcceptedResponse,
    responses={**_ERROR_RESPONSES, status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse}},
    summary="Queue AI analysis of a document",
)
async def request_analysis(
    document_id: UUID,
    body: AnalyzeRequest,
    user: CurrentUser,
    triggers: Triggers,
    background_tasks: BackgroundTasks,
    drain_runs: RunDrainer,
) -> PipelineAcceptedResponse:
    result = await triggers.request_analysis(
        user_id=user.sub,
        organization_id=str(user.organization_id),
        document_id=str(document_id),
        analysis_type=body.analysis_type,
    )
    if drain_runs is not None and result.queued:
        background_tasks.add_task(drain_runs)
    return PipelineAcceptedResponse(
        document_id=document_id,
        event=result.event,
        run_ids=result.run_ids,
        duplicate=not result.queued,
    )
