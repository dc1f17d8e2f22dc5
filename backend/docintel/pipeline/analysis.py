"""
analyze-document
════════════════

Trigger: document/analyze.requested   retries: 3   idempotency: documentId-userId

Steps:
  fetch-document     load + access check; missing document or denied access
                     raises a NonRetriableError (no retries, on_failure runs)
  ai-analysis        DocumentAnalyzer; degrades to a placeholder, never raises
                     for AI problems
  save-analysis      append a document_analyses row
  log-audit          audit entry for the requesting user
  analyze-completed  emit document/analyze.completed

on_failure: audit entry with status failed and the error.
"""

from __future__ import annotations

import logging

from docintel.core.exceptions import DocumentAccessDenied, DocumentNotFoundError
from docintel.events.orchestrator import FunctionContext
from docintel.events.registry import registry
from docintel.pipeline.services import PipelineServices
from docintel.schemas.events import ANALYZE_COMPLETED, ANALYZE_REQUESTED, AnalyzeCompleted, AnalyzeRequested

logger = logging.getLogger(__name__)


def analysis_idempotency_key(data: dict) -> str:
    return f"{data.get('documentId')}-{data.get('userId')}"


async def on_analysis_failure(ctx: FunctionContext) -> None:
    services: PipelineServices = ctx.services
    logger.error(
        "Analysis failed | doc=%s user=%s error=%s",
        ctx.event.data.get("documentId"), ctx.event.data.get("userId"), ctx.error,
    )
    await services.documents.write_audit(
        organization_id=ctx.event.data.get("organizationId"),
        user_id=ctx.event.data.get("userId"),
        action="update",
        entity="document_analysis",
        entity_id=ctx.event.data.get("documentId"),
        details={"status": "failed", "error": str(ctx.error)},
    )


@registry.create_function(
    "analyze-document",
    event=ANALYZE_REQUESTED,
    retries=3,
    idempotency=analysis_idempotency_key,
    on_failure=on_analysis_failure,
)
async def analyze_document(ctx: FunctionContext) -> dict:
    payload = AnalyzeRequested.model_validate(ctx.event.data)
    services: PipelineServices = ctx.services
    documents = services.documents
    doc_id, user_id, org_id = payload.document_id, payload.user_id, payload.organization_id

    async def _fetch() -> dict:
        document = await documents.get_document(doc_id)
        if document is None or document.organization_id != org_id:
            raise DocumentNotFoundError(doc_id)
        if not await documents.has_access(document, user_id):
            raise DocumentAccessDenied(doc_id, user_id)
        return {"name": document.name, "content": document.content or ""}

    document = await ctx.step.run("fetch-document", _fetch)

    async def _analyze() -> dict:
        result = await services.analyzer.analyze(
            org_id,
            document["name"],
            document["content"],
            payload.analysis_type,
        )
        return result.model_dump(by_alias=True, mode="json")

    analysis = await ctx.step.run("ai-analysis", _analyze)

    analysis_id = await ctx.step.run(
        "save-analysis",
        lambda: documents.create_analysis(doc_id, analysis),
    )

    await ctx.step.run(
        "log-audit",
        lambda: documents.write_audit(
            organization_id=org_id,
            user_id=user_id,
            action="create",
            entity="document_analysis",
            entity_id=analysis_id,
            details={
                "documentId": doc_id,
                "analysisType": payload.analysis_type,
                "model": analysis["model"],
                "confidence": analysis["confidence"],
            },
        ),
    )

    await ctx.step.send_event(
        "analyze-completed",
        ANALYZE_COMPLETED,
        AnalyzeCompleted(
            document_id=doc_id,
            organization_id=org_id,
            analysis_id=analysis_id,
            user_id=user_id,
        ).to_data(),
    )

    logger.info("Analysis saved | doc=%s analysis=%s model=%s", doc_id, analysis_id, analysis["model"])
    return {"success": True, "documentId": doc_id, "analysisId": analysis_id}
