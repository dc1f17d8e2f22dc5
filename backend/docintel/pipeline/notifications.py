"""
In-app notification fan-out for completed analysis and embedding runs.

Only the notification rows are written here; rendering and delivery are
handled by the CRM front end.
"""

from __future__ import annotations

import logging

from docintel.events.orchestrator import FunctionContext
from docintel.events.registry import registry
from docintel.pipeline.services import PipelineServices
from docintel.schemas.events import ANALYZE_COMPLETED, EMBED_COMPLETED

logger = logging.getLogger(__name__)

MAX_ADMIN_RECIPIENTS = 3
DEFAULT_DOCUMENT_LABEL = "Document"


def document_link(document_id: str) -> str:
    return f"/documents?id={document_id}"


@registry.create_function("handle-analyze-completed", event=ANALYZE_COMPLETED, retries=2)
async def handle_analyze_completed(ctx: FunctionContext) -> dict:
    services: PipelineServices = ctx.services
    data = ctx.event.data
    document_id = data.get("documentId")
    user_id = data.get("userId")

    if not user_id:
        return {"success": False, "reason": "no_user_id"}

    async def _notify() -> None:
        names = await services.documents.document_names([document_id])
        name = names.get(document_id, DEFAULT_DOCUMENT_LABEL)
        await services.documents.create_notification(
            user_id=user_id,
            organization_id=data.get("organizationId"),
            type="document_analysis",
            title="Document analysis completed",
            message=f'AI analysis of "{name}" is complete',
            link_url=document_link(document_id),
            metadata={"documentId": document_id, "organizationId": data.get("organizationId")},
        )

    await ctx.step.run("create-notification", _notify)
    return {"success": True, "documentId": document_id}


@registry.create_function("handle-embed-completed", event=EMBED_COMPLETED, retries=2)
async def handle_embed_completed(ctx: FunctionContext) -> dict:
    services: PipelineServices = ctx.services
    data = ctx.event.data
    document_id = data.get("documentId")
    organization_id = data.get("organizationId")
    chunk_count = data.get("chunkCount", 0)

    async def _notify() -> int:
        admins = await services.documents.list_admin_members(organization_id, limit=MAX_ADMIN_RECIPIENTS)
        names = await services.documents.document_names([document_id])
        name = names.get(document_id, DEFAULT_DOCUMENT_LABEL)
        for admin_id in admins:
            await services.documents.create_notification(
                user_id=admin_id,
                organization_id=organization_id,
                type="document_embedding",
                title="Document indexing completed",
                message=f'"{name}" has been indexed for search ({chunk_count} chunks)',
                link_url=document_link(document_id),
                metadata={"documentId": document_id, "chunkCount": chunk_count},
            )
        return len(admins)

    notified = await ctx.step.run("create-notification", _notify)
    logger.info("Embedding notifications sent | doc=%s recipients=%d", document_id, notified)
    return {"success": True, "documentId": document_id}
