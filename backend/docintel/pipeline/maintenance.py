"""
rescan-stale-documents (cron, every 15 minutes)

Re-emits document/text.extract for documents stuck in 'pending', which
happens when the broker was unreachable at upload time. The extraction
function's idempotency key makes a re-emit for an already-claimed document
a no-op inside the idempotency window.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from docintel.core.config import settings
from docintel.events.orchestrator import FunctionContext
from docintel.events.registry import registry
from docintel.models.documents import utcnow
from docintel.pipeline.services import PipelineServices
from docintel.schemas.events import TEXT_EXTRACT, TextExtractRequested

logger = logging.getLogger(__name__)

RESCAN_CRON = "*/15 * * * *"


@registry.create_function("rescan-stale-documents", cron=RESCAN_CRON, retries=0)
async def rescan_stale_documents(ctx: FunctionContext) -> dict:
    services: PipelineServices = ctx.services

    async def _find() -> list[dict]:
        cutoff = utcnow() - timedelta(minutes=settings.stale_document_age_minutes)
        stale = await services.documents.find_stale_pending(cutoff, settings.stale_document_scan_limit)
        return [
            TextExtractRequested(
                document_id=doc.id,
                organization_id=doc.organization_id,
                file_path=doc.file_path,
                mime_type=doc.mime_type,
            ).to_data()
            for doc in stale
            if doc.file_path
        ]

    events = await ctx.step.run("find-stale-documents", _find)

    for data in events:
        await ctx.step.send_event("requeue-extraction", TEXT_EXTRACT, data)

    if events:
        logger.info("Stale documents re-queued | count=%d", len(events))
    return {"requeued": len(events)}
