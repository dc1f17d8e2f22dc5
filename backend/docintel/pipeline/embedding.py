"""
embed-document-chunks
═════════════════════

Trigger: document/embed.requested   retries: 2   idempotency: documentId

Steps:
  check-embedding-config   no embedding capability → {"reason": "embedding_not_configured"}
  load-chunks              [{id, content}] ordered by chunk_index; none → {"reason": "no_chunks"}
  embed-batch-{i}          one step per batch of `embedding_batch_size` chunks
  invalidate-cache         drop the organization's retrieval cache entry
  embed-completed          emit document/embed.completed

Batches run sequentially. A failed attempt resumes at the first batch
without a checkpoint; earlier batches are never re-sent to the provider.
"""

from __future__ import annotations

import logging

from docintel.events.orchestrator import FunctionContext
from docintel.events.registry import registry
from docintel.pipeline.services import PipelineServices
from docintel.schemas.events import EMBED_COMPLETED, EMBED_REQUESTED, EmbedCompleted, EmbedRequested

logger = logging.getLogger(__name__)


async def on_embedding_failure(ctx: FunctionContext) -> None:
    services: PipelineServices = ctx.services
    logger.error("Embedding failed | doc=%s error=%s", ctx.event.data.get("documentId"), ctx.error)
    await services.documents.write_audit(
        organization_id=ctx.event.data.get("organizationId"),
        user_id=None,
        action="document.embedding_failed",
        entity="document",
        entity_id=ctx.event.data.get("documentId"),
        details={"status": "failed", "error": str(ctx.error)},
    )


@registry.create_function(
    "embed-document-chunks",
    event=EMBED_REQUESTED,
    retries=2,
    idempotency=lambda data: data.get("documentId"),
    on_failure=on_embedding_failure,
)
async def embed_document_chunks(ctx: FunctionContext) -> dict:
    payload = EmbedRequested.model_validate(ctx.event.data)
    services: PipelineServices = ctx.services
    doc_id, org_id = payload.document_id, payload.organization_id

    async def _check_config() -> dict:
        config = await services.ai.embedding_config(org_id)
        if config is None:
            return {"configured": False}
        return {"configured": True, "model": config.model, "dimensions": config.dimensions}

    config = await ctx.step.run("check-embedding-config", _check_config)
    if not config["configured"]:
        logger.info("Embedding skipped, not configured | doc=%s org=%s", doc_id, org_id)
        return {"success": False, "reason": "embedding_not_configured"}

    async def _load_chunks() -> list[dict]:
        chunks = await services.documents.list_chunks(doc_id)
        return [{"id": chunk.id, "content": chunk.content} for chunk in chunks]

    chunks = await ctx.step.run("load-chunks", _load_chunks)
    if not chunks:
        return {"success": False, "reason": "no_chunks"}

    batch_size = services.embedding_batch_size
    model = config["model"]

    for batch_index, start in enumerate(range(0, len(chunks), batch_size)):
        batch = chunks[start:start + batch_size]

        async def _embed_batch(batch: list[dict] = batch) -> dict:
            client = await services.ai.embedding_client(org_id)
            if client is None:
                # Configuration removed mid-run; retry picks up from this batch
                raise RuntimeError("Embedding provider is no longer configured")
            result = await client.embed([chunk["content"] for chunk in batch])
            saved = await services.documents.save_embeddings(
                [(chunk["id"], vector) for chunk, vector in zip(batch, result.vectors)],
                result.model,
                result.dimensions,
            )
            return {"count": saved, "model": result.model}

        outcome = await ctx.step.run(f"embed-batch-{batch_index}", _embed_batch)
        model = outcome["model"]
        logger.info(
            "Embedding batch done | doc=%s batch=%d size=%d",
            doc_id, batch_index, outcome["count"],
        )

    await ctx.step.run("invalidate-cache", lambda: services.retrieval.invalidate(org_id))

    await ctx.step.send_event(
        "embed-completed",
        EMBED_COMPLETED,
        EmbedCompleted(
            document_id=doc_id,
            organization_id=org_id,
            chunk_count=len(chunks),
            embedding_model=model,
        ).to_data(),
    )

    logger.info("Embedding completed | doc=%s chunks=%d model=%s", doc_id, len(chunks), model)
    return {"success": True, "documentId": doc_id, "chunkCount": len(chunks), "model": model}
