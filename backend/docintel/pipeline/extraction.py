"""
extract-document-text
═════════════════════

Trigger: document/text.extract   retries: 2   idempotency: documentId

Steps:
  mark-processing     status → processing
  mark-unsupported    (MIME outside the supported set) status → unsupported, stop
  extract-text        download, parse, persist content + status completed;
                      no text layer → earlier content and chunks dropped,
                      status unsupported, stop
  chunk-text          delete-then-insert chunks of the persisted content
  extract-completed   emit document/text.extract.completed
  auto-classify       best effort, never fails the run
  trigger-embedding   emit document/embed.requested when chunk_count > 0

on_failure: status → failed, plus an audit entry.
"""

from __future__ import annotations

import logging

from docintel.events.orchestrator import FunctionContext
from docintel.events.registry import registry
from docintel.pipeline.services import PipelineServices
from docintel.processing.chunking import chunk_text
from docintel.processing.classifier import classify_document
from docintel.processing.extractor import extract_text, is_supported
from docintel.repositories.base import NewChunk
from docintel.schemas.events import (
    EMBED_REQUESTED,
    TEXT_EXTRACT,
    TEXT_EXTRACT_COMPLETED,
    EmbedRequested,
    TextExtractCompleted,
    TextExtractRequested,
)

logger = logging.getLogger(__name__)


async def on_extraction_failure(ctx: FunctionContext) -> None:
    services: PipelineServices = ctx.services
    document_id = ctx.event.data.get("documentId")
    organization_id = ctx.event.data.get("organizationId")

    logger.error("Extraction failed | doc=%s error=%s", document_id, ctx.error)
    await services.documents.set_extraction_status(document_id, "failed")
    await services.documents.write_audit(
        organization_id=organization_id,
        user_id=None,
        action="document.extraction_failed",
        entity="document",
        entity_id=document_id,
        details={"status": "failed", "error": str(ctx.error)},
    )


@registry.create_function(
    "extract-document-text",
    event=TEXT_EXTRACT,
    retries=2,
    idempotency=lambda data: data.get("documentId"),
    on_failure=on_extraction_failure,
)
async def extract_document_text(ctx: FunctionContext) -> dict:
    payload = TextExtractRequested.model_validate(ctx.event.data)
    services: PipelineServices = ctx.services
    documents = services.documents
    doc_id = payload.document_id

    await ctx.step.run(
        "mark-processing",
        lambda: documents.set_extraction_status(doc_id, "processing"),
    )

    if not is_supported(payload.mime_type):
        await ctx.step.run(
            "mark-unsupported",
            lambda: documents.set_extraction_status(doc_id, "unsupported"),
        )
        logger.info("Extraction skipped, unsupported type | doc=%s mime=%s", doc_id, payload.mime_type)
        return {"success": False, "reason": "unsupported_mime_type", "mimeType": payload.mime_type}

    # -----------------------------------------------------------------
    # Extract
    # -----------------------------------------------------------------

    async def _extract() -> dict:
        data = await services.storage.get_file_buffer(payload.file_path)
        result = extract_text(data, payload.mime_type)
        if result is None:
            # text and chunks from an earlier extraction go too
            await documents.discard_extracted_content(doc_id)
            services.retrieval.invalidate(payload.organization_id)
            return {"hasText": False, "wordCount": 0}
        await documents.save_extracted_content(doc_id, result.text)
        return {"hasText": True, "wordCount": result.word_count}

    extraction = await ctx.step.run("extract-text", _extract)
    if not extraction["hasText"]:
        logger.info("Extraction found no text | doc=%s mime=%s", doc_id, payload.mime_type)
        return {"success": False, "reason": "no_text", "documentId": doc_id}

    # -----------------------------------------------------------------
    # Chunk
    # -----------------------------------------------------------------

    async def _chunk() -> dict:
        document = await documents.get_document(doc_id)
        if document is None or not document.content:
            return {"chunkCount": 0}
        chunks = chunk_text(document.content)
        count = await documents.replace_chunks(
            doc_id,
            payload.organization_id,
            [
                NewChunk(
                    content=chunk.content,
                    chunk_index=chunk.chunk_index,
                    start_offset=chunk.start_offset,
                    end_offset=chunk.end_offset,
                )
                for chunk in chunks
            ],
        )
        return {"chunkCount": count}

    chunking = await ctx.step.run("chunk-text", _chunk)
    chunk_count = chunking["chunkCount"]

    await ctx.step.send_event(
        "extract-completed",
        TEXT_EXTRACT_COMPLETED,
        TextExtractCompleted(
            document_id=doc_id,
            organization_id=payload.organization_id,
            word_count=extraction["wordCount"],
            chunk_count=chunk_count,
        ).to_data(),
    )

    # -----------------------------------------------------------------
    # Classify (best effort)
    # -----------------------------------------------------------------

    async def _classify() -> str | None:
        try:
            document = await documents.get_document(doc_id)
            if document is None or not document.content:
                return None
            client = await services.ai.model_client(payload.organization_id)
            label = await classify_document(client, document.content)
            if label and label != document.type:
                await documents.update_type(doc_id, label)
                logger.info("Document classified | doc=%s type=%s", doc_id, label)
            return label
        except Exception as exc:
            logger.warning("Auto-classification failed | doc=%s error=%s", doc_id, exc)
            return None

    await ctx.step.run("auto-classify", _classify)

    if chunk_count > 0:
        await ctx.step.send_event(
            "trigger-embedding",
            EMBED_REQUESTED,
            EmbedRequested(document_id=doc_id, organization_id=payload.organization_id).to_data(),
        )

    logger.info(
        "Extraction completed | doc=%s words=%d chunks=%d",
        doc_id, extraction["wordCount"], chunk_count,
    )
    return {
        "success": True,
        "documentId": doc_id,
        "wordCount": extraction["wordCount"],
        "chunkCount": chunk_count,
    }
