"""
RAG Query API

POST /api/v1/rag/query → ranked chunks plus a formatted context block

Requires the organization's "rag" feature flag. When embeddings are not
configured the response is 200 with `configured=false` and no sources.
Retrieval is scoped to the caller's organization from the JWT.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from docintel.api.dependencies import AIAccess, CurrentUser, Retrieval
from docintel.rag.pipeline import build_rag_context
from docintel.schemas.api import RagQueryRequest, RagQueryResponse, RagSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rag", tags=["RAG"])


@router.post("/query", response_model=RagQueryResponse, summary="Retrieve relevant document chunks")
async def rag_query(
    body: RagQueryRequest,
    user: CurrentUser,
    retrieval: Retrieval,
    ai: AIAccess,
) -> RagQueryResponse:
    organization_id = str(user.organization_id)
    await ai.require_feature(organization_id, "rag")

    result = await build_rag_context(
        retrieval,
        organization_id,
        body.query,
        top_k=body.top_k,
        min_score=body.min_score,
        document_ids=[str(doc_id) for doc_id in body.document_ids] if body.document_ids is not None else None,
        customer_id=str(body.customer_id) if body.customer_id else None,
    )
    if result is None:
        return RagQueryResponse(configured=False)

    logger.info("RAG query | org=%s user=%s sources=%d", organization_id, user.sub, len(result.sources))
    return RagQueryResponse(
        configured=True,
        context=result.context,
        sources=[
            RagSource(
                chunk_id=source.chunk_id,
                document_id=source.document_id,
                document_name=source.document_name,
                content=source.content,
                score=source.score,
            )
            for source in result.sources
        ],
    )
