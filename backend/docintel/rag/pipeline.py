"""
Context assembly for retrieval-augmented prompts.

    format_context(sources) →

        Below is document content relevant to the query:

        [Document 1: Contract.pdf (relevance: 87%)]
        ...chunk text...

        ---

        [Document 2: ...]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from docintel.rag.retriever import RetrievalEngine, RetrievedChunk

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "Below is document content relevant to the query:\n\n"
SOURCE_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True)
class RagResult:
    context: str
    sources: list[RetrievedChunk] = field(default_factory=list)


def format_context(sources: list[RetrievedChunk]) -> str:
    if not sources:
        return ""
    blocks = [
        f"[Document {i}: {source.document_name} (relevance: {round(source.score * 100)}%)]\n{source.content}"
        for i, source in enumerate(sources, start=1)
    ]
    return CONTEXT_HEADER + SOURCE_SEPARATOR.join(blocks)


async def build_rag_context(
    retrieval: RetrievalEngine,
    organization_id: str,
    query: str,
    *,
    top_k: int | None = None,
    min_score: float | None = None,
    document_ids: list[str] | None = None,
    customer_id: str | None = None,
) -> RagResult | None:
    """None when embeddings are not configured for the organization."""
    sources = await retrieval.query(
        organization_id,
        query,
        top_k=top_k,
        min_score=min_score,
        document_ids=document_ids,
        customer_id=customer_id,
    )
    if sources is None:
        return None
    return RagResult(context=format_context(sources), sources=sources)
