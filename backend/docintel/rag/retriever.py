"""
Retrieval Engine — cosine similarity over an organization's embedded chunks
═════════════════════════════════════════════════════════════════════════

Vectors live as JSON text on document_chunks; ranking is brute force in
numpy over everything the organization has embedded.

Cache
─────
  key        organization_id
  contents   all embedded chunks of the organization (full loads only;
             loads filtered by document ids bypass the cache entirely)
  ttl        rag_cache_ttl_seconds (5 min)
  capacity   rag_cache_max_orgs (3) — on overflow the entry with the
             oldest loaded_at is evicted
  invalidate after every embedding run of that organization

The cache is process-local. A worker's invalidate() does not reach other
processes; their entries expire by TTL.

Tenant isolation: every load is filtered by organization_id and the cache
is keyed by it, so results never mix organizations.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from docintel.core.config import settings
from docintel.llm.clients import AIClients
from docintel.repositories.base import DocumentStore, EmbeddedChunk

logger = logging.getLogger(__name__)

UNKNOWN_DOCUMENT_NAME = "Unknown document"


@dataclass(frozen=True)
class RetrievedChunk:
    chunk_id:      str
    document_id:   str
    document_name: str
    content:       str
    score:         float


@dataclass
class _CacheEntry:
    chunks:    list[EmbeddedChunk]
    loaded_at: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """0.0 for mismatched lengths or a zero-norm vector."""
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class RetrievalEngine:
    def __init__(
        self,
        documents: DocumentStore,
        ai: AIClients,
        *,
        ttl_seconds: float | None = None,
        max_orgs: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._documents = documents
        self._ai        = ai
        self._ttl       = ttl_seconds if ttl_seconds is not None else settings.rag_cache_ttl_seconds
        self._max_orgs  = max_orgs if max_orgs is not None else settings.rag_cache_max_orgs
        self._clock     = clock
        self._cache: dict[str, _CacheEntry] = {}

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def invalidate(self, organization_id: str) -> None:
        if self._cache.pop(organization_id, None) is not None:
            logger.info("Retrieval cache invalidated | org=%s", organization_id)

    def cached_organizations(self) -> list[str]:
        return list(self._cache)

    async def _load_chunks(
        self,
        organization_id: str,
        document_ids: Sequence[str] | None,
    ) -> list[EmbeddedChunk]:
        if document_ids is not None:
            return await self._documents.load_embedded_chunks(organization_id, document_ids)

        now = self._clock()
        entry = self._cache.get(organization_id)
        if entry is not None and now - entry.loaded_at < self._ttl:
            return entry.chunks

        chunks = await self._documents.load_embedded_chunks(organization_id)
        self._cache[organization_id] = _CacheEntry(chunks=chunks, loaded_at=now)

        while len(self._cache) > self._max_orgs:
            oldest = min(self._cache, key=lambda org: self._cache[org].loaded_at)
            del self._cache[oldest]
            logger.debug("Retrieval cache evicted | org=%s", oldest)

        logger.info("Retrieval cache loaded | org=%s chunks=%d", organization_id, len(chunks))
        return chunks

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def query(
        self,
        organization_id: str,
        text: str,
        *,
        top_k: int | None = None,
        min_score: float | None = None,
        document_ids: Sequence[str] | None = None,
        customer_id: str | None = None,
    ) -> list[RetrievedChunk] | None:
        """
        Rank the organization's chunks against `text`.

        Returns None when embeddings are not configured for the
        organization, [] when nothing scores at or above `min_score`.
        """
        top_k     = top_k if top_k is not None else settings.rag_top_k
        min_score = min_score if min_score is not None else settings.rag_min_score

        client = await self._ai.embedding_client(organization_id)
        if client is None:
            return None

        if customer_id is not None:
            customer_docs = await self._documents.document_ids_for_customer(organization_id, customer_id)
            if document_ids is not None:
                allowed = set(customer_docs)
                customer_docs = [doc_id for doc_id in document_ids if doc_id in allowed]
            document_ids = customer_docs
            if not document_ids:
                return []

        chunks = await self._load_chunks(organization_id, document_ids)
        if not chunks:
            return []

        batch = await client.embed([text])
        query_vector = batch.vectors[0]

        scored = [
            (cosine_similarity(query_vector, chunk.embedding), chunk)
            for chunk in chunks
        ]
        scored = [pair for pair in scored if pair[0] >= min_score]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        top = scored[:top_k]

        names = await self._documents.document_names({chunk.document_id for _, chunk in top})

        logger.info(
            "Retrieval | org=%s candidates=%d hits=%d top_score=%.3f",
            organization_id, len(chunks), len(top), top[0][0] if top else 0.0,
        )
        return [
            RetrievedChunk(
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
                document_name=names.get(chunk.document_id, UNKNOWN_DOCUMENT_NAME),
                content=chunk.content,
                score=score,
            )
            for score, chunk in top
        ]
