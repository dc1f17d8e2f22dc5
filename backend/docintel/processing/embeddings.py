"""
Embedding client — batch text → vectors.

Both supported providers speak the OpenAI embeddings API: OpenAI directly,
Ollama through its OpenAI-compatible `/v1` endpoint. One request per batch;
the caller (embed-document-chunks) decides the batch size.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from openai import AsyncOpenAI

from docintel.core.config import settings
from docintel.core.exceptions import EmbeddingBatchError
from docintel.llm.config import EmbeddingConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingBatch:
    vectors:    list[list[float]]
    model:      str
    dimensions: int


class EmbeddingClient(Protocol):
    model_name: str

    async def embed(self, texts: list[str]) -> EmbeddingBatch: ...


class OpenAIEmbeddingClient:
    def __init__(self, config: EmbeddingConfig) -> None:
        self._config = config
        self.model_name = config.model

        if config.provider == "ollama":
            endpoint = (config.ollama_endpoint or settings.ollama_base_url).rstrip("/")
            # Ollama ignores the key but the client requires one
            self._client = AsyncOpenAI(api_key="ollama", base_url=f"{endpoint}/v1")
        else:
            self._client = AsyncOpenAI(api_key=config.api_key, timeout=settings.llm_timeout_seconds)

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        """
        Embed `texts` in one request, preserving order.

        Raises EmbeddingBatchError when the provider returns a different
        number of vectors than inputs; provider errors propagate unchanged.
        """
        if not texts:
            return EmbeddingBatch(vectors=[], model=self._config.model, dimensions=self._config.dimensions)

        t0 = time.perf_counter()
        response = await self._client.embeddings.create(model=self._config.model, input=texts)
        latency_ms = (time.perf_counter() - t0) * 1000

        data = sorted(response.data, key=lambda item: item.index)
        vectors = [list(item.embedding) for item in data]
        if len(vectors) != len(texts):
            raise EmbeddingBatchError(
                f"Provider returned {len(vectors)} embeddings for {len(texts)} inputs"
            )

        dims = len(vectors[0]) if vectors else self._config.dimensions
        logger.info(
            "Embeddings ok | provider=%s model=%s count=%d dims=%d latency_ms=%.0f",
            self._config.provider, self._config.model, len(vectors), dims, latency_ms,
        )
        return EmbeddingBatch(vectors=vectors, model=response.model or self._config.model, dimensions=dims)
