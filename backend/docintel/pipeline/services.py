"""Collaborators handed to every pipeline function through ctx.services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from docintel.llm.clients import AIClients
from docintel.processing.analyzer import DocumentAnalyzer
from docintel.rag.retriever import RetrievalEngine
from docintel.repositories.base import DocumentStore


class ObjectStorage(Protocol):
    async def get_file_buffer(self, key: str) -> bytes: ...


@dataclass
class PipelineServices:
    documents: DocumentStore
    storage:   ObjectStorage
    ai:        AIClients
    retrieval: RetrievalEngine
    analyzer:  DocumentAnalyzer
    embedding_batch_size: int = 50
