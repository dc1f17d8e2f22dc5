"""
Storage interfaces used by pipeline stages.

Stages only see these abstract stores and plain record dataclasses, never
ORM objects or sessions: a record is a detached snapshot, safe to pass
between steps and to serialize into step checkpoints. Ids are strings
(UUID text) at this boundary.

Implementations:
    repositories.sql  — SQLAlchemy async (production, integration tests)
    tests/fakes.py    — in-memory (unit and pipeline tests)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence


@dataclass(frozen=True)
class DocumentRecord:
    id:                str
    organization_id:   str
    name:              str
    mime_type:         str
    extraction_status: str
    customer_id:       Optional[str] = None
    file_path:         Optional[str] = None
    content:           Optional[str] = None
    type:              Optional[str] = None


@dataclass(frozen=True)
class ChunkRecord:
    id:          str
    document_id: str
    chunk_index: int
    content:     str


@dataclass(frozen=True)
class EmbeddedChunk:
    """A chunk with a decoded embedding, as loaded for retrieval."""
    chunk_id:    str
    document_id: str
    content:     str
    embedding:   list[float]


@dataclass(frozen=True)
class NewChunk:
    content:      str
    chunk_index:  int
    start_offset: int
    end_offset:   int


class DocumentStore(ABC):

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_document(self, document_id: str) -> DocumentRecord | None: ...

    @abstractmethod
    async def set_extraction_status(self, document_id: str, status: str) -> None: ...

    @abstractmethod
    async def save_extracted_content(self, document_id: str, content: str) -> None:
        """Persist text, mark 'completed' and stamp extracted_at."""

    @abstractmethod
    async def discard_extracted_content(self, document_id: str) -> None:
        """Drop stored text and chunks, mark 'unsupported', in one transaction."""

    @abstractmethod
    async def update_type(self, document_id: str, document_type: str) -> None: ...

    @abstractmethod
    async def find_stale_pending(self, older_than: datetime, limit: int) -> list[DocumentRecord]: ...

    @abstractmethod
    async def document_names(self, document_ids: Iterable[str]) -> dict[str, str]: ...

    @abstractmethod
    async def document_ids_for_customer(self, organization_id: str, customer_id: str) -> list[str]: ...

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    @abstractmethod
    async def replace_chunks(
        self,
        document_id: str,
        organization_id: str,
        chunks: Sequence[NewChunk],
    ) -> int:
        """Delete every chunk of the document, then insert `chunks`, in one transaction."""

    @abstractmethod
    async def list_chunks(self, document_id: str) -> list[ChunkRecord]:
        """Chunks ordered by chunk_index."""

    @abstractmethod
    async def save_embeddings(
        self,
        embeddings: Sequence[tuple[str, list[float]]],
        model: str,
        dimensions: int,
    ) -> int: ...

    @abstractmethod
    async def load_embedded_chunks(
        self,
        organization_id: str,
        document_ids: Sequence[str] | None = None,
    ) -> list[EmbeddedChunk]:
        """Chunks with a non-null embedding; rows with undecodable embeddings are skipped."""

    # ------------------------------------------------------------------
    # Analyses, access, audit, notifications
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_analysis(self, document_id: str, analysis: dict) -> str: ...

    @abstractmethod
    async def has_access(self, document: DocumentRecord, user_id: str) -> bool:
        """Creator/assignee of the document's customer, or an active member of its organization."""

    @abstractmethod
    async def write_audit(
        self,
        *,
        organization_id: str | None,
        user_id: str | None,
        action: str,
        entity: str,
        entity_id: str | None,
        details: dict,
    ) -> None: ...

    @abstractmethod
    async def create_notification(
        self,
        *,
        user_id: str,
        organization_id: str | None,
        type: str,
        title: str,
        message: str,
        link_url: str | None = None,
        metadata: dict | None = None,
    ) -> None: ...

    @abstractmethod
    async def list_admin_members(self, organization_id: str, limit: int = 3) -> list[str]:
        """User ids of active owners/admins."""


class SettingsStore(ABC):
    @abstractmethod
    async def get_values(self, organization_id: str, keys: Sequence[str]) -> dict[str, str | None]: ...
