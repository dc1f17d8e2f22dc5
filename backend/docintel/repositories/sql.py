"""
SQLAlchemy implementations of the pipeline stores.

Each public method opens its own short transaction (`async with
session.begin()`), so a step's write is committed before the step's
checkpoint is recorded. Invalid UUID strings behave like missing rows.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.models import (
    AuditLog,
    Customer,
    Document,
    DocumentAnalysis,
    DocumentChunk,
    Notification,
    OrganizationMember,
    SystemSetting,
)
from docintel.models.documents import utcnow
from docintel.repositories.base import (
    ChunkRecord,
    DocumentRecord,
    DocumentStore,
    EmbeddedChunk,
    NewChunk,
    SettingsStore,
)

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("owner", "admin")


def _as_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _to_record(doc: Document) -> DocumentRecord:
    return DocumentRecord(
        id=str(doc.id),
        organization_id=str(doc.organization_id),
        name=doc.name,
        mime_type=doc.mime_type,
        extraction_status=doc.extraction_status,
        customer_id=str(doc.customer_id) if doc.customer_id else None,
        file_path=doc.file_path,
        content=doc.content,
        type=doc.type,
    )


class _SessionScoped:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        if session_factory is None:
            from docintel.db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory


class SqlDocumentStore(_SessionScoped, DocumentStore):

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        doc_uuid = _as_uuid(document_id)
        if doc_uuid is None:
            return None
        async with self._session_factory() as session:
            doc = await session.get(Document, doc_uuid)
            return _to_record(doc) if doc else None

    async def set_extraction_status(self, document_id: str, status: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(Document)
                .where(Document.id == _as_uuid(document_id))
                .values(extraction_status=status, updated_at=utcnow())
            )

    async def save_extracted_content(self, document_id: str, content: str) -> None:
        now = utcnow()
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(Document)
                .where(Document.id == _as_uuid(document_id))
                .values(
                    content=content,
                    extraction_status="completed",
                    extracted_at=now,
                    updated_at=now,
                )
            )

    async def discard_extracted_content(self, document_id: str) -> None:
        doc_uuid = _as_uuid(document_id)
        async with self._session_factory() as session, session.begin():
            await session.execute(delete(DocumentChunk).where(DocumentChunk.document_id == doc_uuid))
            await session.execute(
                update(Document)
                .where(Document.id == doc_uuid)
                .values(content=None, extraction_status="unsupported", updated_at=utcnow())
            )
        logger.info("Extracted content discarded | document_id=%s", document_id)

    async def update_type(self, document_id: str, document_type: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(Document)
                .where(Document.id == _as_uuid(document_id))
                .values(type=document_type, updated_at=utcnow())
            )

    async def find_stale_pending(self, older_than: datetime, limit: int) -> list[DocumentRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document)
                .where(
                    Document.extraction_status == "pending",
                    Document.created_at < older_than,
                    Document.file_path.is_not(None),
                )
                .order_by(Document.created_at)
                .limit(limit)
            )
            return [_to_record(doc) for doc in result.scalars()]

    async def document_names(self, document_ids: Iterable[str]) -> dict[str, str]:
        ids = [u for u in (_as_uuid(d) for d in document_ids) if u is not None]
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document.id, Document.name).where(Document.id.in_(ids))
            )
            return {str(row.id): row.name for row in result}

    async def document_ids_for_customer(self, organization_id: str, customer_id: str) -> list[str]:
        org_uuid, customer_uuid = _as_uuid(organization_id), _as_uuid(customer_id)
        if org_uuid is None or customer_uuid is None:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document.id).where(
                    Document.organization_id == org_uuid,
                    Document.customer_id == customer_uuid,
                )
            )
            return [str(doc_id) for doc_id in result.scalars()]

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def replace_chunks(
        self,
        document_id: str,
        organization_id: str,
        chunks: Sequence[NewChunk],
    ) -> int:
        doc_uuid = _as_uuid(document_id)
        org_uuid = _as_uuid(organization_id)
        async with self._session_factory() as session, session.begin():
            await session.execute(delete(DocumentChunk).where(DocumentChunk.document_id == doc_uuid))
            session.add_all(
                DocumentChunk(
                    document_id=doc_uuid,
                    organization_id=org_uuid,
                    content=chunk.content,
                    chunk_index=chunk.chunk_index,
                    start_offset=chunk.start_offset,
                    end_offset=chunk.end_offset,
                )
                for chunk in chunks
            )
        logger.info("Chunks replaced | document_id=%s count=%d", document_id, len(chunks))
        return len(chunks)

    async def list_chunks(self, document_id: str) -> list[ChunkRecord]:
        doc_uuid = _as_uuid(document_id)
        if doc_uuid is None:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(DocumentChunk)
                .where(DocumentChunk.document_id == doc_uuid)
                .order_by(DocumentChunk.chunk_index)
            )
            return [
                ChunkRecord(
                    id=str(chunk.id),
                    document_id=str(chunk.document_id),
                    chunk_index=chunk.chunk_index,
                    content=chunk.content,
                )
                for chunk in result.scalars()
            ]

    async def save_embeddings(
        self,
        embeddings: Sequence[tuple[str, list[float]]],
        model: str,
        dimensions: int,
    ) -> int:
        now = utcnow()
        async with self._session_factory() as session, session.begin():
            for chunk_id, vector in embeddings:
                await session.execute(
                    update(DocumentChunk)
                    .where(DocumentChunk.id == _as_uuid(chunk_id))
                    .values(
                        embedding=json.dumps(vector),
                        embedding_model=model,
                        embedding_dims=dimensions,
                        embedded_at=now,
                    )
                )
        return len(embeddings)

    async def load_embedded_chunks(
        self,
        organization_id: str,
        document_ids: Sequence[str] | None = None,
    ) -> list[EmbeddedChunk]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return []

        stmt = select(
            DocumentChunk.id,
            DocumentChunk.document_id,
            DocumentChunk.content,
            DocumentChunk.embedding,
        ).where(
            DocumentChunk.organization_id == org_uuid,
            DocumentChunk.embedding.is_not(None),
        )
        if document_ids is not None:
            ids = [u for u in (_as_uuid(d) for d in document_ids) if u is not None]
            stmt = stmt.where(DocumentChunk.document_id.in_(ids))

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        loaded: list[EmbeddedChunk] = []
        for row in rows:
            try:
                vector = json.loads(row.embedding)
            except ValueError:
                logger.warning("Skipping chunk with invalid embedding | chunk_id=%s", row.id)
                continue
            if not isinstance(vector, list):
                continue
            loaded.append(EmbeddedChunk(
                chunk_id=str(row.id),
                document_id=str(row.document_id),
                content=row.content,
                embedding=vector,
            ))
        return loaded

    # ------------------------------------------------------------------
    # Analyses, access, audit, notifications
    # ------------------------------------------------------------------

    async def create_analysis(self, document_id: str, analysis: dict) -> str:
        async with self._session_factory() as session, session.begin():
            row = DocumentAnalysis(
                document_id=_as_uuid(document_id),
                summary=analysis["summary"],
                entities=analysis.get("entities") or {},
                sentiment=analysis.get("sentiment", "neutral"),
                key_points=analysis.get("keyPoints") or [],
                action_items=analysis.get("actionItems") or [],
                confidence=analysis.get("confidence", 0.0),
                model=analysis.get("model", "unknown"),
            )
            session.add(row)
            await session.flush()
            return str(row.id)

    async def has_access(self, document: DocumentRecord, user_id: str) -> bool:
        org_uuid = _as_uuid(document.organization_id)
        async with self._session_factory() as session:
            if document.customer_id:
                related = await session.scalar(
                    select(Customer.id).where(
                        Customer.id == _as_uuid(document.customer_id),
                        or_(Customer.created_by_id == user_id, Customer.assigned_to_id == user_id),
                    )
                )
                if related is not None:
                    return True

            member = await session.scalar(
                select(OrganizationMember.id).where(
                    OrganizationMember.organization_id == org_uuid,
                    OrganizationMember.user_id == user_id,
                    OrganizationMember.status == "active",
                )
            )
            return member is not None

    async def write_audit(
        self,
        *,
        organization_id: str | None,
        user_id: str | None,
        action: str,
        entity: str,
        entity_id: str | None,
        details: dict,
    ) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(AuditLog(
                organization_id=_as_uuid(organization_id),
                user_id=user_id,
                action=action,
                entity=entity,
                entity_id=entity_id,
                details=details,
            ))

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
    ) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(Notification(
                user_id=user_id,
                organization_id=_as_uuid(organization_id),
                type=type,
                title=title,
                message=message,
                link_url=link_url,
                extra=metadata or {},
            ))

    async def list_admin_members(self, organization_id: str, limit: int = 3) -> list[str]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrganizationMember.user_id)
                .where(
                    OrganizationMember.organization_id == org_uuid,
                    OrganizationMember.role.in_(ADMIN_ROLES),
                    OrganizationMember.status == "active",
                )
                .order_by(OrganizationMember.created_at)
                .limit(limit)
            )
            return list(result.scalars())


class SqlSettingsStore(_SessionScoped, SettingsStore):
    async def get_values(self, organization_id: str, keys: Sequence[str]) -> dict[str, str | None]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(SystemSetting.key, SystemSetting.value).where(
                    SystemSetting.organization_id == org_uuid,
                    SystemSetting.key.in_(list(keys)),
                )
            )
            return {row.key: row.value for row in result}
