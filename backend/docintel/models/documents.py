"""
SQLAlchemy ORM Models — Documents, Chunks, Analyses, Audit Logs, Notifications

2.x-style mapped classes for full async support. Column types are portable
(generic Uuid, JSON with a JSONB variant on PostgreSQL) so the same models
back asyncpg in production and aiosqlite in tests.

Ownership: every row carries organization_id. The pipeline is the only
writer of extraction_status, content, type and the chunk rows; uploads
(outside this service) create Document rows in 'pending'.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model: documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One uploaded file and the text derived from it.

    State machine (extraction_status column):
        pending     — stored in object storage, extraction not started
        processing  — extraction job running
        completed   — content populated, chunks regenerated
        unsupported — MIME type outside the supported set, or no text layer
        failed      — extraction retries exhausted (terminal)
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "extraction_status IN ('pending', 'processing', 'completed', 'unsupported', 'failed')",
            name="documents_extraction_status_check",
        ),
        Index("idx_documents_org",    "organization_id"),
        Index("idx_documents_status", "extraction_status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
    )

    name:      Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Object-storage key of the uploaded file",
    )

    extraction_status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="pending",
        server_default="pending",
    )
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type:    Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Inferred label: contract | email | meeting_notes | quotation",
    )
    extracted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    chunks: Mapped[list["DocumentChunk"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} org={self.organization_id} "
            f"status={self.extraction_status} name={self.name!r}>"
        )


# ---------------------------------------------------------------------------
# DocumentChunk model: document_chunks
# ---------------------------------------------------------------------------

class DocumentChunk(Base):
    """
    One contiguous slice of Document.content.

    [start_offset, end_offset) spans of a document's chunks partition its
    content; `content` may additionally carry a short overlap prefix taken
    from the previous chunk. The embedding is stored as a JSON array string.
    """

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
        Index("idx_document_chunks_org", "organization_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    content:      Mapped[str] = mapped_column(Text, nullable=False)
    chunk_index:  Mapped[int] = mapped_column(Integer, nullable=False)
    start_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    end_offset:   Mapped[int] = mapped_column(Integer, nullable=False)

    embedding:       Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    embedding_model: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    embedding_dims:  Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    embedded_at:     Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    document: Mapped[Document] = relationship(back_populates="chunks")


# ---------------------------------------------------------------------------
# DocumentAnalysis model: document_analyses (append-only)
# ---------------------------------------------------------------------------

class DocumentAnalysis(Base):
    __tablename__ = "document_analyses"
    __table_args__ = (
        CheckConstraint(
            "sentiment IN ('positive', 'negative', 'neutral')",
            name="document_analyses_sentiment_check",
        ),
        Index("idx_document_analyses_document", "document_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    summary:      Mapped[str]   = mapped_column(Text, nullable=False)
    entities:     Mapped[dict]  = mapped_column(JSONType, nullable=False, default=dict)
    sentiment:    Mapped[str]   = mapped_column(Text, nullable=False, default="neutral")
    key_points:   Mapped[list]  = mapped_column(JSONType, nullable=False, default=list)
    action_items: Mapped[list]  = mapped_column(JSONType, nullable=False, default=list)
    confidence:   Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    model:        Mapped[str]   = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


# ---------------------------------------------------------------------------
# AuditLog model: audit_logs
# ---------------------------------------------------------------------------

class AuditLog(Base):
    """
    Append-only audit trail.

    Written by analysis completion and by the on_failure hooks of the
    extraction, embedding and analysis jobs.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_org",        "organization_id"),
        Index("idx_audit_logs_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)   # None = system action

    action:    Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="e.g. create, update, document.extraction_failed",
    )
    entity:    Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details:   Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} action={self.action!r} entity={self.entity}:{self.entity_id}>"


# ---------------------------------------------------------------------------
# Notification model: notifications (in-app only)
# ---------------------------------------------------------------------------

class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user", "user_id", "is_read"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    type:     Mapped[str] = mapped_column(Text, nullable=False)
    title:    Mapped[str] = mapped_column(Text, nullable=False)
    message:  Mapped[str] = mapped_column(Text, nullable=False)
    link_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extra:    Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    is_read:  Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
