"""
Read-only collaborators owned by the CRM core.

The pipeline never writes these tables; it reads them to answer two
questions: "may this user see this document?" and "how is AI configured
for this organization?".
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from docintel.models.documents import Base, utcnow


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    created_by_id:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assigned_to_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class OrganizationMember(Base):
    """Membership of a user in an organization; only 'active' grants access."""

    __tablename__ = "organization_members"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'invited', 'suspended')",
            name="organization_members_status_check",
        ),
        UniqueConstraint("user_id", "organization_id", name="uq_organization_members_user_org"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    role:   Mapped[str] = mapped_column(Text, nullable=False, default="member")   # owner | admin | member | viewer
    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


class SystemSetting(Base):
    """
    Per-organization key/value settings.

    AI keys used by the pipeline (see llm.config.SettingKeys):
        ai_provider, ai_api_key (AES-GCM encrypted), ai_model,
        ai_ollama_endpoint, ai_features (JSON object of booleans),
        ai_embedding_provider, ai_embedding_model
    """

    __tablename__ = "system_settings"
    __table_args__ = (
        UniqueConstraint("organization_id", "key", name="uq_system_settings_org_key"),
        Index("idx_system_settings_org", "organization_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    key:   Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )
