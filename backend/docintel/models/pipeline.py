"""
Durable orchestration state.

    function_runs         — one row per (function, triggering event) run
    function_run_steps    — memoized step results, keyed by (run_id, step_name)
    idempotency_claims    — (function_id, key) → run_id until expires_at

A retried attempt of a run re-reads its step rows and skips every step that
already has one. A second event with a live claim never creates a run.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from docintel.models.documents import Base, JSONType, utcnow


class FunctionRun(Base):
    __tablename__ = "function_runs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'running', 'completed', 'failed')",
            name="function_runs_status_check",
        ),
        Index("idx_function_runs_function", "function_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    function_id: Mapped[str] = mapped_column(Text, nullable=False)
    event_name:  Mapped[str] = mapped_column(Text, nullable=False)
    event_data:  Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    idempotency_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status:  Mapped[str] = mapped_column(Text, nullable=False, default="queued")
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result:  Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    error:   Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class StepCheckpoint(Base):
    __tablename__ = "function_run_steps"

    run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("function_runs.id", ondelete="CASCADE"),
        primary_key=True,
    )
    step_name: Mapped[str] = mapped_column(Text, primary_key=True)
    # Wrapped as {"value": ...} so a step that returned None is still a hit
    output: Mapped[dict] = mapped_column(JSONType, nullable=False)

    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


class IdempotencyClaim(Base):
    __tablename__ = "idempotency_claims"

    function_id: Mapped[str] = mapped_column(Text, primary_key=True)
    key:         Mapped[str] = mapped_column(Text, primary_key=True)
    run_id:      Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    expires_at:  Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
