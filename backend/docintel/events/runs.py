"""
Run store — durable state behind the orchestrator.

    claim / release        idempotency claims, (function_id, key) → run_id
    create_run / get_run   one row per run
    mark_*                 status transitions
    load_step / save_step  memoized step results

Step values are stored JSON-encoded; MemoryRunStore round-trips them through
json as well, so a memoized value reads back exactly as it would from SQL.
"""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.models import FunctionRun, IdempotencyClaim, StepCheckpoint
from docintel.models.documents import utcnow

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed"})


@dataclass(frozen=True)
class RunRecord:
    id:              str
    function_id:     str
    event_name:      str
    event_data:      dict
    idempotency_key: str | None = None
    status:          str = "queued"
    attempt:         int = 0
    error:           str | None = None


def _json_roundtrip(value: Any) -> Any:
    return json.loads(json.dumps(value))


class RunStore(ABC):
    @abstractmethod
    async def claim(self, function_id: str, key: str, run_id: str, expires_at: datetime) -> bool:
        """True if the key was free (or its claim expired) and is now held by run_id."""

    @abstractmethod
    async def release(self, function_id: str, key: str) -> None: ...

    @abstractmethod
    async def create_run(self, run: RunRecord) -> None: ...

    @abstractmethod
    async def get_run(self, run_id: str) -> RunRecord | None: ...

    @abstractmethod
    async def mark_running(self, run_id: str, attempt: int) -> None: ...

    @abstractmethod
    async def mark_completed(self, run_id: str, result: Any) -> None: ...

    @abstractmethod
    async def mark_failed(self, run_id: str, error: str) -> bool:
        """True only for the call that moves the run into 'failed'."""

    @abstractmethod
    async def load_step(self, run_id: str, step_name: str) -> tuple[bool, Any]: ...

    @abstractmethod
    async def save_step(self, run_id: str, step_name: str, value: Any) -> None: ...


# ---------------------------------------------------------------------------
# In-process store (inline transport, tests)
# ---------------------------------------------------------------------------

class MemoryRunStore(RunStore):
    def __init__(self) -> None:
        self.runs:   dict[str, RunRecord] = {}
        self.steps:  dict[tuple[str, str], str] = {}
        self.claims: dict[tuple[str, str], tuple[str, datetime]] = {}
        self.results: dict[str, Any] = {}

    async def claim(self, function_id: str, key: str, run_id: str, expires_at: datetime) -> bool:
        existing = self.claims.get((function_id, key))
        if existing is not None and existing[1] > utcnow():
            return False
        self.claims[(function_id, key)] = (run_id, expires_at)
        return True

    async def release(self, function_id: str, key: str) -> None:
        self.claims.pop((function_id, key), None)

    async def create_run(self, run: RunRecord) -> None:
        self.runs[run.id] = replace(run, event_data=_json_roundtrip(run.event_data))

    async def get_run(self, run_id: str) -> RunRecord | None:
        return self.runs.get(run_id)

    async def mark_running(self, run_id: str, attempt: int) -> None:
        self.runs[run_id] = replace(self.runs[run_id], status="running", attempt=attempt)

    async def mark_completed(self, run_id: str, result: Any) -> None:
        self.runs[run_id] = replace(self.runs[run_id], status="completed")
        self.results[run_id] = _json_roundtrip(result)

    async def mark_failed(self, run_id: str, error: str) -> bool:
        run = self.runs[run_id]
        if run.status in TERMINAL_STATUSES:
            return False
        self.runs[run_id] = replace(run, status="failed", error=error)
        return True

    async def load_step(self, run_id: str, step_name: str) -> tuple[bool, Any]:
        raw = self.steps.get((run_id, step_name))
        if raw is None:
            return False, None
        return True, json.loads(raw)

    async def save_step(self, run_id: str, step_name: str, value: Any) -> None:
        self.steps[(run_id, step_name)] = json.dumps(value)


# ---------------------------------------------------------------------------
# SQL store (Celery transport)
# ---------------------------------------------------------------------------

class SqlRunStore(RunStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        if session_factory is None:
            from docintel.db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def claim(self, function_id: str, key: str, run_id: str, expires_at: datetime) -> bool:
        try:
            async with self._session_factory() as session, session.begin():
                existing = await session.get(IdempotencyClaim, (function_id, key))
                if existing is not None:
                    if existing.expires_at.tzinfo is None:
                        live = existing.expires_at > utcnow().replace(tzinfo=None)
                    else:
                        live = existing.expires_at > utcnow()
                    if live:
                        return False
                    await session.delete(existing)
                    await session.flush()
                session.add(IdempotencyClaim(
                    function_id=function_id,
                    key=key,
                    run_id=uuid.UUID(run_id),
                    expires_at=expires_at,
                ))
        except IntegrityError:
            # Another process claimed the key between our read and insert
            return False
        return True

    async def release(self, function_id: str, key: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(IdempotencyClaim).where(
                    IdempotencyClaim.function_id == function_id,
                    IdempotencyClaim.key == key,
                )
            )

    async def create_run(self, run: RunRecord) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(FunctionRun(
                id=uuid.UUID(run.id),
                function_id=run.function_id,
                event_name=run.event_name,
                event_data=run.event_data,
                idempotency_key=run.idempotency_key,
                status=run.status,
                attempt=run.attempt,
            ))

    async def get_run(self, run_id: str) -> RunRecord | None:
        async with self._session_factory() as session:
            row = await session.get(FunctionRun, uuid.UUID(run_id))
            if row is None:
                return None
            return RunRecord(
                id=str(row.id),
                function_id=row.function_id,
                event_name=row.event_name,
                event_data=row.event_data,
                idempotency_key=row.idempotency_key,
                status=row.status,
                attempt=row.attempt,
                error=row.error,
            )

    async def mark_running(self, run_id: str, attempt: int) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(FunctionRun)
                .where(FunctionRun.id == uuid.UUID(run_id))
                .values(status="running", attempt=attempt)
            )

    async def mark_completed(self, run_id: str, result: Any) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(FunctionRun)
                .where(FunctionRun.id == uuid.UUID(run_id))
                .values(status="completed", result=result, finished_at=utcnow())
            )

    async def mark_failed(self, run_id: str, error: str) -> bool:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(FunctionRun)
                .where(
                    FunctionRun.id == uuid.UUID(run_id),
                    FunctionRun.status.not_in(TERMINAL_STATUSES),
                )
                .values(status="failed", error=error, finished_at=utcnow())
            )
            return result.rowcount == 1

    async def load_step(self, run_id: str, step_name: str) -> tuple[bool, Any]:
        async with self._session_factory() as session:
            output = await session.scalar(
                select(StepCheckpoint.output).where(
                    StepCheckpoint.run_id == uuid.UUID(run_id),
                    StepCheckpoint.step_name == step_name,
                )
            )
        if output is None:
            return False, None
        return True, output["value"]

    async def save_step(self, run_id: str, step_name: str, value: Any) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(StepCheckpoint(
                run_id=uuid.UUID(run_id),
                step_name=step_name,
                output={"value": value},
            ))
