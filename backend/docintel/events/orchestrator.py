"""
Event Dispatcher / Job Orchestrator
═══════════════════════════════════

  emit(event_name, data)
    for every subscribed function:
      1. derive idempotency key (if the function declares one)
      2. claim (function_id, key) for the idempotency window; a live claim
         means a duplicate event, so no run is created
      3. create a queued run and hand its id to the transport

  execute(run_id, attempt)
    - runs the handler with a FunctionContext (event, step, run_id, attempt,
      logger, services)
    - success            → run 'completed', result stored
    - NonRetriableError  → run 'failed' immediately
    - other exception    → "retry" while attempt < retries, else 'failed'
    - on entering 'failed' the function's on_failure hook runs exactly once;
      an error inside on_failure is logged and never retried

The transport decides how and when a retry happens (Celery countdown, or
immediate re-queue for the inline transport); attempts of a run share its
step checkpoints.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from docintel.core.config import settings
from docintel.core.exceptions import NonRetriableError
from docintel.events.registry import FunctionDef, FunctionRegistry
from docintel.events.runs import TERMINAL_STATUSES, RunRecord, RunStore
from docintel.events.steps import StepContext
from docintel.models.documents import utcnow

if TYPE_CHECKING:
    from docintel.events.transports import Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    name: str
    data: dict


@dataclass
class FunctionContext:
    event:    Event
    step:     StepContext
    run_id:   str
    attempt:  int
    logger:   logging.Logger
    services: Any = None
    error:    BaseException | None = None   # set only for on_failure


@dataclass(frozen=True)
class RunOutcome:
    run_id:  str
    status:  str            # completed | failed | retry | skipped
    attempt: int = 0
    result:  Any = None
    error:   str | None = None
    steps:   list[str] = field(default_factory=list)


class Orchestrator:
    def __init__(
        self,
        registry: FunctionRegistry,
        run_store: RunStore,
        transport: "Transport",
        services: Any = None,
        *,
        idempotency_ttl_seconds: int | None = None,
    ) -> None:
        self.registry  = registry
        self.run_store = run_store
        self.transport = transport
        self.services  = services
        self._idempotency_ttl = timedelta(
            seconds=idempotency_ttl_seconds
            if idempotency_ttl_seconds is not None
            else settings.pipeline_idempotency_ttl_seconds
        )
        transport.bind(self)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def emit(self, event_name: str, data: dict) -> list[str]:
        """Create one run per subscribed function; returns the new run ids."""
        run_ids: list[str] = []
        for fn in self.registry.subscribers(event_name):
            run_id = await self._start_run(fn, event_name, data)
            if run_id is not None:
                run_ids.append(run_id)

        logger.info("Event emitted | event=%s runs=%d", event_name, len(run_ids))
        return run_ids

    async def run_cron(self, function_id: str) -> str | None:
        fn = self.registry.get(function_id)
        if fn.cron is None:
            raise ValueError(f"Function {function_id!r} is not cron-triggered")
        return await self._start_run(fn, f"cron/{function_id}", {})

    async def _start_run(self, fn: FunctionDef, event_name: str, data: dict) -> str | None:
        run_id = str(uuid.uuid4())
        key = fn.idempotency_key(data)

        if key is not None:
            claimed = await self.run_store.claim(
                fn.id, key, run_id, utcnow() + self._idempotency_ttl,
            )
            if not claimed:
                logger.info("Duplicate event skipped | function=%s key=%s", fn.id, key)
                return None

        try:
            await self.run_store.create_run(RunRecord(
                id=run_id,
                function_id=fn.id,
                event_name=event_name,
                event_data=data,
                idempotency_key=key,
            ))
            await self.transport.submit(run_id, 0)
        except Exception:
            if key is not None:
                await self.run_store.release(fn.id, key)
            logger.error("Run submission failed | function=%s run=%s", fn.id, run_id)
            raise
        return run_id

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, run_id: str, attempt: int = 0) -> RunOutcome:
        run = await self.run_store.get_run(run_id)
        if run is None:
            logger.error("Run not found | run=%s", run_id)
            return RunOutcome(run_id=run_id, status="skipped", attempt=attempt, error="run not found")
        if run.status in TERMINAL_STATUSES:
            logger.info("Run already %s, skipping delivery | run=%s", run.status, run_id)
            return RunOutcome(run_id=run_id, status="skipped", attempt=attempt)

        fn = self.registry.get(run.function_id)
        await self.run_store.mark_running(run_id, attempt)

        step = StepContext(run_id, self.run_store, self)
        ctx = FunctionContext(
            event=Event(run.event_name, run.event_data),
            step=step,
            run_id=run_id,
            attempt=attempt,
            logger=logging.getLogger(f"docintel.functions.{fn.id}"),
            services=self.services,
        )

        logger.info("Run start | function=%s run=%s attempt=%d", fn.id, run_id, attempt)
        try:
            result = await fn.handler(ctx)
        except NonRetriableError as exc:
            logger.warning("Run failed permanently | function=%s run=%s error=%s", fn.id, run_id, exc)
            await self._fail(fn, ctx, exc)
            return RunOutcome(run_id, "failed", attempt, error=str(exc), steps=step.executed)
        except Exception as exc:
            if attempt < fn.retries:
                logger.warning(
                    "Run attempt failed, will retry | function=%s run=%s attempt=%d/%d error=%s",
                    fn.id, run_id, attempt, fn.retries, exc,
                )
                return RunOutcome(run_id, "retry", attempt, error=str(exc), steps=step.executed)
            logger.error("Run retries exhausted | function=%s run=%s error=%s", fn.id, run_id, exc)
            await self._fail(fn, ctx, exc)
            return RunOutcome(run_id, "failed", attempt, error=str(exc), steps=step.executed)

        await self.run_store.mark_completed(run_id, result)
        logger.info("Run completed | function=%s run=%s", fn.id, run_id)
        return RunOutcome(run_id, "completed", attempt, result=result, steps=step.executed)

    async def _fail(self, fn: FunctionDef, ctx: FunctionContext, exc: BaseException) -> None:
        if not await self.run_store.mark_failed(ctx.run_id, f"{type(exc).__name__}: {exc}"):
            return
        if fn.on_failure is None:
            return

        ctx.error = exc
        try:
            await fn.on_failure(ctx)
        except Exception:
            # on_failure is never retried
            logger.exception("on_failure hook raised | function=%s run=%s", fn.id, ctx.run_id)
