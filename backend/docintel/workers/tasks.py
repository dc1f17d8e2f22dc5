"""
Celery Tasks — pipeline function execution

Task: execute_function(run_id)
  Executes one attempt of a pipeline run through the Orchestrator. The
  attempt number is Celery's retry counter; on a "retry" outcome the task
  re-schedules itself with exponential countdown
  (pipeline_retry_base_delay × 2^attempt, capped at pipeline_retry_max_delay).
  Completed steps are checkpointed, so a retry resumes where it stopped.

Task: run_scheduled_function(function_id)
  Beat entry point for cron-triggered functions; creates a run and enqueues it.

Task: health_check
  Liveness probe for the worker fleet.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from celery import Task

from docintel.core.config import settings
from docintel.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


def retry_countdown(attempt: int) -> int:
    return min(settings.pipeline_retry_base_delay * (2 ** attempt), settings.pipeline_retry_max_delay)


# ---------------------------------------------------------------------------
# Pipeline run execution
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docintel.workers.tasks.execute_function",
    bind=True,
    max_retries=None,            # the registered function caps its own retries
    acks_late=True,
    reject_on_worker_lost=True,
)
def execute_function(self: Task, *, run_id: str) -> dict[str, Any]:
    from docintel.pipeline.container import get_orchestrator

    orchestrator = get_orchestrator(worker=True)
    attempt = self.request.retries
    outcome = run_async(orchestrator.execute(run_id, attempt))

    if outcome.status == "retry":
        countdown = retry_countdown(attempt)
        logger.warning(
            "Run retry scheduled | run=%s attempt=%d countdown=%ds error=%s",
            run_id, attempt + 1, countdown, outcome.error,
        )
        raise self.retry(countdown=countdown, kwargs={"run_id": run_id})

    return {"run_id": run_id, "status": outcome.status, "attempt": attempt}


@celery_app.task(name="docintel.workers.tasks.run_scheduled_function")
def run_scheduled_function(*, function_id: str) -> dict[str, Any]:
    from docintel.pipeline.container import get_orchestrator

    run_id = run_async(get_orchestrator(worker=True).run_cron(function_id))
    logger.info("Scheduled run created | function=%s run=%s", function_id, run_id)
    return {"function_id": function_id, "run_id": run_id}


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="docintel.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    """Simple liveness check for the worker fleet."""
    return {"status": "ok", "worker": "docintel-pipeline"}
