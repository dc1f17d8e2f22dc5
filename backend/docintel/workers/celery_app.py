"""
Celery Application Factory

Runs pipeline functions for the Celery transport.
Broker: RabbitMQ (amqp://) in production; Redis (redis://) for local dev.
Result backend: Redis (optional — run state is tracked in function_runs).

Queue topology:
  pipeline.functions   — one task per pipeline run (extraction, embedding,
                         analysis, notifications)
  pipeline.scheduled   — cron-triggered functions (beat)
  system.health        — internal health-check tasks

Task payloads carry only a run id; event data lives in function_runs and
file bytes stay in object storage.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.schedules import crontab
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docintel.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

PIPELINE_EXCHANGE = Exchange("pipeline", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "pipeline.functions",
        exchange=PIPELINE_EXCHANGE,
        routing_key="pipeline.functions",
        durable=True,
    ),
    Queue(
        "pipeline.scheduled",
        exchange=PIPELINE_EXCHANGE,
        routing_key="pipeline.scheduled",
        durable=True,
    ),
    Queue(
        "system.health",
        Exchange("system", type="direct"),
        routing_key="system.health",
        durable=True,
    ),
)

TASK_ROUTES = {
    "docintel.workers.tasks.execute_function":       {"queue": "pipeline.functions"},
    "docintel.workers.tasks.run_scheduled_function": {"queue": "pipeline.scheduled"},
    "docintel.workers.tasks.health_check":           {"queue": "system.health"},
}


def _crontab_from_expression(expression: str) -> crontab:
    minute, hour, day_of_month, month_of_year, day_of_week = expression.split()
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


def build_beat_schedule() -> dict:
    """One beat entry per cron-triggered pipeline function."""
    import docintel.pipeline  # noqa: F401  (registers functions)
    from docintel.events.registry import registry

    return {
        f"cron-{fn.id}": {
            "task":     "docintel.workers.tasks.run_scheduled_function",
            "schedule": _crontab_from_expression(fn.cron),
            "kwargs":   {"function_id": fn.id},
            "options":  {"queue": "pipeline.scheduled"},
        }
        for fn in registry.cron_functions()
    }


# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("docintel")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="pipeline.functions",
        task_default_exchange="pipeline",
        task_default_routing_key="pipeline.functions",

        # --- Reliability ---
        task_acks_late=True,         # ack only after task completes
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # --- Timeouts ---
        task_soft_time_limit=300,
        task_time_limit=360,

        # --- Result TTL ---
        result_expires=3600,

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (cron-triggered functions) ---
        beat_schedule=build_beat_schedule(),

        # --- Worker ---
        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["docintel.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: job audit lines
# ---------------------------------------------------------------------------

@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s run=%s",
        task_id, task.name, kwargs.get("run_id", kwargs.get("function_id", "?")),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s run=%s",
        task_id, task.name, state, kwargs.get("run_id", kwargs.get("function_id", "?")),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s run=%s error=%s",
        task_id, kwargs.get("run_id", "?"), exception,
        exc_info=True,
    )
