"""
Wiring: builds the process-wide Orchestrator and its collaborators.

    PIPELINE_TRANSPORT=celery   SQL run store + Celery tasks (production)
    PIPELINE_TRANSPORT=inline   in-memory run store + inline queue (local dev)

Celery workers build their stores on a NullPool session factory: each task
runs in a fresh event loop (workers.tasks.run_async) and pooled asyncpg
connections cannot move between loops.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.core.config import settings
from docintel.events.orchestrator import Orchestrator
from docintel.events.registry import registry
from docintel.events.runs import MemoryRunStore, SqlRunStore
from docintel.events.transports import CeleryTransport, InlineTransport
from docintel.llm.clients import AIClients
from docintel.llm.rate_limit import FixedWindowRateLimiter
from docintel.pipeline.services import PipelineServices
from docintel.processing.analyzer import DocumentAnalyzer
from docintel.rag.retriever import RetrievalEngine
from docintel.repositories.sql import SqlDocumentStore, SqlSettingsStore
from docintel.storage.s3 import S3ObjectStorage

logger = logging.getLogger(__name__)


def build_services(session_factory: async_sessionmaker[AsyncSession] | None = None) -> PipelineServices:
    documents = SqlDocumentStore(session_factory)
    ai = AIClients(SqlSettingsStore(session_factory))
    retrieval = RetrievalEngine(documents, ai)
    return PipelineServices(
        documents=documents,
        storage=S3ObjectStorage(),
        ai=ai,
        retrieval=retrieval,
        analyzer=DocumentAnalyzer(ai, retrieval),
        embedding_batch_size=settings.embedding_batch_size,
    )


@lru_cache(maxsize=2)
def get_orchestrator(worker: bool = False) -> Orchestrator:
    session_factory = None
    if worker:
        from docintel.db.session import build_session_factory
        session_factory = build_session_factory(null_pool=True)

    services = build_services(session_factory)

    if settings.pipeline_transport == "inline":
        transport = InlineTransport()
        run_store = MemoryRunStore()
    else:
        transport = CeleryTransport()
        run_store = SqlRunStore(session_factory)

    logger.info(
        "Orchestrator ready | transport=%s functions=%d worker=%s",
        settings.pipeline_transport, len(registry), worker,
    )
    return Orchestrator(registry, run_store, transport, services)


@lru_cache(maxsize=1)
def get_analysis_rate_limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(settings.analysis_rate_limit, settings.analysis_rate_window_seconds)
