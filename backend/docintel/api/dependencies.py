"""
Composed FastAPI Dependencies

Single wiring point for the request context: route handlers import from
here, never from pipeline.container or repositories directly, so tests can
override any of these with `app.dependency_overrides`.
"""

from __future__ import annotations

from typing import Annotated, Awaitable, Callable, Optional

from fastapi import Depends

from docintel.auth.token import TokenPayload, get_current_user
from docintel.llm.clients import AIClients
from docintel.rag.retriever import RetrievalEngine
from docintel.services.triggers import PipelineTriggers


def get_triggers() -> PipelineTriggers:
    from docintel.pipeline.container import get_analysis_rate_limiter, get_orchestrator

    orchestrator = get_orchestrator()
    return PipelineTriggers(
        orchestrator,
        orchestrator.services.documents,
        get_analysis_rate_limiter(),
    )


def get_retrieval() -> RetrievalEngine:
    from docintel.pipeline.container import get_orchestrator

    return get_orchestrator().services.retrieval


def get_ai_clients() -> AIClients:
    from docintel.pipeline.container import get_orchestrator

    return get_orchestrator().services.ai


def get_run_drainer() -> Optional[Callable[[], Awaitable[list]]]:
    """
    With the inline transport (local development) queued runs are executed
    after the response is sent; with Celery the workers pick them up.
    """
    from docintel.events.transports import InlineTransport
    from docintel.pipeline.container import get_orchestrator

    transport = get_orchestrator().transport
    return transport.drain if isinstance(transport, InlineTransport) else None


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

CurrentUser = Annotated[TokenPayload, Depends(get_current_user)]
Triggers    = Annotated[PipelineTriggers, Depends(get_triggers)]
Retrieval   = Annotated[RetrievalEngine, Depends(get_retrieval)]
AIAccess    = Annotated[AIClients, Depends(get_ai_clients)]
RunDrainer  = Annotated[Optional[Callable[[], Awaitable[list]]], Depends(get_run_drainer)]
