"""
Document pipeline API, the process uvicorn serves.

The API is intentionally thin: it authenticates the caller, checks that the
document belongs to the caller's organization, and emits a pipeline event.
Extraction, embedding and analysis happen in Celery workers, or in a
background task after the response when PIPELINE_TRANSPORT=inline.

    POST /api/v1/documents/{id}/extract
    POST /api/v1/documents/{id}/analyze
    POST /api/v1/rag/query
    GET  /health, /ready

Every 4xx/5xx body is an ErrorResponse. Domain errors map as:

    DocumentNotFoundError   404  DOCUMENT_NOT_FOUND
    DocumentAccessDenied    403  DOCUMENT_ACCESS_DENIED
    AIRateLimitError        429  AI_RATE_LIMITED, with Retry-After
    AINotConfiguredError    400  AI_NOT_CONFIGURED
    AIFeatureDisabledError  403  AI_FEATURE_DISABLED
    any other AIError       502  code from handle_ai_error
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docintel.api.v1.documents import router as documents_router
from docintel.api.v1.query import router as query_router
from docintel.core.config import settings
from docintel.core.exceptions import (
    AIError,
    AIFeatureDisabledError,
    AINotConfiguredError,
    AIRateLimitError,
    DocumentAccessDenied,
    DocumentNotFoundError,
    handle_ai_error,
)
from docintel.db.session import check_db_health
from docintel.schemas.api import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

# Checked in order; subclasses before AIError itself
_AI_ERROR_STATUS: tuple[tuple[type[AIError], int], ...] = (
    (AIRateLimitError,       status.HTTP_429_TOO_MANY_REQUESTS),
    (AINotConfiguredError,   status.HTTP_400_BAD_REQUEST),
    (AIFeatureDisabledError, status.HTTP_403_FORBIDDEN),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = await check_db_health()
    if db["status"] != "ok":
        logger.critical("Startup aborted, database unreachable | detail=%s", db)
        raise RuntimeError(f"DB unavailable: {db}")

    from docintel.pipeline.container import get_orchestrator
    orchestrator = get_orchestrator()
    logger.info(
        "API started | env=%s transport=%s functions=%s bucket=%s",
        settings.app_env,
        settings.pipeline_transport,
        ",".join(fn.id for fn in orchestrator.registry),
        settings.s3_bucket,
    )

    yield

    from docintel.db.session import engine
    await engine.dispose()
    logger.info("API stopped")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID") or str(uuid.uuid4())


def _error(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    *,
    details: list[ErrorDetail] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = _request_id(request)
    body = ErrorResponse(
        error_code=error_code,
        message=message,
        details=details or [],
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={"X-Request-ID": request_id, **(headers or {})},
    )


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(DocumentNotFoundError)
    async def document_not_found(request: Request, exc: DocumentNotFoundError):
        return _error(request, status.HTTP_404_NOT_FOUND, "DOCUMENT_NOT_FOUND", str(exc))

    @app.exception_handler(DocumentAccessDenied)
    async def document_access_denied(request: Request, exc: DocumentAccessDenied):
        logger.warning("Document access denied | doc=%s user=%s", exc.document_id, exc.user_id)
        return _error(
            request,
            status.HTTP_403_FORBIDDEN,
            "DOCUMENT_ACCESS_DENIED",
            "You do not have access to this document.",
        )

    @app.exception_handler(AIError)
    async def ai_error(request: Request, exc: AIError):
        code, message = handle_ai_error(exc)
        status_code = next(
            (code_ for cls, code_ in _AI_ERROR_STATUS if isinstance(exc, cls)),
            status.HTTP_502_BAD_GATEWAY,
        )
        headers = None
        if isinstance(exc, AIRateLimitError):
            headers = {"Retry-After": str(max(1, int(exc.retry_after)))}
        return _error(request, status_code, code, message, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_failed(request: Request, exc: RequestValidationError):
        details = [
            ErrorDetail(
                field=".".join(str(part) for part in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        return _error(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Request validation failed.",
            details=details,
        )

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled exception | path=%s request_id=%s", request.url.path, _request_id(request))
        return _error(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "An unexpected error occurred.",
        )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    docs_enabled = not settings.is_production
    app = FastAPI(
        title="Document Intelligence Pipeline",
        description=(
            "Triggers and retrieval for the CRM document pipeline: text extraction, "
            "chunking, embeddings, classification, AI analysis and RAG queries."
        ),
        version="1.0.0",
        docs_url="/api/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/api/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    @app.middleware("http")
    async def tag_and_time(request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        logger.info(
            "HTTP %s %s | status=%d ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
            request.state.request_id,
        )
        return response

    register_error_handlers(app)

    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(query_router,     prefix="/api/v1")

    @app.get("/health", tags=["Operations"], summary="Liveness probe")
    async def health() -> dict:
        return {"status": "ok", "service": "docintel-api"}

    @app.get("/ready", tags=["Operations"], summary="Readiness probe (database reachable)")
    async def readiness() -> JSONResponse:
        db = await check_db_health()
        ready = db["status"] == "ok"
        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "ready" if ready else "not_ready", "database": db},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "docintel.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
    )
