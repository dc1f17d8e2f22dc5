"""
Database session management.

Two session factories are in play:

  AsyncSessionLocal   — module-level pooled engine used by the API process.
  build_session_factory(null_pool=True)
                      — used by Celery workers. Each task runs its coroutine
                        in a fresh event loop (see workers.tasks.run_async),
                        and asyncpg connections cannot cross loops, so the
                        worker never keeps connections in a pool.

Stores open one short transaction per call (see repositories.sql).
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from docintel.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def create_engine(url: str | None = None, *, null_pool: bool = False) -> AsyncEngine:
    url = url or settings.database_url
    kwargs: dict = {"echo": settings.db_echo_sql}

    if null_pool:
        kwargs["poolclass"] = NullPool
    elif not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,          # detect stale connections before use
            pool_recycle=3600,           # recycle connections every hour
        )
    return create_async_engine(url, **kwargs)


def build_session_factory(
    url: str | None = None,
    *,
    null_pool: bool = False,
) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=create_engine(url, null_pool=null_pool),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine: AsyncEngine = create_engine()

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health() -> dict:
    """Ping the database; used by /ready endpoint."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
