"""Database and Redis connections for the scheduler.

Scheduling decisions rely on transaction-scoped PostgreSQL locks, so the
unit of work matters more than usual here: every HTTP request gets one
transaction from `get_session`, and background work (audit writes, the
retention job) opens its own through `session_scope`. Both commit on
success and roll back on any exception, which also releases the owner
locks taken by AppointmentStore.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator, AsyncIterator

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cabinet.config import settings

logger = logging.getLogger(__name__)

# ── Engine ───────────────────────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.log_level == "DEBUG",
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    pool_pre_ping=True,
    connect_args={
        # Bound how long a booking may queue behind another writer's owner lock
        "server_settings": {"lock_timeout": str(settings.db.lock_timeout_ms)},
    },
)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@contextlib.asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """One transaction outside a request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: the request's single transaction."""
    async with session_scope() as session:
        yield session


# ── Redis (rate limiting) ────────────────────────────────────────────

redis_client: aioredis.Redis = aioredis.from_url(settings.db.redis_url, decode_responses=True)


# ── Lifespan ─────────────────────────────────────────────────────────


async def init_db() -> None:
    """Check connectivity. Outside production also create missing tables.

    Production schemas come from the Alembic revisions.
    """
    from cabinet.models import Base

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if not settings.is_production:
            await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready (create_all=%s)", not settings.is_production)


async def close_db() -> None:
    await engine.dispose()
    await redis_client.aclose()
    logger.info("Database and Redis connections closed")


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncIterator[None]:
    await init_db()
    try:
        yield
    finally:
        await close_db()
