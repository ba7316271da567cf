"""Supabase Postgres pool.

The engine talks to Supabase's Postgres directly over ``asyncpg``.  Every
write the integration engine makes is a server-side action on behalf of a
user (OAuth callback, webhook, manual sync), so connections run with the
service role; ``app.current_user_id`` is still set per transaction so
audit triggers and RLS policies see who the write was for.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("ritual.db")

# Module-level connection pool — initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    if not s.database_url:
        raise RuntimeError("database_url is not configured")
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=2,
        max_size=20,
        command_timeout=30,
    )
    logger.info("Database pool initialized (min=2, max=20)")
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized — call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(
    pool: asyncpg.Pool | None = None,
    user_id: uuid.UUID | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection inside a transaction.

    Usage::

        async with get_connection(user_id=user_id) as conn:
            row = await conn.fetchrow("SELECT ... WHERE user_id = $1", user_id)

    ``set_config(..., true)`` is transaction-scoped, so the user context
    disappears when the connection goes back to the pool.
    """
    pool = pool or get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if user_id:
                await conn.execute(
                    "SELECT set_config('app.current_user_id', $1, true)", str(user_id)
                )
            yield conn


async def ping(pool: asyncpg.Pool | None = None) -> bool:
    """Round-trip ``SELECT 1``; used by the health endpoint."""
    pool = pool or get_pool()
    async with pool.acquire() as conn:
        return await conn.fetchval("SELECT 1") == 1
