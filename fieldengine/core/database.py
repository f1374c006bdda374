"""
Async database connection using asyncpg (NO ORM).

Voter documents are stored as JSONB, so every pooled connection registers
JSON/JSONB codecs that decode straight to Python dicts and lists.
"""

import json

import asyncpg

from fieldengine.core.config import Settings
from fieldengine.core.logging_config import get_logger
from fieldengine.core.responses import dumps

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Register JSON codecs on each new connection."""
    await conn.set_type_codec(
        "jsonb",
        encoder=dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )
    await conn.set_type_codec(
        "json",
        encoder=dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


async def init_db_pool(settings: Settings) -> asyncpg.Pool:
    """
    Initialize database connection pool on startup.

    Call this in the FastAPI lifespan event. Bulk mutations hold one
    connection for the streaming cursor and another for batch writes, so
    the pool must allow at least two connections.
    """
    global _pool
    _pool = await asyncpg.create_pool(
        dsn=settings.DATABASE_URL,
        min_size=settings.DATABASE_POOL_MIN_SIZE,
        max_size=max(settings.DATABASE_POOL_MAX_SIZE, 2),
        max_inactive_connection_lifetime=300,
        timeout=30,
        command_timeout=60,
        init=_init_connection,
    )
    logger.info(
        f"Database pool initialized: {_pool.get_size()} / {_pool.get_max_size()} connections"
    )
    return _pool


async def close_db_pool() -> None:
    """
    Close database connection pool on shutdown.

    Call this in the FastAPI lifespan event.
    """
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")

