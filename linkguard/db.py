"""
Database connection pool and connection manager.

All database access goes through system_conn().
Never use pool.acquire() directly outside this module.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

import asyncpg

from linkguard.config import settings
from linkguard.errors import StoreUnavailable

logger = logging.getLogger(__name__)

pool: asyncpg.Pool | None = None

# Failures that mean "the store is unavailable", as opposed to programming errors.
_STORE_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    TimeoutError,
)


async def init_pool(dsn: str | None = None) -> None:
    """
    Initialize the connection pool.
    Called once at application startup.
    """
    global pool
    dsn = dsn or settings.DATABASE_URL
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable is required")
    try:
        pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=settings.DATABASE_POOL_MIN,
            max_size=settings.DATABASE_POOL_MAX,
            command_timeout=settings.DATABASE_COMMAND_TIMEOUT,
            init=_init_connection,
        )
    except _STORE_ERRORS as e:
        raise StoreUnavailable("init_pool", e) from e
    logger.info("db: pool initialized (min=%d, max=%d)", settings.DATABASE_POOL_MIN, settings.DATABASE_POOL_MAX)


async def close_pool() -> None:
    """
    Close the connection pool.
    Called at application shutdown.
    """
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    """
    Initialize each new connection.
    JSONB metadata columns decode to Python dicts.
    """
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


@asynccontextmanager
async def system_conn(operation: str = "query"):
    """
    Acquire a pooled connection inside a transaction.

    Driver and network failures are translated to StoreUnavailable so callers
    see a single fault type regardless of what went wrong underneath.

    Usage:
        async with system_conn("rate_limit.insert") as conn:
            await conn.execute("INSERT INTO rate_limit_entries ...")

    Args:
        operation: Short label carried on StoreUnavailable for diagnostics

    Yields:
        asyncpg.Connection
    """
    if pool is None:
        raise StoreUnavailable(operation, RuntimeError("Database pool not initialized. Call init_pool() first."))

    try:
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn
    except _STORE_ERRORS as e:
        logger.warning("db: %s failed: %s", operation, e)
        raise StoreUnavailable(operation, e) from e


def deleted_count(status: str | None) -> int:
    """Parse the row count out of an asyncpg command status such as 'DELETE 3'."""
    # Result format is "DELETE N" where N is the count
    return int(status.split()[-1]) if status else 0
