"""Postgres pool for the EO batch scripts.

Every script holds a single connection for its whole run: the pipeline reads
brackets and gameweeks up front, then writes all EO rows in chunked
transactions at the end.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from urllib.parse import urlsplit

import asyncpg

from esf_eo.config import get_settings

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


def describe_dsn(dsn: str) -> str:
    """``host:port/db`` for log lines, without user or password."""
    parts = urlsplit(dsn)
    port = f":{parts.port}" if parts.port else ""
    return f"{parts.hostname or 'localhost'}{port}{parts.path}"


async def init_pool(database_url: str | None = None) -> asyncpg.Pool:
    """Create the pool once; later calls return the existing one.

    statement_cache_size=0 keeps it usable behind PgBouncer in transaction
    mode, and command_timeout covers a full EO_UPSERT_CHUNK_SIZE executemany.
    """
    global _pool
    if _pool is not None:
        return _pool

    dsn = database_url or get_settings().database_url
    if not dsn:
        raise ValueError("DATABASE_URL is not set. EO scripts need a Postgres connection.")

    logger.info(f"Connecting to Postgres at {describe_dsn(dsn)}")
    _pool = await asyncpg.create_pool(
        dsn,
        min_size=1,
        max_size=2,
        command_timeout=300,
        statement_cache_size=0,
    )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return _pool


@asynccontextmanager
async def get_connection() -> AsyncGenerator[asyncpg.Connection, None]:
    """Borrow the run's connection from the pool."""
    async with get_pool().acquire() as conn:
        yield conn
