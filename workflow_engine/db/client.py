"""
asyncpg connection pool for the workflow store.

The engine issues raw SQL (row locking, `ON CONFLICT`, `RETURNING`), so it
uses asyncpg directly rather than an ORM session.
"""

from __future__ import annotations

import json

import asyncpg
import structlog

from workflow_engine.config import Settings, get_settings

logger = structlog.get_logger()

_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    # asyncpg returns JSON/JSONB as strings by default. Register codecs so
    # dict payloads round-trip transparently.
    await conn.set_type_codec(
        "json",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
        format="text",
    )


def _asyncpg_dsn(database_url: str) -> str:
    # Accept SQLAlchemy-style URLs so one DATABASE_URL serves alembic too.
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg://"):
        if database_url.startswith(prefix):
            return "postgresql://" + database_url[len(prefix):]
    return database_url


async def get_db_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Get (or lazily create) the shared asyncpg pool."""
    global _pool
    if _pool is None:
        settings = settings or get_settings()
        min_size = max(1, int(settings.db_pool_min_size))
        _pool = await asyncpg.create_pool(
            _asyncpg_dsn(settings.database_url),
            init=_init_connection,
            min_size=min_size,
            max_size=max(min_size, int(settings.db_pool_max_size)),
        )
        logger.info(
            "Database pool initialized",
            min_size=min_size,
            max_size=max(min_size, int(settings.db_pool_max_size)),
        )
    return _pool


async def close_db_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")
