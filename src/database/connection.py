"""
Database connection and pool management
"""

import json
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Optional

import asyncpg

from config.settings import DATABASE_URL

logger = logging.getLogger(__name__)

# Connection bound by an open transaction for the current task
_tx_connection: ContextVar[Optional[asyncpg.Connection]] = ContextVar('tx_connection', default=None)


async def _init_connection(conn: asyncpg.Connection):
    """Decode json/jsonb columns into Python objects"""
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog"
        )


class Database:
    """
    Thin wrapper around the asyncpg pool.

    Repositories call ``acquire()`` for every statement. Inside
    ``transaction()`` the same connection is handed out to every repository,
    so writes spanning several aggregates commit or roll back together.
    """

    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self.pool = pool

    @asynccontextmanager
    async def acquire(self):
        conn = _tx_connection.get()
        if conn is not None:
            yield conn
            return
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        conn = _tx_connection.get()
        if conn is not None:
            # Nested: savepoint on the already bound connection
            async with conn.transaction():
                yield conn
            return
        async with self.pool.acquire() as conn:
            token = _tx_connection.set(conn)
            try:
                async with conn.transaction():
                    yield conn
            finally:
                _tx_connection.reset(token)


# Global database instance
_database = Database()


async def init_database():
    """Initialize database connection pool"""
    _database.pool = await asyncpg.create_pool(
        DATABASE_URL,
        min_size=2,
        max_size=10,
        command_timeout=60,
        statement_cache_size=0,  # Supabase pooler (pgbouncer) compatibility
        init=_init_connection
    )

    # Test connection
    async with _database.pool.acquire() as conn:
        await conn.fetchval("SELECT 1")

    logger.info("Database initialized successfully")


async def close_database():
    """Close database connection pool"""
    if _database.pool:
        await _database.pool.close()
    logger.info("Database connections closed")


def get_database() -> Database:
    """Get the global database instance"""
    return _database


def get_db_pool():
    """Get the database pool instance"""
    return _database.pool
