# app/db/helpers.py
"""
Thin query helpers over the pooled connections.

Rows come back as dicts (the pool installs dict_row on every connection).
Driver errors are logged with the failing operation and re-raised as
DatabaseError so repositories never leak psycopg types.
"""

from collections.abc import Awaitable, Callable
from typing import Any

import psycopg

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Raised when a repository query fails at the driver level."""

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message)
        self.operation = operation


async def _run(
    operation: str,
    query: str,
    params: tuple,
    consume: Callable[[psycopg.AsyncCursor], Awaitable[Any]],
) -> Any:
    try:
        async with db_pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await consume(cur)
    except psycopg.Error as e:
        logger.error("Database query failed", operation=operation, query=query[:100], error=str(e))
        raise DatabaseError(f"{operation} failed: {e}", operation=operation) from e


async def _rowcount(cur: psycopg.AsyncCursor) -> int:
    return cur.rowcount


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    return await _run("fetch_one", query, params, lambda cur: cur.fetchone())


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    return await _run("fetch_all", query, params, lambda cur: cur.fetchall())


async def fetch_val(query: str, params: tuple = ()) -> Any:
    """First column of the first row, or None."""
    row = await fetch_one(query, params)
    return next(iter(row.values())) if row else None


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run a write and return the affected row count."""
    return await _run("execute", query, params, _rowcount)
