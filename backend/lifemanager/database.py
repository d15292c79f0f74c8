import logging
from collections.abc import AsyncIterator

from fastapi import HTTPException
from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .config import settings

logger = logging.getLogger(__name__)

# One pool per process, shared by the snapshot and transaction services.
pool: AsyncConnectionPool | None = None


async def init_db_pool() -> None:
    global pool

    # /health stays up without a database; every /ai route that reads or
    # writes user data then fails with 500.
    if not settings.database_url:
        logger.warning("DATABASE_URL is not set; data-backed assistant routes are disabled")
        return

    pool = AsyncConnectionPool(
        conninfo=settings.database_url,
        open=False,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        kwargs={
            "autocommit": True,
            "row_factory": dict_row,
            "application_name": settings.app_name,
        },
    )
    await pool.open()
    logger.info(
        "Database pool opened (min=%d, max=%d)",
        settings.db_pool_min_size,
        settings.db_pool_max_size,
    )


async def close_db_pool() -> None:
    global pool

    if pool is None:
        return

    await pool.close()
    pool = None
    logger.info("Database pool closed")


async def get_db_connection() -> AsyncIterator[AsyncConnection]:
    """FastAPI dependency yielding a pooled connection with dict rows."""
    if pool is None:
        raise HTTPException(status_code=500, detail="DATABASE_URL is not configured")

    async with pool.connection() as connection:
        yield connection
