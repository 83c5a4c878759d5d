# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: One psycopg3 pool per process for the fleet store and locks
# CREATED: 02 OCT 2026
# ============================================================================
"""
Database Connection Pool

One AsyncConnectionPool per process, shared by the fleet repositories and
the advisory LockService. The reconciler's leadership lock is a session
lock held on a pooled connection, so connections are health-checked on
checkout and tagged with application_name to be visible in
pg_stat_activity.

Connection string: DATABASE_URL, or built from POSTGRES_HOST, POSTGRES_PORT,
POSTGRES_DB, POSTGRES_USER, POSTGRES_PASSWORD and POSTGRES_SSLMODE.
"""

import os
import logging
from typing import Optional
from urllib.parse import quote

from psycopg import sql as psycopg_sql
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)

APPLICATION_NAME = "fleet-scheduler"

# Startup fails instead of hanging when the database is unreachable
OPEN_TIMEOUT_SEC = 30.0

_pool: Optional[AsyncConnectionPool] = None


def get_connection_string() -> str:
    """DATABASE_URL if set, otherwise a URL built from the POSTGRES_* variables."""
    if url := os.environ.get("DATABASE_URL"):
        return url

    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    name = os.environ.get("POSTGRES_DB", "postgres")
    user = quote(os.environ.get("POSTGRES_USER", "postgres"), safe="")
    password = quote(os.environ.get("POSTGRES_PASSWORD", ""), safe="")
    sslmode = os.environ.get("POSTGRES_SSLMODE", "prefer")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"


def _mask(conninfo: str) -> str:
    """Strip credentials for logging."""
    if "@" in conninfo:
        return conninfo.rsplit("@", 1)[-1]
    if "password=" in conninfo:
        return conninfo.split("password=")[0] + "password=***"
    return conninfo


async def init_pool(
    min_size: int = 2,
    max_size: int = 10,
    connection_string: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Open the process-wide pool. Calling it again returns the open pool.

    Raises:
        psycopg_pool.PoolTimeout: min_size connections not ready within
            OPEN_TIMEOUT_SEC
    """
    global _pool

    if _pool is not None:
        logger.warning("Pool already initialized, returning existing pool")
        return _pool

    conninfo = connection_string or get_connection_string()
    logger.info(f"Opening fleet store pool to {_mask(conninfo)} (min={min_size}, max={max_size})")

    pool = AsyncConnectionPool(
        conninfo=conninfo,
        min_size=min_size,
        max_size=max_size,
        kwargs={"application_name": APPLICATION_NAME},
        check=AsyncConnectionPool.check_connection,
        name=APPLICATION_NAME,
        open=False,
    )
    await pool.open(wait=True, timeout=OPEN_TIMEOUT_SEC)
    _pool = pool

    logger.info("Fleet store pool ready")
    return _pool


async def get_pool() -> AsyncConnectionPool:
    """The process-wide pool, opened from the environment on first use."""
    if _pool is None:
        return await init_pool()
    return _pool


async def close_pool() -> None:
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Fleet store pool closed")


# ============================================================================
# TABLES
# ============================================================================

SCHEMA = "fleet"

# Use with sql.SQL(...).format(); never interpolate table names as strings
TABLE_HOSTS = psycopg_sql.Identifier(SCHEMA, "hosts")
TABLE_NODE_TYPES = psycopg_sql.Identifier(SCHEMA, "node_types")
TABLE_NODES = psycopg_sql.Identifier(SCHEMA, "nodes")
TABLE_VALIDATORS = psycopg_sql.Identifier(SCHEMA, "validators")


__all__ = [
    "APPLICATION_NAME",
    "get_connection_string",
    "init_pool",
    "get_pool",
    "close_pool",
    "SCHEMA",
    "TABLE_HOSTS",
    "TABLE_NODE_TYPES",
    "TABLE_NODES",
    "TABLE_VALIDATORS",
]
