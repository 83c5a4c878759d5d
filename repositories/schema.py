# ============================================================================
# FLEET SCHEMA
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - PostgreSQL DDL for the fleet schema
# PURPOSE: Idempotent schema bootstrap (hosts, node_types, nodes, validators)
# CREATED: 03 OCT 2026
# ============================================================================
"""
Fleet Schema

Idempotent DDL for the fleet schema. Every statement uses IF NOT EXISTS,
so ensure_schema() is safe to run on every startup.

Layout:
    hosts        capacity as JSONB (resource key -> int)
    node_types   properties / requirements as ordered JSONB arrays
    nodes        status, host reference, scheduler policy columns,
                 reserved JSONB, optimistic version
    validators   stake attributes keyed by node_id

scheduler_similarity is nullable (no affinity constraint);
scheduler_resource is not.

Usage:
    from repositories.schema import ensure_schema

    await ensure_schema(pool)
"""

import logging
from typing import List

from psycopg import sql
from psycopg_pool import AsyncConnectionPool

from repositories.database import (
    SCHEMA,
    TABLE_HOSTS,
    TABLE_NODE_TYPES,
    TABLE_NODES,
    TABLE_VALIDATORS,
)

logger = logging.getLogger(__name__)

EXPECTED_TABLES = ["hosts", "node_types", "nodes", "validators"]


def ddl_statements() -> List[sql.Composable]:
    """Ordered DDL statements for the fleet schema."""
    return [
        sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(SCHEMA)),
        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            host_id            VARCHAR(64) PRIMARY KEY,
            name               VARCHAR(128) NOT NULL,
            address            VARCHAR(255),
            ip_addresses       JSONB NOT NULL DEFAULT '[]'::jsonb,
            region             VARCHAR(64),
            host_type          VARCHAR(16) NOT NULL DEFAULT 'cloud',
            org_id             VARCHAR(64),
            capacity           JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            status             VARCHAR(16) NOT NULL DEFAULT 'online',
            last_heartbeat_at  TIMESTAMPTZ,
            created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at         TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """).format(TABLE_HOSTS),
        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            type_id            VARCHAR(64) PRIMARY KEY,
            name               VARCHAR(128) NOT NULL,
            blockchain         VARCHAR(64),
            description        TEXT,
            validator_capable  BOOLEAN NOT NULL DEFAULT FALSE,
            properties         JSONB NOT NULL DEFAULT '[]'::jsonb,
            requirements       JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_at         TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """).format(TABLE_NODE_TYPES),
        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            node_id               VARCHAR(64) PRIMARY KEY,
            node_type_id          VARCHAR(64) NOT NULL REFERENCES {} (type_id),
            org_id                VARCHAR(64),
            host_id               VARCHAR(64) REFERENCES {} (host_id),
            status                VARCHAR(16) NOT NULL DEFAULT 'provisioning',
            scheduler_similarity  VARCHAR(16),
            scheduler_resource    VARCHAR(32) NOT NULL,
            scheduler_region      VARCHAR(64),
            group_key             VARCHAR(160) NOT NULL,
            properties            JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            reserved              JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            last_host_id          VARCHAR(64),
            stop_requested        BOOLEAN NOT NULL DEFAULT FALSE,
            target_version        VARCHAR(64),
            running_version       VARCHAR(64),
            sync_height           BIGINT,
            chain_height          BIGINT,
            created_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
            placed_at             TIMESTAMPTZ,
            updated_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
            version               INTEGER NOT NULL DEFAULT 1
        )
        """).format(TABLE_NODES, TABLE_NODE_TYPES, TABLE_HOSTS),
        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            node_id            VARCHAR(64) PRIMARY KEY REFERENCES {} (node_id) ON DELETE CASCADE,
            stake_status       VARCHAR(16) NOT NULL DEFAULT 'available',
            address            VARCHAR(128),
            score              INTEGER NOT NULL DEFAULT 0,
            consensus_streak   INTEGER NOT NULL DEFAULT 0,
            stake_eligible     BOOLEAN NOT NULL DEFAULT FALSE
        )
        """).format(TABLE_VALIDATORS, TABLE_NODES),
        sql.SQL("CREATE INDEX IF NOT EXISTS idx_fleet_nodes_host ON {} (host_id) WHERE host_id IS NOT NULL").format(TABLE_NODES),
        sql.SQL("CREATE INDEX IF NOT EXISTS idx_fleet_nodes_group ON {} (group_key)").format(TABLE_NODES),
        sql.SQL("CREATE INDEX IF NOT EXISTS idx_fleet_nodes_type ON {} (node_type_id)").format(TABLE_NODES),
        sql.SQL("CREATE INDEX IF NOT EXISTS idx_fleet_hosts_status ON {} (status)").format(TABLE_HOSTS),
    ]


async def ensure_schema(pool: AsyncConnectionPool) -> int:
    """
    Create the fleet schema if missing.

    Returns:
        Number of statements executed
    """
    statements = ddl_statements()

    logger.info("=" * 70)
    logger.info(f"FLEET SCHEMA BOOTSTRAP ({SCHEMA})")
    logger.info("=" * 70)

    async with pool.connection() as conn:
        async with conn.transaction():
            for statement in statements:
                await conn.execute(statement)

    existing = await list_tables(pool)
    missing = [t for t in EXPECTED_TABLES if t not in existing]
    if missing:
        logger.error(f"Schema bootstrap left tables missing: {missing}")
    else:
        logger.info(f"Schema ready: {len(statements)} statements, tables {EXPECTED_TABLES}")

    return len(statements)


async def list_tables(pool: AsyncConnectionPool) -> List[str]:
    """Tables present in the fleet schema."""
    async with pool.connection() as conn:
        result = await conn.execute(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = %s",
            (SCHEMA,),
        )
        rows = await result.fetchall()
        return [row[0] for row in rows]


__all__ = ["ddl_statements", "ensure_schema", "list_tables", "EXPECTED_TABLES"]
