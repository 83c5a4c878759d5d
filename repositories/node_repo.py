# ============================================================================
# NODE REPOSITORY
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Node + validator CRUD and placement commit
# PURPOSE: Database access for fleet.nodes and fleet.validators tables
# CREATED: 04 OCT 2026
# ============================================================================
"""
Node Repository

CRUD operations for nodes and their validator attributes, plus the
placement commit: the one write that must be serialized per host across
scheduler instances.

commit_placement runs in a single transaction:
    1. pg_advisory_xact_lock on the host
    2. re-read the host's committed reservations and capacity
    3. UPDATE the node WHERE version matches AND host_id IS NULL
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import AsyncConnection, sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import NodeStatus, StakeStatus, SimilarityAffinity, ResourceAffinity
from core.models import Node, SchedulerPolicy, Validator
from infrastructure.locking import LockService
from .base import BaseRepository, exceeds_capacity
from .database import TABLE_HOSTS, TABLE_NODES, TABLE_VALIDATORS
from .host_repo import naive_utc

logger = logging.getLogger(__name__)


_SELECT_NODES = """
SELECT n.*,
       v.node_id AS v_node_id,
       v.stake_status AS v_stake_status,
       v.address AS v_address,
       v.score AS v_score,
       v.consensus_streak AS v_consensus_streak,
       v.stake_eligible AS v_stake_eligible
FROM {} n
LEFT JOIN {} v ON v.node_id = n.node_id
"""


class NodeRepository(BaseRepository):
    """Repository for Node entities."""

    def __init__(self, pool: AsyncConnectionPool, lock_service: Optional[LockService] = None):
        super().__init__()
        self.pool = pool
        self.lock_service = lock_service or LockService(pool)

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create(self, node: Node) -> Node:
        with self._error_context("node insert", node.node_id):
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    await conn.execute(
                        sql.SQL("""
                        INSERT INTO {} (
                            node_id, node_type_id, org_id, host_id, status,
                            scheduler_similarity, scheduler_resource, scheduler_region,
                            group_key, properties, reserved, last_host_id,
                            stop_requested, target_version, running_version,
                            sync_height, chain_height, created_at, placed_at,
                            updated_at, version
                        ) VALUES (
                            %(node_id)s, %(node_type_id)s, %(org_id)s, %(host_id)s,
                            %(status)s, %(scheduler_similarity)s, %(scheduler_resource)s,
                            %(scheduler_region)s, %(group_key)s, %(properties)s,
                            %(reserved)s, %(last_host_id)s, %(stop_requested)s,
                            %(target_version)s, %(running_version)s, %(sync_height)s,
                            %(chain_height)s, %(created_at)s, %(placed_at)s,
                            %(updated_at)s, %(version)s
                        )
                        """).format(TABLE_NODES),
                        self._params(node),
                    )
                    if node.validator is not None:
                        await self._upsert_validator(conn, node)
        logger.info(f"Created node {node.node_id} (type={node.node_type_id}, org={node.org_id})")
        return node

    async def get(self, node_id: str) -> Optional[Node]:
        with self._error_context("node fetch", node_id):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL(_SELECT_NODES + " WHERE n.node_id = %s").format(TABLE_NODES, TABLE_VALIDATORS),
                    (node_id,),
                )
                row = await result.fetchone()
        return self._row_to_node(row) if row else None

    async def list_all(self) -> List[Node]:
        with self._error_context("node list"):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL(_SELECT_NODES + " ORDER BY n.node_id").format(TABLE_NODES, TABLE_VALIDATORS)
                )
                rows = await result.fetchall()
        return [self._row_to_node(row) for row in rows]

    async def list_on_host(self, host_id: str) -> List[Node]:
        with self._error_context("node list by host", host_id):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL(_SELECT_NODES + " WHERE n.host_id = %s ORDER BY n.node_id").format(
                        TABLE_NODES, TABLE_VALIDATORS
                    ),
                    (host_id,),
                )
                rows = await result.fetchall()
        return [self._row_to_node(row) for row in rows]

    async def list_stranded(self) -> List[Node]:
        """Stopped, unassigned nodes an operator did not stop."""
        with self._error_context("node list stranded"):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL(
                        _SELECT_NODES
                        + " WHERE n.host_id IS NULL AND n.status = %s"
                        + " AND NOT n.stop_requested ORDER BY n.node_id"
                    ).format(TABLE_NODES, TABLE_VALIDATORS),
                    (NodeStatus.STOPPED.value,),
                )
                rows = await result.fetchall()
        return [self._row_to_node(row) for row in rows]

    async def update(self, node: Node) -> bool:
        """
        Update a node with optimistic locking.

        Returns:
            True if update succeeded, False if version conflict
        """
        with self._error_context("node update", node.node_id):
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    result = await conn.execute(
                        sql.SQL("""
                        UPDATE {} SET
                            host_id = %(host_id)s,
                            status = %(status)s,
                            scheduler_similarity = %(scheduler_similarity)s,
                            scheduler_resource = %(scheduler_resource)s,
                            scheduler_region = %(scheduler_region)s,
                            group_key = %(group_key)s,
                            properties = %(properties)s,
                            reserved = %(reserved)s,
                            last_host_id = %(last_host_id)s,
                            stop_requested = %(stop_requested)s,
                            target_version = %(target_version)s,
                            running_version = %(running_version)s,
                            sync_height = %(sync_height)s,
                            chain_height = %(chain_height)s,
                            placed_at = %(placed_at)s,
                            updated_at = %(updated_at)s,
                            version = version + 1
                        WHERE node_id = %(node_id)s
                          AND version = %(version)s
                        """).format(TABLE_NODES),
                        self._params(node),
                    )

                    if result.rowcount == 0:
                        logger.warning(
                            f"Version conflict updating node {node.node_id} "
                            f"(expected version {node.version})"
                        )
                        return False

                    if node.validator is not None:
                        await self._upsert_validator(conn, node)

        node.version += 1
        logger.debug(f"Updated node {node.node_id} status={node.status.value} version={node.version}")
        return True

    async def delete(self, node_id: str) -> bool:
        with self._error_context("node delete", node_id):
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("DELETE FROM {} WHERE node_id = %s").format(TABLE_NODES),
                    (node_id,),
                )
                return result.rowcount > 0

    async def sibling_counts(self, group_key: str, exclude_node_id: Optional[str] = None) -> Dict[str, int]:
        with self._error_context("sibling count", group_key):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL("""
                    SELECT host_id, COUNT(*) AS count
                    FROM {}
                    WHERE group_key = %s
                      AND host_id IS NOT NULL
                      AND node_id IS DISTINCT FROM %s
                    GROUP BY host_id
                    """).format(TABLE_NODES),
                    (group_key, exclude_node_id),
                )
                rows = await result.fetchall()
        return {row["host_id"]: row["count"] for row in rows}

    async def count_by_host(self) -> Dict[str, int]:
        with self._error_context("node count by host"):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL("""
                    SELECT host_id, COUNT(*) AS count
                    FROM {}
                    WHERE host_id IS NOT NULL
                    GROUP BY host_id
                    """).format(TABLE_NODES)
                )
                rows = await result.fetchall()
        return {row["host_id"]: row["count"] for row in rows}

    # =========================================================================
    # PLACEMENT COMMIT
    # =========================================================================

    async def commit_placement(self, node: Node, host_id: str, reserved: Dict[str, int]) -> bool:
        """
        Assign node to host_id under the host's advisory transaction lock.

        Returns False (nothing written) if the host is full or gone, or the
        node changed or was deleted since it was read.
        """
        candidate = node.model_copy(deep=True)
        candidate.assign(host_id, reserved)

        with self._error_context("placement commit", node.node_id):
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    await self.lock_service.lock_host(conn, host_id)

                    conn.row_factory = dict_row
                    result = await conn.execute(
                        sql.SQL("SELECT capacity FROM {} WHERE host_id = %s").format(TABLE_HOSTS),
                        (host_id,),
                    )
                    host_row = await result.fetchone()
                    if host_row is None:
                        logger.warning(f"Commit for node {node.node_id} rejected: host {host_id} gone")
                        return False

                    result = await conn.execute(
                        sql.SQL("SELECT reserved FROM {} WHERE host_id = %s").format(TABLE_NODES),
                        (host_id,),
                    )
                    used: Dict[str, int] = {}
                    for row in await result.fetchall():
                        for key, amount in (row["reserved"] or {}).items():
                            used[key] = used.get(key, 0) + int(amount)

                    if exceeds_capacity(host_row["capacity"] or {}, used, reserved):
                        logger.warning(f"Commit for node {node.node_id} rejected: host {host_id} is full")
                        return False

                    result = await conn.execute(
                        sql.SQL("""
                        UPDATE {} SET
                            host_id = %(host_id)s,
                            status = %(status)s,
                            reserved = %(reserved)s,
                            placed_at = %(placed_at)s,
                            updated_at = %(updated_at)s,
                            version = version + 1
                        WHERE node_id = %(node_id)s
                          AND version = %(version)s
                          AND host_id IS NULL
                        """).format(TABLE_NODES),
                        {
                            "host_id": host_id,
                            "status": candidate.status.value,
                            "reserved": Json(candidate.reserved),
                            "placed_at": candidate.placed_at,
                            "updated_at": candidate.updated_at,
                            "node_id": node.node_id,
                            "version": node.version,
                        },
                    )
                    if result.rowcount == 0:
                        logger.warning(f"Commit for node {node.node_id} lost a concurrent update")
                        return False

        node.assign(host_id, reserved)
        node.version += 1
        return True

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _upsert_validator(self, conn: AsyncConnection, node: Node) -> None:
        v = node.validator
        await conn.execute(
            sql.SQL("""
            INSERT INTO {} (
                node_id, stake_status, address, score, consensus_streak, stake_eligible
            ) VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (node_id) DO UPDATE SET
                stake_status = EXCLUDED.stake_status,
                address = EXCLUDED.address,
                score = EXCLUDED.score,
                consensus_streak = EXCLUDED.consensus_streak,
                stake_eligible = EXCLUDED.stake_eligible
            """).format(TABLE_VALIDATORS),
            (
                node.node_id,
                v.stake_status.value,
                v.address,
                v.score,
                v.consensus_streak,
                v.stake_eligible,
            ),
        )

    @staticmethod
    def _params(node: Node) -> Dict[str, Any]:
        policy = node.scheduler
        return {
            "node_id": node.node_id,
            "node_type_id": node.node_type_id,
            "org_id": node.org_id,
            "host_id": node.host_id,
            "status": node.status.value,
            "scheduler_similarity": policy.similarity.value if policy.similarity else None,
            "scheduler_resource": policy.resource.value,
            "scheduler_region": policy.region,
            "group_key": node.group_key,
            "properties": Json(node.properties),
            "reserved": Json(node.reserved),
            "last_host_id": node.last_host_id,
            "stop_requested": node.stop_requested,
            "target_version": node.target_version,
            "running_version": node.running_version,
            "sync_height": node.sync_height,
            "chain_height": node.chain_height,
            "created_at": node.created_at,
            "placed_at": node.placed_at,
            "updated_at": node.updated_at,
            "version": node.version,
        }

    @staticmethod
    def _row_to_node(row: Dict[str, Any]) -> Node:
        """Convert a nodes row (joined with validators) to Node."""
        validator = None
        if row.get("v_node_id") is not None:
            validator = Validator(
                stake_status=StakeStatus(row["v_stake_status"]),
                address=row.get("v_address"),
                score=row.get("v_score") or 0,
                consensus_streak=row.get("v_consensus_streak") or 0,
                stake_eligible=bool(row.get("v_stake_eligible")),
            )

        similarity = row.get("scheduler_similarity")
        return Node(
            node_id=row["node_id"],
            node_type_id=row["node_type_id"],
            org_id=row.get("org_id"),
            host_id=row.get("host_id"),
            status=NodeStatus(row["status"]),
            scheduler=SchedulerPolicy(
                similarity=SimilarityAffinity(similarity) if similarity else None,
                resource=ResourceAffinity(row["scheduler_resource"]),
                region=row.get("scheduler_region"),
            ),
            group_key=row.get("group_key"),
            properties=row.get("properties") or {},
            reserved=row.get("reserved") or {},
            last_host_id=row.get("last_host_id"),
            stop_requested=bool(row.get("stop_requested")),
            target_version=row.get("target_version"),
            running_version=row.get("running_version"),
            sync_height=row.get("sync_height"),
            chain_height=row.get("chain_height"),
            validator=validator,
            created_at=naive_utc(row.get("created_at")) or datetime.utcnow(),
            placed_at=naive_utc(row.get("placed_at")),
            updated_at=naive_utc(row.get("updated_at")) or datetime.utcnow(),
            version=row.get("version") or 1,
        )


__all__ = ["NodeRepository"]
