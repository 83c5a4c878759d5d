# ============================================================================
# NODE TYPE REPOSITORY
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - NodeType CRUD operations
# PURPOSE: Database access for fleet.node_types table
# CREATED: 03 OCT 2026
# ============================================================================
"""
Node Type Repository

Properties and requirements are stored as JSONB arrays so their
declaration order survives a round trip.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.models import NodeType, NodeProperty, ResourceRequirement
from .base import BaseRepository
from .database import TABLE_NODE_TYPES, TABLE_NODES
from .host_repo import naive_utc

logger = logging.getLogger(__name__)


class NodeTypeRepository(BaseRepository):
    """Repository for NodeType entities."""

    def __init__(self, pool: AsyncConnectionPool):
        super().__init__()
        self.pool = pool

    async def create(self, node_type: NodeType) -> NodeType:
        with self._error_context("node type insert", node_type.type_id):
            async with self.pool.connection() as conn:
                await conn.execute(
                    sql.SQL("""
                    INSERT INTO {} (
                        type_id, name, blockchain, description, validator_capable,
                        properties, requirements, created_at
                    ) VALUES (
                        %(type_id)s, %(name)s, %(blockchain)s, %(description)s,
                        %(validator_capable)s, %(properties)s, %(requirements)s,
                        %(created_at)s
                    )
                    """).format(TABLE_NODE_TYPES),
                    self._params(node_type),
                )
        self._log_operation(True, "Created node type", node_type.type_id)
        return node_type

    async def get(self, type_id: str) -> Optional[NodeType]:
        with self._error_context("node type fetch", type_id):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL("SELECT * FROM {} WHERE type_id = %s").format(TABLE_NODE_TYPES),
                    (type_id,),
                )
                row = await result.fetchone()
        return self._row_to_node_type(row) if row else None

    async def list_all(self) -> List[NodeType]:
        with self._error_context("node type list"):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL("SELECT * FROM {} ORDER BY type_id").format(TABLE_NODE_TYPES)
                )
                rows = await result.fetchall()
        return [self._row_to_node_type(row) for row in rows]

    async def update(self, node_type: NodeType) -> bool:
        with self._error_context("node type update", node_type.type_id):
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("""
                    UPDATE {} SET
                        name = %(name)s,
                        blockchain = %(blockchain)s,
                        description = %(description)s,
                        validator_capable = %(validator_capable)s,
                        properties = %(properties)s,
                        requirements = %(requirements)s
                    WHERE type_id = %(type_id)s
                    """).format(TABLE_NODE_TYPES),
                    self._params(node_type),
                )
                return result.rowcount > 0

    async def count_referencing_nodes(self, type_id: str) -> int:
        with self._error_context("node type reference count", type_id):
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("SELECT COUNT(*) FROM {} WHERE node_type_id = %s").format(TABLE_NODES),
                    (type_id,),
                )
                row = await result.fetchone()
        return int(row[0]) if row else 0

    @staticmethod
    def _params(node_type: NodeType) -> Dict[str, Any]:
        return {
            "type_id": node_type.type_id,
            "name": node_type.name,
            "blockchain": node_type.blockchain,
            "description": node_type.description,
            "validator_capable": node_type.validator_capable,
            "properties": Json([p.model_dump(mode="json") for p in node_type.properties]),
            "requirements": Json([r.model_dump(mode="json") for r in node_type.requirements]),
            "created_at": node_type.created_at,
        }

    @staticmethod
    def _row_to_node_type(row: Dict[str, Any]) -> NodeType:
        """Convert database row to NodeType."""
        return NodeType(
            type_id=row["type_id"],
            name=row["name"],
            blockchain=row.get("blockchain"),
            description=row.get("description"),
            validator_capable=bool(row.get("validator_capable")),
            properties=[NodeProperty.model_validate(p) for p in row.get("properties") or []],
            requirements=[ResourceRequirement.model_validate(r) for r in row.get("requirements") or []],
            created_at=naive_utc(row.get("created_at")) or datetime.utcnow(),
        )


__all__ = ["NodeTypeRepository"]
