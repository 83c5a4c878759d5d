# ============================================================================
# POSTGRESQL FLEET STORE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Multi-instance FleetStore
# PURPOSE: FleetStore backed by the host, node type and node repositories
# CREATED: 04 OCT 2026
# ============================================================================
"""
PostgreSQL Fleet Store

Composes HostRepository, NodeTypeRepository and NodeRepository behind
the FleetStore contract. Cross-instance placement safety comes from
NodeRepository.commit_placement (per-host advisory xact lock + capacity
re-check + versioned UPDATE in one transaction).

Usage:
    pool = await init_pool()
    store = PostgresFleetStore(pool)
"""

import logging
from typing import Dict, List, Optional

from psycopg_pool import AsyncConnectionPool

from core.models import Host, Node, NodeType
from infrastructure.locking import LockService
from .base import FleetStore
from .host_repo import HostRepository
from .node_repo import NodeRepository
from .node_type_repo import NodeTypeRepository

logger = logging.getLogger(__name__)


class PostgresFleetStore(FleetStore):
    """FleetStore over PostgreSQL."""

    def __init__(self, pool: AsyncConnectionPool, lock_service: Optional[LockService] = None):
        self.pool = pool
        self.lock_service = lock_service or LockService(pool)
        self.hosts = HostRepository(pool)
        self.node_types = NodeTypeRepository(pool)
        self.nodes = NodeRepository(pool, self.lock_service)

    # Hosts
    async def add_host(self, host: Host) -> Host:
        return await self.hosts.create(host)

    async def get_host(self, host_id: str) -> Optional[Host]:
        return await self.hosts.get(host_id)

    async def list_hosts(self) -> List[Host]:
        return await self.hosts.list_all()

    async def update_host(self, host: Host) -> bool:
        return await self.hosts.update(host)

    async def delete_host(self, host_id: str) -> bool:
        return await self.hosts.delete(host_id)

    # Node types
    async def add_node_type(self, node_type: NodeType) -> NodeType:
        return await self.node_types.create(node_type)

    async def get_node_type(self, type_id: str) -> Optional[NodeType]:
        return await self.node_types.get(type_id)

    async def list_node_types(self) -> List[NodeType]:
        return await self.node_types.list_all()

    async def update_node_type(self, node_type: NodeType) -> bool:
        return await self.node_types.update(node_type)

    async def count_nodes_of_type(self, type_id: str) -> int:
        return await self.node_types.count_referencing_nodes(type_id)

    # Nodes
    async def add_node(self, node: Node) -> Node:
        return await self.nodes.create(node)

    async def get_node(self, node_id: str) -> Optional[Node]:
        return await self.nodes.get(node_id)

    async def list_nodes(self) -> List[Node]:
        return await self.nodes.list_all()

    async def update_node(self, node: Node) -> bool:
        return await self.nodes.update(node)

    async def delete_node(self, node_id: str) -> bool:
        return await self.nodes.delete(node_id)

    async def nodes_on_host(self, host_id: str) -> List[Node]:
        return await self.nodes.list_on_host(host_id)

    async def stranded_nodes(self) -> List[Node]:
        return await self.nodes.list_stranded()

    async def sibling_counts(self, group_key: str, exclude_node_id: Optional[str] = None) -> Dict[str, int]:
        return await self.nodes.sibling_counts(group_key, exclude_node_id)

    async def commit_placement(self, node: Node, host_id: str, reserved: Dict[str, int]) -> bool:
        return await self.nodes.commit_placement(node, host_id, reserved)

    async def node_counts_by_host(self) -> Dict[str, int]:
        return await self.nodes.count_by_host()

    async def close(self) -> None:
        await self.lock_service.release_reconciler_lock()


__all__ = ["PostgresFleetStore"]
