# ============================================================================
# IN-MEMORY FLEET STORE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Default single-process store
# PURPOSE: Dict-backed FleetStore with copy-in/copy-out and versioning
# CREATED: 02 OCT 2026
# ============================================================================
"""
In-Memory Fleet Store

Keeps hosts, node types and nodes in dicts. Every read returns a deep
copy and every write stores one, so callers get the same stale-object
behavior they would get from a database and optimistic versioning is
meaningful.

Each method body runs without awaiting, which makes every operation
(commit_placement included) atomic on the event loop.
"""

import logging
from typing import Dict, List, Optional

from core.models import Host, Node, NodeType
from repositories.base import FleetStore, exceeds_capacity, sum_reserved

logger = logging.getLogger(__name__)


class InMemoryFleetStore(FleetStore):
    """Dict-backed FleetStore."""

    def __init__(self):
        self._hosts: Dict[str, Host] = {}
        self._node_types: Dict[str, NodeType] = {}
        self._nodes: Dict[str, Node] = {}

    # =========================================================================
    # HOSTS
    # =========================================================================

    async def add_host(self, host: Host) -> Host:
        if host.host_id in self._hosts:
            raise ValueError(f"Host already exists: {host.host_id}")
        self._hosts[host.host_id] = host.model_copy(deep=True)
        logger.debug(f"Stored host {host.host_id}")
        return host

    async def get_host(self, host_id: str) -> Optional[Host]:
        host = self._hosts.get(host_id)
        return host.model_copy(deep=True) if host else None

    async def list_hosts(self) -> List[Host]:
        return [h.model_copy(deep=True) for _, h in sorted(self._hosts.items())]

    async def update_host(self, host: Host) -> bool:
        if host.host_id not in self._hosts:
            return False
        self._hosts[host.host_id] = host.model_copy(deep=True)
        return True

    async def delete_host(self, host_id: str) -> bool:
        return self._hosts.pop(host_id, None) is not None

    # =========================================================================
    # NODE TYPES
    # =========================================================================

    async def add_node_type(self, node_type: NodeType) -> NodeType:
        if node_type.type_id in self._node_types:
            raise ValueError(f"Node type already exists: {node_type.type_id}")
        self._node_types[node_type.type_id] = node_type.model_copy(deep=True)
        return node_type

    async def get_node_type(self, type_id: str) -> Optional[NodeType]:
        node_type = self._node_types.get(type_id)
        return node_type.model_copy(deep=True) if node_type else None

    async def list_node_types(self) -> List[NodeType]:
        return [t.model_copy(deep=True) for _, t in sorted(self._node_types.items())]

    async def update_node_type(self, node_type: NodeType) -> bool:
        if node_type.type_id not in self._node_types:
            return False
        self._node_types[node_type.type_id] = node_type.model_copy(deep=True)
        return True

    async def count_nodes_of_type(self, type_id: str) -> int:
        return sum(1 for n in self._nodes.values() if n.node_type_id == type_id)

    # =========================================================================
    # NODES
    # =========================================================================

    async def add_node(self, node: Node) -> Node:
        if node.node_id in self._nodes:
            raise ValueError(f"Node already exists: {node.node_id}")
        self._nodes[node.node_id] = node.model_copy(deep=True)
        logger.debug(f"Stored node {node.node_id}")
        return node

    async def get_node(self, node_id: str) -> Optional[Node]:
        node = self._nodes.get(node_id)
        return node.model_copy(deep=True) if node else None

    async def list_nodes(self) -> List[Node]:
        return [n.model_copy(deep=True) for _, n in sorted(self._nodes.items())]

    async def update_node(self, node: Node) -> bool:
        current = self._nodes.get(node.node_id)
        if current is None:
            logger.warning(f"Update of deleted node {node.node_id} ignored")
            return False
        if current.version != node.version:
            logger.warning(
                f"Version conflict updating node {node.node_id} "
                f"(expected version {node.version}, found {current.version})"
            )
            return False
        node.version += 1
        self._nodes[node.node_id] = node.model_copy(deep=True)
        return True

    async def delete_node(self, node_id: str) -> bool:
        return self._nodes.pop(node_id, None) is not None

    async def nodes_on_host(self, host_id: str) -> List[Node]:
        return [
            n.model_copy(deep=True)
            for _, n in sorted(self._nodes.items())
            if n.host_id == host_id
        ]

    async def sibling_counts(self, group_key: str, exclude_node_id: Optional[str] = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for node in self._nodes.values():
            if node.node_id == exclude_node_id or node.host_id is None:
                continue
            if node.group_key == group_key:
                counts[node.host_id] = counts.get(node.host_id, 0) + 1
        return counts

    async def commit_placement(self, node: Node, host_id: str, reserved: Dict[str, int]) -> bool:
        current = self._nodes.get(node.node_id)
        if current is None:
            logger.info(f"Commit for node {node.node_id} skipped: node deleted")
            return False
        if current.version != node.version or current.host_id is not None:
            logger.warning(f"Commit for node {node.node_id} lost a concurrent update")
            return False

        host = self._hosts.get(host_id)
        if host is None:
            return False

        used = sum_reserved([n for n in self._nodes.values() if n.host_id == host_id])
        if exceeds_capacity(host.capacity, used, reserved):
            logger.warning(f"Commit for node {node.node_id} rejected: host {host_id} is full")
            return False

        node.assign(host_id, reserved)
        node.version += 1
        self._nodes[node.node_id] = node.model_copy(deep=True)
        return True


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["InMemoryFleetStore"]
