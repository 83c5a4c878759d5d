# ============================================================================
# FLEET STORE CONTRACT & BASE REPOSITORY
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Storage contract shared by in-memory and PostgreSQL stores
# PURPOSE: FleetStore ABC, RepositoryError, error-context base class
# CREATED: 02 OCT 2026
# ============================================================================
"""
Fleet Store Contract

FleetStore is the source of truth for hosts, node types and nodes.
The resource ledger is only an index over it and can be rebuilt from
list_hosts() + list_nodes() at any time.

Implementations:
- InMemoryFleetStore (repositories.memory_store) - single process, default
- PostgresFleetStore (repositories.postgres_store) - multi-instance

Write semantics:
- Writes are copy-in / copy-out: callers never share objects with the store
- update_node() is optimistic: it fails (returns False) when node.version
  no longer matches, and bumps node.version on success
- commit_placement() is the authoritative capacity check: it re-checks the
  host's committed reservations and the node's version in one atomic unit
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from core.contracts import NodeStatus
from core.models import Host, Node, NodeType

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository operations."""

    def __init__(self, message: str, operation: str = None, entity_id: str = None):
        self.operation = operation
        self.entity_id = entity_id
        super().__init__(message)


class BaseRepository:
    """
    Common error handling and logging for PostgreSQL repositories.

    Driver exceptions are logged with context and re-raised as
    RepositoryError.
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def _error_context(self, operation: str, entity_id: Optional[str] = None):
        """
        Context manager for consistent error handling.

        Example:
            with self._error_context("host insert", host.host_id):
                await conn.execute(...)
        """
        try:
            yield
        except RepositoryError:
            raise
        except Exception as e:
            error_msg = f"{operation} failed"
            if entity_id:
                error_msg += f" for {entity_id}"
            error_msg += f": {e}"
            self.logger.error(error_msg)
            raise RepositoryError(error_msg, operation=operation, entity_id=entity_id) from e

    def _log_operation(
        self,
        success: bool,
        operation: str,
        entity_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log operation result as "operation: id | details"."""
        msg = f"{operation}: {entity_id}" if success else f"{operation} failed: {entity_id}"
        if details:
            msg += f" | {details}"
        if success:
            self.logger.info(msg)
        else:
            self.logger.warning(msg)


def exceeds_capacity(
    capacity: Dict[str, int],
    used: Dict[str, int],
    requested: Dict[str, int],
) -> bool:
    """True if used + requested overflows capacity on any resource key."""
    for key, amount in requested.items():
        if used.get(key, 0) + amount > capacity.get(key, 0):
            return True
    return False


def sum_reserved(nodes: List[Node]) -> Dict[str, int]:
    """Component-wise sum of the nodes' reserved vectors."""
    total: Dict[str, int] = {}
    for node in nodes:
        for key, amount in node.reserved.items():
            total[key] = total.get(key, 0) + amount
    return total


class FleetStore(ABC):
    """Source of truth for hosts, node types and nodes."""

    # =========================================================================
    # HOSTS
    # =========================================================================

    @abstractmethod
    async def add_host(self, host: Host) -> Host:
        """Insert a host; raises ValueError if the id exists."""

    @abstractmethod
    async def get_host(self, host_id: str) -> Optional[Host]:
        ...

    @abstractmethod
    async def list_hosts(self) -> List[Host]:
        ...

    @abstractmethod
    async def update_host(self, host: Host) -> bool:
        """Persist connectivity/capacity changes. False if the host is gone."""

    @abstractmethod
    async def delete_host(self, host_id: str) -> bool:
        ...

    # =========================================================================
    # NODE TYPES
    # =========================================================================

    @abstractmethod
    async def add_node_type(self, node_type: NodeType) -> NodeType:
        ...

    @abstractmethod
    async def get_node_type(self, type_id: str) -> Optional[NodeType]:
        ...

    @abstractmethod
    async def list_node_types(self) -> List[NodeType]:
        ...

    @abstractmethod
    async def update_node_type(self, node_type: NodeType) -> bool:
        ...

    @abstractmethod
    async def count_nodes_of_type(self, type_id: str) -> int:
        """Live nodes referencing the type."""

    # =========================================================================
    # NODES
    # =========================================================================

    @abstractmethod
    async def add_node(self, node: Node) -> Node:
        ...

    @abstractmethod
    async def get_node(self, node_id: str) -> Optional[Node]:
        ...

    @abstractmethod
    async def list_nodes(self) -> List[Node]:
        ...

    @abstractmethod
    async def update_node(self, node: Node) -> bool:
        """
        Optimistic update.

        Returns False on version conflict or if the node was deleted;
        on success node.version is incremented to match the store.
        """

    @abstractmethod
    async def delete_node(self, node_id: str) -> bool:
        ...

    @abstractmethod
    async def nodes_on_host(self, host_id: str) -> List[Node]:
        ...

    @abstractmethod
    async def sibling_counts(self, group_key: str, exclude_node_id: Optional[str] = None) -> Dict[str, int]:
        """Assigned nodes per host sharing group_key, excluding one node."""

    @abstractmethod
    async def commit_placement(self, node: Node, host_id: str, reserved: Dict[str, int]) -> bool:
        """
        Atomically assign node to host_id.

        Succeeds only if the node still exists unassigned at node.version
        and the host's committed reservations plus `reserved` fit its
        capacity. On success node is updated in place (assign + version).
        """

    async def node_counts_by_host(self) -> Dict[str, int]:
        """Number of assigned nodes per host (hosts without nodes omitted)."""
        counts: Dict[str, int] = {}
        for node in await self.list_nodes():
            if node.host_id is not None:
                counts[node.host_id] = counts.get(node.host_id, 0) + 1
        return counts

    async def stranded_nodes(self) -> List[Node]:
        """
        Nodes waiting for a host: stopped, unassigned, not operator-stopped.

        Host loss and a start without a host leave nodes in this state;
        the reconciler re-places them.
        """
        return [
            n for n in await self.list_nodes()
            if n.host_id is None and n.status == NodeStatus.STOPPED and not n.stop_requested
        ]

    async def close(self) -> None:
        """Release store resources."""


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "RepositoryError",
    "BaseRepository",
    "FleetStore",
    "exceeds_capacity",
    "sum_reserved",
]
