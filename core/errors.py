# ============================================================================
# SCHEDULER ERRORS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Foundation - Exception taxonomy
# PURPOSE: Errors raised inside the scheduler and reconciler
# CREATED: 28 SEP 2026
# ============================================================================
"""
Scheduler Errors

Only NotFound and malformed input (ValueError, InvalidTransition) are
meant to reach callers of the fleet service. Capacity and lock errors are
raised between scheduler components and turned into Infeasible results
by the placement scheduler.
"""

from typing import Dict, Optional


class FleetError(Exception):
    """Base exception for fleet scheduling errors."""


class NotFound(FleetError, LookupError):
    """Unknown host, node type or node id."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InsufficientCapacity(FleetError):
    """The host cannot fit the requested resource vector."""

    def __init__(
        self,
        host_id: str,
        requested: Dict[str, int],
        free: Optional[Dict[str, int]] = None,
    ):
        self.host_id = host_id
        self.requested = requested
        self.free = free or {}
        super().__init__(
            f"Host {host_id} cannot fit {requested} (free={self.free})"
        )


class ReservationTimeout(FleetError):
    """Waiting for a host's reservation lock exceeded the configured bound."""

    def __init__(self, host_id: str, timeout: float):
        self.host_id = host_id
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for host {host_id} lock")


class InvalidTransition(FleetError, ValueError):
    """A node status transition that the state machine does not allow."""

    def __init__(self, node_id: str, current: str, requested: str):
        self.node_id = node_id
        self.current = current
        self.requested = requested
        super().__init__(f"Node {node_id}: cannot transition from {current} to {requested}")


class NodeTypeInUse(FleetError):
    """A node type referenced by live nodes cannot be mutated."""

    def __init__(self, type_id: str, node_count: int):
        self.type_id = type_id
        self.node_count = node_count
        super().__init__(
            f"Node type {type_id} is referenced by {node_count} node(s); "
            f"register a new type instead of mutating it"
        )


class ConcurrentModification(FleetError):
    """An optimistic update lost to a concurrent writer."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} was modified concurrently; retry")


__all__ = [
    "FleetError",
    "NotFound",
    "InsufficientCapacity",
    "ReservationTimeout",
    "InvalidTransition",
    "NodeTypeInUse",
    "ConcurrentModification",
]
