# ============================================================================
# PLACEMENT & TELEMETRY MODELS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core model - Ephemeral decision records and heartbeat payloads
# PURPOSE: Reservation, placement results, utilization and telemetry views
# CREATED: 30 SEP 2026
# EXPORTS: Reservation, HostAssignment, Infeasible, PlacementResult,
#          HostUtilization, NodeTelemetry, NodeStatusView, ReplacementRequest
# DEPENDENCIES: pydantic
# ============================================================================
"""
Placement & Telemetry Models

Placement records are ephemeral: nothing here is persisted on its own.
A successful placement survives only as Node.host_id + Node.reserved
and the ledger's reservation.

Usage:
    result = await scheduler.place(node)
    if result.placed:
        print(result.host_id)
    else:
        print(result.reason, result.detail)
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field, computed_field

from core.contracts import InfeasibleReason, NodeStatus, StakeStatus, ConnectionStatus


class Reservation(BaseModel):
    """A committed claim against one host's capacity for one node."""
    reservation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    node_id: str
    host_id: str
    resources: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class HostAssignment(BaseModel):
    """Placement succeeded."""
    node_id: str
    host_id: str
    reserved: Dict[str, int] = Field(default_factory=dict)
    decided_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def placed(self) -> bool:
        return True


class Infeasible(BaseModel):
    """Placement produced no host assignment. The node stays unassigned."""
    node_id: str
    reason: InfeasibleReason
    detail: Optional[str] = None
    decided_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def placed(self) -> bool:
        return False


PlacementResult = Union[HostAssignment, Infeasible]


class HostUtilization(BaseModel):
    """Per-host used/free capacity, as reported by the ledger."""
    host_id: str
    status: Optional[ConnectionStatus] = None
    capacity: Dict[str, int] = Field(default_factory=dict)
    used: Dict[str, int] = Field(default_factory=dict)
    free: Dict[str, int] = Field(default_factory=dict)
    utilization: Dict[str, float] = Field(
        default_factory=dict,
        description="Used fraction per resource key (0.0 - 1.0)"
    )
    node_count: int = 0


class NodeTelemetry(BaseModel):
    """
    Per-node payload of a host heartbeat.

    Every field but node_id is optional: hosts report what they know.
    """
    node_id: str
    running: Optional[bool] = Field(
        default=None,
        description="Host acknowledges the node process is up"
    )
    sync_height: Optional[int] = Field(default=None, ge=0)
    chain_height: Optional[int] = Field(default=None, ge=0)
    consensus: Optional[bool] = Field(
        default=None,
        description="Validator reports consensus participation"
    )
    version: Optional[str] = Field(default=None, description="Running binary version")
    observed_stake: Optional[StakeStatus] = Field(
        default=None,
        description="Stake status as observed on chain"
    )
    score: Optional[int] = None
    fatal_error: Optional[str] = Field(
        default=None,
        description="Set when the node crashed unrecoverably"
    )


class NodeStatusView(BaseModel):
    """What callers see of a node's state."""
    node_id: str
    status: NodeStatus
    stake_status: Optional[StakeStatus] = None
    host_id: Optional[str] = None


class ReplacementRequest(BaseModel):
    """A pending re-placement in the reconciler queue (one per node)."""
    node_id: str
    exclude_host_id: Optional[str] = Field(
        default=None,
        description="Lost host; excluded while it stays offline"
    )
    attempts: int = Field(default=0, ge=0)
    due_at: datetime = Field(default_factory=datetime.utcnow)
    last_reason: Optional[InfeasibleReason] = None
    enqueued_at: datetime = Field(default_factory=datetime.utcnow)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "Reservation",
    "HostAssignment",
    "Infeasible",
    "PlacementResult",
    "HostUtilization",
    "NodeTelemetry",
    "NodeStatusView",
    "ReplacementRequest",
]
