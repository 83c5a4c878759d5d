# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Foundation - Core enums and base contracts
# PURPOSE: Define status enums and scheduler policy enums for the fleet
# LAST_REVIEWED: 09 OCT 2026
# EXPORTS: NodeStatus, StakeStatus, ConnectionStatus, HostType,
#          SimilarityAffinity, ResourceAffinity, PropertyFieldType,
#          OperatorCommand, InfeasibleReason, HostData, NodeData
# DEPENDENCIES: enum, pydantic
# ============================================================================
"""
Base contracts for the fleet scheduler.

These define the minimal identity fields and enumerations that cross
boundaries:
- SQL (PostgreSQL enum-like text columns)
- HTTP (FastAPI request/response schemas)
- Python (scheduler and reconciler internals)

Boundary-specific models inherit from these contracts.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


# ============================================================================
# STATUS ENUMS
# ============================================================================

class NodeStatus(str, Enum):
    """
    Node lifecycle states.

    State transitions:
        PROVISIONING -> SYNCING -> SYNCED -> CONSENSUS
                        SYNCING <-> UPGRADING
                        SYNCING <- CONSENSUS (falls behind)
        any -> STOPPED -> PROVISIONING (restart)
    """
    PROVISIONING = "provisioning"  # Assigned (or awaiting assignment), host starting it
    SYNCING = "syncing"            # Running, catching up to chain head
    UPGRADING = "upgrading"        # New binary being applied
    SYNCED = "synced"              # At chain head
    CONSENSUS = "consensus"        # Validator participating in consensus
    STOPPED = "stopped"            # Not running (stop, fatal error, host loss)

    def is_running(self) -> bool:
        """Check if the node is expected to be running on its host."""
        return self != NodeStatus.STOPPED


class StakeStatus(str, Enum):
    """
    Validator stake states.

    Observed from chain, never initiated here. Node status influences
    stake status, never the reverse.
    """
    AVAILABLE = "available"
    STAKED = "staked"
    DELINQUENT = "delinquent"
    DISABLED = "disabled"


class ConnectionStatus(str, Enum):
    """Host connectivity as seen through heartbeats."""
    ONLINE = "online"
    OFFLINE = "offline"


class HostType(str, Enum):
    """Who may run nodes on a host."""
    CLOUD = "cloud"        # Anyone can run nodes on these hosts
    PRIVATE = "private"    # Only the owning org can run nodes here


# ============================================================================
# SCHEDULER POLICY ENUMS
# ============================================================================

class SimilarityAffinity(str, Enum):
    """
    Placement preference relative to sibling nodes (same group key).

    CLUSTER: co-locate siblings (low latency between group members).
    SPREAD: keep siblings apart (one host failure must not take the group down).
    """
    CLUSTER = "cluster"
    SPREAD = "spread"


class ResourceAffinity(str, Enum):
    """
    Placement preference relative to host load.

    MOST_RESOURCES: fill the fullest host that still fits (bin-packing).
    LEAST_RESOURCES: pick the emptiest host (spread load).
    """
    MOST_RESOURCES = "most_resources"
    LEAST_RESOURCES = "least_resources"


class PropertyFieldType(str, Enum):
    """UI field type of a node type property."""
    SWITCH = "switch"
    PASSWORD = "password"
    TEXT = "text"
    FILE_UPLOAD = "file_upload"


class OperatorCommand(str, Enum):
    """Explicit commands an operator can issue against a node."""
    STOP = "stop"
    START = "start"
    UPGRADE = "upgrade"


class InfeasibleReason(str, Enum):
    """Why a placement attempt produced no host assignment."""
    INSUFFICIENT_CAPACITY = "insufficient_capacity"    # No host fits the requirement
    AFFINITY_UNSATISFIABLE = "affinity_unsatisfiable"  # Affinity/eligibility left nothing
    LOCK_TIMEOUT = "lock_timeout"                      # Host lock contention exceeded bound
    CANCELLED = "cancelled"                            # Request cancelled (e.g. node deleted)


# ============================================================================
# BASE DATA CONTRACTS
# ============================================================================

class HostData(BaseModel):
    """
    Essential host identity.
    """
    host_id: str = Field(..., max_length=64)
    name: str = Field(..., max_length=128)

    model_config = {"frozen": False}


class NodeData(BaseModel):
    """
    Essential node identity - the minimum fields that define a node.
    """
    node_id: str = Field(..., max_length=64)
    node_type_id: str = Field(..., max_length=64, description="Reference to node type")
    org_id: Optional[str] = Field(default=None, max_length=64, description="Owning tenant")

    model_config = {"frozen": False}
