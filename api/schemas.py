# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 09 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from core.contracts import (
    ConnectionStatus,
    HostType,
    InfeasibleReason,
    NodeStatus,
    OperatorCommand,
    StakeStatus,
)
from core.models import NodeTelemetry, SchedulerPolicy


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class HostCreate(BaseModel):
    """Request to register a host."""
    host_id: str = Field(..., max_length=64)
    name: str = Field(..., max_length=128)
    address: Optional[str] = Field(None, max_length=255)
    ip_addresses: List[str] = Field(default_factory=list)
    region: Optional[str] = Field(None, max_length=64)
    host_type: HostType = HostType.CLOUD
    org_id: Optional[str] = Field(None, max_length=64)
    capacity: Dict[str, int] = Field(
        default_factory=dict,
        description="Total capacity per resource key"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "host_id": "host-fra-01",
                    "name": "fra-01",
                    "region": "eu-central",
                    "capacity": {"cpu": 32, "memory": 128, "disk": 2000, "ips": 4},
                }
            ]
        }
    }


class HeartbeatCreate(BaseModel):
    """Heartbeat from a host, with optional per-node telemetry."""
    timestamp: Optional[datetime] = None
    telemetry: List[NodeTelemetry] = Field(default_factory=list)


class NodeCreate(BaseModel):
    """Request to create (and place) a node."""
    node_type_id: str = Field(..., max_length=64)
    node_id: Optional[str] = Field(None, max_length=64)
    org_id: Optional[str] = Field(None, max_length=64)
    group_key: Optional[str] = Field(
        None,
        max_length=128,
        description="Sibling group; defaults to node type + org"
    )
    scheduler: Optional[SchedulerPolicy] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    place: bool = Field(default=True, description="Place immediately after creation")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "node_type_id": "solana-validator",
                    "org_id": "acme",
                    "scheduler": {"similarity": "spread", "resource": "least_resources"},
                    "properties": {"network": "mainnet"},
                }
            ]
        }
    }


class CommandCreate(BaseModel):
    """Operator command against a node."""
    command: OperatorCommand
    target_version: Optional[str] = Field(None, max_length=64)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class PlacementResponse(BaseModel):
    """Outcome of a placement attempt."""
    node_id: str
    placed: bool
    host_id: Optional[str] = None
    reserved: Dict[str, int] = {}
    reason: Optional[InfeasibleReason] = None
    detail: Optional[str] = None


class NodeResponse(BaseModel):
    """Node state response."""
    node_id: str
    node_type_id: str
    org_id: Optional[str] = None
    group_key: Optional[str] = None
    status: NodeStatus
    stake_status: Optional[StakeStatus] = None
    host_id: Optional[str] = None
    last_host_id: Optional[str] = None
    reserved: Dict[str, int] = {}
    properties: Dict[str, Any] = {}
    stop_requested: bool = False
    target_version: Optional[str] = None
    running_version: Optional[str] = None
    sync_height: Optional[int] = None
    chain_height: Optional[int] = None
    created_at: datetime
    placed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NodeCreateResponse(BaseModel):
    """Created node plus the placement outcome (if placement was requested)."""
    node: NodeResponse
    placement: Optional[PlacementResponse] = None


class HostResponse(BaseModel):
    """Host response."""
    host_id: str
    name: str
    region: Optional[str] = None
    host_type: HostType
    org_id: Optional[str] = None
    capacity: Dict[str, int] = {}
    status: ConnectionStatus
    last_heartbeat_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NodeTypeResponse(BaseModel):
    """Node type summary."""
    type_id: str
    name: str
    blockchain: Optional[str] = None
    description: Optional[str] = None
    validator_capable: bool = False
    requirements: Dict[str, int] = {}
    properties: List[Dict[str, Any]] = []


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[str] = None


__all__ = [
    "HostCreate",
    "HeartbeatCreate",
    "NodeCreate",
    "CommandCreate",
    "PlacementResponse",
    "NodeResponse",
    "NodeCreateResponse",
    "HostResponse",
    "NodeTypeResponse",
    "ErrorResponse",
]
