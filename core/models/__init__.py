# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 30 SEP 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the fleet scheduler. Models that map to a table
name it via __sql_table__ / __sql_schema__ ClassVars.
"""

from core.models.host import Host, RESOURCE_PRIORITY, resource_key_order
from core.models.node_type import NodeType, NodeProperty, ResourceRequirement
from core.models.node import Node, SchedulerPolicy, Validator, default_group_key
from core.models.placement import (
    Reservation,
    HostAssignment,
    Infeasible,
    PlacementResult,
    HostUtilization,
    NodeTelemetry,
    NodeStatusView,
    ReplacementRequest,
)

__all__ = [
    # Host
    "Host",
    "RESOURCE_PRIORITY",
    "resource_key_order",
    # Node type
    "NodeType",
    "NodeProperty",
    "ResourceRequirement",
    # Node
    "Node",
    "SchedulerPolicy",
    "Validator",
    "default_group_key",
    # Placement
    "Reservation",
    "HostAssignment",
    "Infeasible",
    "PlacementResult",
    "HostUtilization",
    "NodeTelemetry",
    "NodeStatusView",
    "ReplacementRequest",
]
