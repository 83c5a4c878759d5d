# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Business logic layer
# PURPOSE: Node type registry and fleet facade
# CREATED: 06 OCT 2026
# ============================================================================
"""
Services Module

The node type registry is consulted by the scheduler itself, so only it
is exported here. FleetService sits above the scheduler and reconciler;
import it from services.fleet_service.

Usage:
    from services import NodeTypeService
    from services.fleet_service import FleetService
"""

from .node_type_service import NodeTypeService

__all__ = [
    "NodeTypeService",
]
