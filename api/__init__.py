# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for the fleet scheduler
# CREATED: 09 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the fleet scheduler.
"""

from .routes import router, set_services
from .schemas import (
    HostCreate,
    NodeCreate,
    NodeResponse,
    PlacementResponse,
)

__all__ = [
    "router",
    "set_services",
    "HostCreate",
    "NodeCreate",
    "NodeResponse",
    "PlacementResponse",
]
