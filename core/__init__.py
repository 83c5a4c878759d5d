# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core module initialization
# PURPOSE: Export core contracts, errors and models
# CREATED: 30 SEP 2026
# ============================================================================

from core.contracts import (
    NodeStatus,
    StakeStatus,
    ConnectionStatus,
    HostType,
    SimilarityAffinity,
    ResourceAffinity,
    InfeasibleReason,
    OperatorCommand,
)
from core.errors import (
    FleetError,
    NotFound,
    InsufficientCapacity,
    ReservationTimeout,
    InvalidTransition,
    NodeTypeInUse,
)
from core.models import (
    Host,
    NodeType,
    Node,
    SchedulerPolicy,
    Validator,
    Reservation,
    HostAssignment,
    Infeasible,
)

__all__ = [
    # Enums
    "NodeStatus",
    "StakeStatus",
    "ConnectionStatus",
    "HostType",
    "SimilarityAffinity",
    "ResourceAffinity",
    "InfeasibleReason",
    "OperatorCommand",
    # Errors
    "FleetError",
    "NotFound",
    "InsufficientCapacity",
    "ReservationTimeout",
    "InvalidTransition",
    "NodeTypeInUse",
    # Models
    "Host",
    "NodeType",
    "Node",
    "SchedulerPolicy",
    "Validator",
    "Reservation",
    "HostAssignment",
    "Infeasible",
]
