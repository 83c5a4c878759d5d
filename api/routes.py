# ============================================================================
# API ROUTES
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints for hosts, node types, nodes and the reconciler
# CREATED: 09 OCT 2026
# ============================================================================
"""
API Routes

FastAPI routes for the fleet scheduler.

Placement infeasibility is a normal response body (placed=false with a
reason), never an error status.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from core.errors import ConcurrentModification, InvalidTransition, NotFound
from core.models import Host, HostAssignment, HostUtilization, Node, NodeStatusView, NodeType, PlacementResult
from .schemas import (
    CommandCreate,
    ErrorResponse,
    HeartbeatCreate,
    HostCreate,
    HostResponse,
    NodeCreate,
    NodeCreateResponse,
    NodeResponse,
    NodeTypeResponse,
    PlacementResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# Set by the main app at startup

_fleet_service = None


def set_services(fleet_service):
    """Set service instances for dependency injection."""
    global _fleet_service
    _fleet_service = fleet_service


def get_fleet_service():
    if _fleet_service is None:
        raise HTTPException(500, "Services not initialized")
    return _fleet_service


# ============================================================================
# RESPONSE BUILDERS
# ============================================================================

def _node_response(node: Node) -> NodeResponse:
    return NodeResponse(
        node_id=node.node_id,
        node_type_id=node.node_type_id,
        org_id=node.org_id,
        group_key=node.group_key,
        status=node.status,
        stake_status=node.stake_status,
        host_id=node.host_id,
        last_host_id=node.last_host_id,
        reserved=node.reserved,
        properties=node.properties,
        stop_requested=node.stop_requested,
        target_version=node.target_version,
        running_version=node.running_version,
        sync_height=node.sync_height,
        chain_height=node.chain_height,
        created_at=node.created_at,
        placed_at=node.placed_at,
    )


def _placement_response(result: PlacementResult) -> PlacementResponse:
    if isinstance(result, HostAssignment):
        return PlacementResponse(
            node_id=result.node_id,
            placed=True,
            host_id=result.host_id,
            reserved=result.reserved,
        )
    return PlacementResponse(
        node_id=result.node_id,
        placed=False,
        reason=result.reason,
        detail=result.detail,
    )


def _host_response(host: Host) -> HostResponse:
    return HostResponse(
        host_id=host.host_id,
        name=host.name,
        region=host.region,
        host_type=host.host_type,
        org_id=host.org_id,
        capacity=host.capacity,
        status=host.status,
        last_heartbeat_at=host.last_heartbeat_at,
    )


def _node_type_response(node_type: NodeType) -> NodeTypeResponse:
    return NodeTypeResponse(
        type_id=node_type.type_id,
        name=node_type.name,
        blockchain=node_type.blockchain,
        description=node_type.description,
        validator_capable=node_type.validator_capable,
        requirements=node_type.requirement_vector(),
        properties=[p.model_dump(mode="json") for p in node_type.properties],
    )


# ============================================================================
# RECONCILER STATUS
# ============================================================================

@router.get("/reconciler/status", tags=["Reconciler"])
async def get_reconciler_status():
    """
    Get reconciler status and statistics.

    Returns the loop state plus scheduler and ledger counters.
    """
    service = get_fleet_service()
    stats = service.reconciler.stats

    return {
        "status": "running" if stats["running"] else "stopped",
        "role": stats["role"],
        "started_at": stats["started_at"],
        "uptime_seconds": stats["uptime_seconds"],
        "metrics": {
            "cycles": stats["cycles"],
            "heartbeats": stats["heartbeats"],
            "transitions": stats["transitions"],
            "hosts_marked_offline": stats["hosts_marked_offline"],
            "replacements_succeeded": stats["replacements_succeeded"],
            "replacements_failed": stats["replacements_failed"],
            "pending_replacements": stats["pending_replacements"],
            "errors": stats["errors"],
            "last_sweep_at": stats["last_sweep_at"],
        },
        "scheduler": dict(service.scheduler.stats),
        "ledger": dict(service.ledger.stats),
    }


# ============================================================================
# HOSTS
# ============================================================================

@router.post(
    "/hosts",
    response_model=HostResponse,
    status_code=201,
    tags=["Hosts"],
    responses={400: {"model": ErrorResponse, "description": "Invalid or duplicate host"}},
)
async def register_host(request: HostCreate):
    """Register a host and its capacity."""
    service = get_fleet_service()

    try:
        host = await service.register_host(Host(**request.model_dump()))
    except ValueError as e:
        raise HTTPException(400, str(e))

    return _host_response(host)


@router.delete(
    "/hosts/{host_id}",
    status_code=204,
    tags=["Hosts"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def remove_host(host_id: str):
    """Remove a host. Refused while nodes are assigned to it."""
    service = get_fleet_service()

    try:
        await service.remove_host(host_id)
    except NotFound as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(409, str(e))


@router.get("/hosts/utilization", response_model=List[HostUtilization], tags=["Hosts"])
async def list_host_utilization():
    """Per-host capacity, used, free and utilization."""
    service = get_fleet_service()
    return await service.list_host_utilization()


@router.get("/hosts/node-counts", tags=["Hosts"])
async def host_node_counts():
    """Number of nodes assigned to each host."""
    service = get_fleet_service()
    return await service.host_node_counts()


@router.post(
    "/hosts/{host_id}/heartbeat",
    response_model=List[NodeStatusView],
    tags=["Hosts"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def host_heartbeat(host_id: str, request: HeartbeatCreate):
    """
    Record a host heartbeat.

    Telemetry entries drive node status transitions; the response lists
    the resulting status of each reported node.
    """
    service = get_fleet_service()

    try:
        return await service.host_heartbeat(host_id, request.timestamp, request.telemetry)
    except NotFound as e:
        raise HTTPException(404, str(e))
    except ConcurrentModification as e:
        raise HTTPException(409, str(e))


# ============================================================================
# NODE TYPES
# ============================================================================

@router.get("/node-types", response_model=List[NodeTypeResponse], tags=["Node Types"])
async def list_node_types():
    """List registered node types."""
    service = get_fleet_service()
    return [_node_type_response(t) for t in service.list_node_types()]


@router.get(
    "/node-types/{type_id}",
    response_model=NodeTypeResponse,
    tags=["Node Types"],
    responses={404: {"model": ErrorResponse}},
)
async def get_node_type(type_id: str):
    service = get_fleet_service()

    try:
        return _node_type_response(service.get_node_type(type_id))
    except NotFound as e:
        raise HTTPException(404, str(e))


@router.get(
    "/node-types/{type_id}/regions",
    response_model=List[str],
    tags=["Node Types"],
    responses={404: {"model": ErrorResponse}},
)
async def candidate_regions(
    type_id: str,
    org_id: Optional[str] = Query(None, description="Tenant, for private host eligibility"),
):
    """Regions where a node of this type could be placed right now."""
    service = get_fleet_service()

    try:
        return await service.candidate_regions(type_id, org_id)
    except NotFound as e:
        raise HTTPException(404, str(e))


# ============================================================================
# NODES
# ============================================================================

@router.post(
    "/nodes",
    response_model=NodeCreateResponse,
    status_code=201,
    tags=["Nodes"],
    responses={
        201: {"description": "Node created; placement outcome in body"},
        400: {"model": ErrorResponse, "description": "Invalid properties"},
        404: {"model": ErrorResponse, "description": "Node type not found"},
    },
)
async def create_node(request: NodeCreate):
    """
    Create a node and, unless place=false, place it.

    An infeasible placement still returns 201: the node exists, unassigned,
    and the body carries the reason.
    """
    service = get_fleet_service()

    try:
        node = await service.create_node_request(
            node_type_id=request.node_type_id,
            policy=request.scheduler,
            group_key=request.group_key,
            org_id=request.org_id,
            properties=request.properties,
            node_id=request.node_id,
        )
    except NotFound as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))

    placement = None
    if request.place:
        placement = _placement_response(await service.place(node.node_id))
        node = await service.get_node(node.node_id)

    return NodeCreateResponse(node=_node_response(node), placement=placement)


@router.get(
    "/nodes/{node_id}",
    response_model=NodeResponse,
    tags=["Nodes"],
    responses={404: {"model": ErrorResponse}},
)
async def get_node(node_id: str):
    service = get_fleet_service()

    try:
        return _node_response(await service.get_node(node_id))
    except NotFound as e:
        raise HTTPException(404, str(e))


@router.post(
    "/nodes/{node_id}/place",
    response_model=PlacementResponse,
    tags=["Nodes"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def place_node(node_id: str):
    """Place a pending node. Infeasibility is reported in the body."""
    service = get_fleet_service()

    try:
        result = await service.place(node_id)
    except NotFound as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(409, str(e))

    return _placement_response(result)


@router.get(
    "/nodes/{node_id}/status",
    response_model=NodeStatusView,
    tags=["Nodes"],
    responses={404: {"model": ErrorResponse}},
)
async def get_node_status(node_id: str):
    service = get_fleet_service()

    try:
        return await service.get_node_status(node_id)
    except NotFound as e:
        raise HTTPException(404, str(e))


@router.delete(
    "/nodes/{node_id}",
    status_code=204,
    tags=["Nodes"],
    responses={404: {"model": ErrorResponse}},
)
async def delete_node(node_id: str):
    """Delete a node and release its capacity."""
    service = get_fleet_service()

    try:
        await service.delete_node(node_id)
    except NotFound as e:
        raise HTTPException(404, str(e))


@router.post(
    "/nodes/{node_id}/commands",
    response_model=NodeResponse,
    tags=["Nodes"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def operator_command(node_id: str, request: CommandCreate):
    """
    Issue an operator command (stop, start, upgrade).

    Returns 409 if the node's current status does not allow it.
    """
    service = get_fleet_service()

    try:
        node = await service.operator_command(node_id, request.command, request.target_version)
    except NotFound as e:
        raise HTTPException(404, str(e))
    except (InvalidTransition, ConcurrentModification) as e:
        raise HTTPException(409, str(e))

    logger.info(f"Operator {request.command.value} applied to node {node_id}")
    return _node_response(node)


__all__ = ["router", "set_services"]
