# ============================================================================
# FLEET SERVICE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Public operations of the scheduler
# PURPOSE: One facade over registry, ledger, scheduler, reconciler and store
# CREATED: 08 OCT 2026
# ============================================================================
"""
Fleet Service

The operations the API (and any embedding program) call. Composes:

- NodeTypeService     node type catalog and property validation
- ResourceLedger      per-host used/free capacity
- PlacementScheduler  host selection
- LifecycleReconciler heartbeats, failover, operator commands
- FleetStore          persistence (in-memory or PostgreSQL)

Node-scoped operations run under the per-node lock shared with the
reconciler, so placement, commands and telemetry for one node never
interleave.

Usage:
    service = FleetService.build(store)
    await service.startup()
    node = await service.create_node_request("solana-validator", org_id="acme")
    result = await service.place(node.node_id)
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from core.config import Defaults, get_defaults
from core.contracts import OperatorCommand
from core.errors import NotFound
from core.logging import log_context
from core.models import (
    Host,
    HostAssignment,
    HostUtilization,
    Node,
    NodeStatusView,
    NodeTelemetry,
    NodeType,
    PlacementResult,
    SchedulerPolicy,
    Validator,
)
from infrastructure.locking import KeyedLocks, LockService
from reconciler.loop import LifecycleReconciler
from repositories.base import FleetStore
from repositories.host_repo import naive_utc
from scheduler.ledger import ResourceLedger
from scheduler.placement import PlacementScheduler
from services.node_type_service import NodeTypeService

logger = logging.getLogger(__name__)


class FleetService:
    """Facade over the fleet scheduler components."""

    def __init__(
        self,
        store: FleetStore,
        registry: NodeTypeService,
        ledger: ResourceLedger,
        scheduler: PlacementScheduler,
        reconciler: LifecycleReconciler,
        node_locks: KeyedLocks,
        defaults: Optional[Defaults] = None,
    ):
        self.store = store
        self.registry = registry
        self.ledger = ledger
        self.scheduler = scheduler
        self.reconciler = reconciler
        self.node_locks = node_locks
        self.defaults = defaults or get_defaults()

    @classmethod
    def build(
        cls,
        store: FleetStore,
        node_types_dir: Optional[str] = None,
        defaults: Optional[Defaults] = None,
        lock_service: Optional[LockService] = None,
    ) -> "FleetService":
        """Wire a complete service around a store."""
        defaults = defaults or get_defaults()
        registry = NodeTypeService(node_types_dir or defaults.store.node_types_dir, store=store)
        ledger = ResourceLedger()
        scheduler = PlacementScheduler(store, ledger, registry, defaults.scheduler)
        node_locks = KeyedLocks("node")
        reconciler = LifecycleReconciler(
            store,
            ledger,
            scheduler,
            defaults=defaults.reconciler,
            lock_service=lock_service,
            node_locks=node_locks,
        )
        return cls(store, registry, ledger, scheduler, reconciler, node_locks, defaults)

    async def startup(self) -> Dict[str, int]:
        """
        Load the catalog and rebuild in-memory state from the store.

        Returns:
            Counts of loaded node types, hosts, reservations and nodes
            waiting for re-placement
        """
        loaded = self.registry.load_all()
        await self.registry.load_from_store()
        await self.registry.sync_to_store()

        hosts = await self.store.list_hosts()
        nodes = await self.store.list_nodes()
        reservations = self.ledger.rebuild(hosts, nodes)
        # adopted by the reconciler on its next replacement pass
        stranded = await self.store.stranded_nodes()

        logger.info(
            f"Fleet service started: {len(self.registry.list_all())} node types "
            f"({loaded} from catalog), {len(hosts)} hosts, {reservations} reservations, "
            f"{len(stranded)} node(s) awaiting re-placement"
        )
        return {
            "node_types": len(self.registry.list_all()),
            "hosts": len(hosts),
            "reservations": reservations,
            "pending_replacements": len(stranded),
        }

    # =========================================================================
    # NODE TYPES
    # =========================================================================

    def list_node_types(self) -> List[NodeType]:
        return self.registry.list_all()

    def get_node_type(self, type_id: str) -> NodeType:
        return self.registry.get(type_id)

    async def candidate_regions(self, type_id: str, org_id: Optional[str] = None) -> List[str]:
        return await self.scheduler.candidate_regions(type_id, org_id)

    # =========================================================================
    # HOSTS
    # =========================================================================

    async def register_host(self, host: Host) -> Host:
        """
        Add a host to the fleet.

        Raises:
            ValueError: host_id already registered
        """
        await self.store.add_host(host)
        self.ledger.register_host(host.host_id, host.capacity)
        logger.info(f"Registered host {host.host_id} (region={host.region}, type={host.host_type.value})")
        return host

    async def remove_host(self, host_id: str) -> None:
        """
        Remove a host that no longer runs any node.

        Raises:
            NotFound: unknown host
            ValueError: nodes are still assigned to the host
        """
        host = await self.store.get_host(host_id)
        if host is None:
            raise NotFound("host", host_id)

        assigned = await self.store.nodes_on_host(host_id)
        if assigned:
            raise ValueError(
                f"Host {host_id} still has {len(assigned)} assigned node(s); "
                f"stop or move them first"
            )

        # reservations another instance already released must not block removal
        await self.scheduler.resync_hosts([host_id])
        if self.ledger.has_host(host_id):
            self.ledger.remove_host(host_id)
        await self.store.delete_host(host_id)
        logger.info(f"Removed host {host_id}")

    async def host_heartbeat(
        self,
        host_id: str,
        timestamp: Optional[datetime] = None,
        telemetry: Iterable[NodeTelemetry] = (),
    ) -> List[NodeStatusView]:
        return await self.reconciler.handle_heartbeat(host_id, naive_utc(timestamp), telemetry)

    async def list_host_utilization(self) -> List[HostUtilization]:
        """Ledger snapshot, annotated with each host's connection status."""
        await self.scheduler.resync_hosts()
        status = {h.host_id: h.status for h in await self.store.list_hosts()}
        snapshot = self.ledger.snapshot()
        for row in snapshot:
            row.status = status.get(row.host_id)
        return snapshot

    async def host_node_counts(self) -> Dict[str, int]:
        return await self.store.node_counts_by_host()

    # =========================================================================
    # NODES
    # =========================================================================

    async def create_node_request(
        self,
        node_type_id: str,
        policy: Optional[SchedulerPolicy] = None,
        group_key: Optional[str] = None,
        org_id: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
        node_id: Optional[str] = None,
    ) -> Node:
        """
        Create a pending (unassigned) node.

        Raises:
            NotFound: unknown node type
            ValueError: invalid property values or duplicate node_id
        """
        node_type = self.registry.get(node_type_id)
        resolved = NodeTypeService.validate_properties(node_type, properties)

        if policy is None:
            policy = SchedulerPolicy(resource=self.defaults.scheduler.default_resource_affinity)

        node = Node(
            node_id=node_id or uuid.uuid4().hex,
            node_type_id=node_type_id,
            org_id=org_id,
            scheduler=policy,
            group_key=group_key,
            properties=resolved,
            validator=Validator() if node_type.validator_capable else None,
        )
        await self.store.add_node(node)
        logger.info(f"Created node {node.node_id} of type {node_type_id} (group={node.group_key})")
        return node

    async def get_node(self, node_id: str) -> Node:
        node = await self.store.get_node(node_id)
        if node is None:
            raise NotFound("node", node_id)
        return node

    async def get_node_status(self, node_id: str) -> NodeStatusView:
        node = await self.get_node(node_id)
        return NodeStatusView(
            node_id=node.node_id,
            status=node.status,
            stake_status=node.stake_status,
            host_id=node.host_id,
        )

    async def place(self, node_id: str) -> PlacementResult:
        """
        Place a pending node.

        An already-assigned node returns its current assignment.

        Raises:
            NotFound: unknown node (or its node type)
            ValueError: an operator stopped the node
        """
        async with self.node_locks.hold(node_id):
            node = await self.get_node(node_id)
            if node.host_id is not None:
                return HostAssignment(node_id=node.node_id, host_id=node.host_id, reserved=node.reserved)
            if node.stop_requested:
                raise ValueError(f"Node {node_id} was stopped by an operator; start it first")

            result = await self.scheduler.place(node)

        if isinstance(result, HostAssignment):
            self.reconciler.dequeue(node_id)
        return result

    async def delete_node(self, node_id: str) -> None:
        """
        Delete a node: cancel any in-flight placement, release its
        reservation and drop a pending re-placement.

        Raises:
            NotFound: unknown node
        """
        with log_context(node_id=node_id, component="api", operation="delete_node"):
            self.scheduler.cancel(node_id)

            async with self.node_locks.hold(node_id):
                node = await self.get_node(node_id)
                released = self.ledger.release_node(node_id)
                self.reconciler.dequeue(node_id)
                await self.store.delete_node(node_id)

            self.node_locks.discard(node_id)
            logger.info(f"Deleted node {node_id} (released_reservation={released}, host={node.host_id})")

    async def operator_command(
        self,
        node_id: str,
        command: OperatorCommand,
        target_version: Optional[str] = None,
    ) -> Node:
        return await self.reconciler.operator_command(node_id, command, target_version)


__all__ = ["FleetService"]
