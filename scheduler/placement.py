# ============================================================================
# PLACEMENT SCHEDULER
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Scheduler - Host selection for pending nodes
# PURPOSE: Orchestrate registry, ledger, affinity and store into one decision
# CREATED: 06 OCT 2026
# ============================================================================
"""
Placement Scheduler

Picks exactly one host for a pending node, or reports why it cannot.

Algorithm:
    1. Resolve the node type's requirement vector (registry)
    2. Eligible hosts: online, not excluded, tenancy allows the node's org
    3. Capacity pre-filter (ledger.fits, unlocked, may be stale)
    4. Rank by policy (affinity evaluator, sibling counts from the store)
    5. Walk the ranking: reserve under the host lock, then commit to the
       store; first success wins. A failed commit releases its reservation.

The ledger reservation and the store commit are the race-resolution
points; everything before them is advisory. Infeasibility is returned as
data, never raised, and never retried here.

Usage:
    scheduler = PlacementScheduler(store, ledger, registry)
    result = await scheduler.place(node)
    if isinstance(result, HostAssignment):
        ...
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from core.config import SchedulerDefaults, get_defaults
from core.contracts import InfeasibleReason
from core.errors import InsufficientCapacity, NotFound, ReservationTimeout
from core.logging import log_context, log_checkpoint
from core.models import HostAssignment, Infeasible, Node, PlacementResult
from repositories.base import FleetStore
from scheduler.affinity import HostCandidate, rank_hosts
from scheduler.ledger import ResourceLedger
from services.node_type_service import NodeTypeService

logger = logging.getLogger(__name__)


class PlacementScheduler:
    """Chooses hosts for nodes."""

    def __init__(
        self,
        store: FleetStore,
        ledger: ResourceLedger,
        registry: NodeTypeService,
        defaults: Optional[SchedulerDefaults] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.registry = registry
        self.defaults = defaults or get_defaults().scheduler

        # node_id -> cancellation flag of the in-flight placement
        self._inflight: Dict[str, asyncio.Event] = {}

        self.stats = {
            "placements": 0,
            "infeasible": 0,
            "cancelled": 0,
            "commit_conflicts": 0,
        }

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def place(self, node: Node, exclude_hosts: Iterable[str] = ()) -> PlacementResult:
        """
        Assign node to a host.

        On success node.host_id, node.reserved and node.status (provisioning)
        are updated in place and in the store.

        Raises:
            NotFound: unknown node type
            ValueError: node already assigned, or a placement for it is in flight
        """
        if node.host_id is not None:
            raise ValueError(f"Node {node.node_id} is already assigned to {node.host_id}")
        if node.node_id in self._inflight:
            raise ValueError(f"Placement for node {node.node_id} is already in flight")

        cancelled = asyncio.Event()
        self._inflight[node.node_id] = cancelled
        try:
            with log_context(node_id=node.node_id, group_key=node.group_key, component="scheduler"):
                result = await self._place(node, set(exclude_hosts), cancelled)
                self._record(result)
        finally:
            self._inflight.pop(node.node_id, None)

        return result

    def cancel(self, node_id: str) -> bool:
        """
        Cancel an in-flight placement.

        Before commit the placement returns Infeasible(cancelled); a
        reservation taken in the meantime is released.

        Returns:
            True if a placement was in flight
        """
        flag = self._inflight.get(node_id)
        if flag is None:
            return False
        flag.set()
        logger.info(f"Cancellation requested for placement of node {node_id}")
        return True

    def is_inflight(self, node_id: str) -> bool:
        return node_id in self._inflight

    async def candidate_regions(self, node_type_id: str, org_id: Optional[str] = None) -> List[str]:
        """Regions with at least one online host that can fit the node type now."""
        requirement = self.registry.get(node_type_id).requirement_vector()
        regions = set()
        for host in await self.store.list_hosts():
            if not host.is_online or host.region is None:
                continue
            if host.accepts_org(org_id) and self.ledger.fits(host.host_id, requirement):
                regions.add(host.region)
        return sorted(regions)

    async def resync_hosts(self, host_ids: Optional[Iterable[str]] = None) -> int:
        """
        Bring ledger entries up to date with the store.

        None syncs every host against one full snapshot (and drops hosts
        the store no longer has); otherwise only the named hosts.

        Returns:
            Number of hosts whose ledger entry changed
        """
        versions = self.ledger.host_versions()
        hosts = await self.store.list_hosts()

        if host_ids is None:
            nodes = await self.store.list_nodes()
            return self.ledger.refresh(hosts, nodes, versions)

        wanted = set(host_ids)
        changed = 0
        for host in hosts:
            if host.host_id not in wanted:
                continue
            nodes = await self.store.nodes_on_host(host.host_id)
            if self.ledger.sync_host(host, nodes, versions.get(host.host_id)):
                changed += 1
        return changed

    # =========================================================================
    # ALGORITHM
    # =========================================================================

    async def _place(self, node: Node, exclude: set, cancelled: asyncio.Event) -> PlacementResult:
        requirement = self.registry.get(node.node_type_id).requirement_vector()

        hosts = await self.store.list_hosts()
        eligible = {
            h.host_id: h
            for h in hosts
            if h.is_online
            and h.host_id not in exclude
            and h.accepts_org(node.org_id)
        }
        if not eligible:
            return self._infeasible(node, InfeasibleReason.INSUFFICIENT_CAPACITY, "no eligible hosts")

        fitting = self.ledger.hosts_with_capacity(requirement, eligible.keys())
        if len(fitting) < len(eligible):
            # Full or unknown here may be stale: other instances share the store
            await self.resync_hosts([h for h in eligible if h not in fitting])
            fitting = self.ledger.hosts_with_capacity(requirement, eligible.keys())
        if not fitting:
            return self._infeasible(
                node,
                InfeasibleReason.INSUFFICIENT_CAPACITY,
                f"no eligible host fits {requirement}",
            )

        siblings = await self.store.sibling_counts(node.group_key, exclude_node_id=node.node_id)
        if cancelled.is_set():
            return self._infeasible(node, InfeasibleReason.CANCELLED, "cancelled before reservation")

        candidates = [
            HostCandidate(
                host_id=host_id,
                siblings=siblings.get(host_id, 0),
                free_fractions=self.ledger.free_fractions(host_id, requirement.keys()),
                region=eligible[host_id].region,
            )
            for host_id in fitting
        ]
        ranked = rank_hosts(candidates, node.scheduler)
        if not ranked:
            return self._infeasible(
                node,
                InfeasibleReason.AFFINITY_UNSATISFIABLE,
                f"no capacity-eligible host in region {node.scheduler.region}",
            )

        logger.debug(f"Ranked hosts for node {node.node_id}: {ranked}")

        timed_out = False
        for host_id in ranked:
            if cancelled.is_set():
                return self._infeasible(node, InfeasibleReason.CANCELLED, "cancelled before reservation")

            try:
                reservation = await self.ledger.try_reserve(
                    host_id,
                    node.node_id,
                    requirement,
                    timeout=self.defaults.lock_timeout_sec,
                )
            except InsufficientCapacity:
                logger.debug(f"Host {host_id} filled up before reservation")
                continue
            except ReservationTimeout:
                timed_out = True
                continue
            except NotFound:
                logger.debug(f"Host {host_id} removed before reservation")
                continue

            if cancelled.is_set():
                self.ledger.release(reservation)
                return self._infeasible(node, InfeasibleReason.CANCELLED, "cancelled before commit")

            try:
                committed = await self.store.commit_placement(node, host_id, requirement)
            except Exception:
                self.ledger.release(reservation)
                raise

            if not committed:
                self.ledger.release(reservation)
                self.stats["commit_conflicts"] += 1
                current = await self.store.get_node(node.node_id)
                if current is None:
                    return self._infeasible(node, InfeasibleReason.CANCELLED, "node deleted")
                if current.version != node.version or current.host_id is not None:
                    return self._infeasible(node, InfeasibleReason.CANCELLED, "node changed concurrently")
                # The store refused on capacity: the ledger under-counts this host
                await self.resync_hosts([host_id])
                continue

            self.ledger.confirm(reservation)

            if cancelled.is_set():
                await self._undo_commit(node)
                return self._infeasible(node, InfeasibleReason.CANCELLED, "cancelled after commit")

            return HostAssignment(node_id=node.node_id, host_id=host_id, reserved=requirement)

        if timed_out:
            return self._infeasible(
                node,
                InfeasibleReason.LOCK_TIMEOUT,
                f"host lock wait exceeded {self.defaults.lock_timeout_sec}s",
            )
        return self._infeasible(node, InfeasibleReason.INSUFFICIENT_CAPACITY, "all candidates filled up")

    async def _undo_commit(self, node: Node) -> None:
        """Release and detach a placement that was cancelled after it committed."""
        self.ledger.release_node(node.node_id)
        node.detach()
        if not await self.store.update_node(node):
            logger.warning(f"Could not detach cancelled placement of node {node.node_id}")

    def _infeasible(self, node: Node, reason: InfeasibleReason, detail: str) -> Infeasible:
        return Infeasible(node_id=node.node_id, reason=reason, detail=detail)

    def _record(self, result: PlacementResult) -> None:
        if isinstance(result, HostAssignment):
            self.stats["placements"] += 1
            log_checkpoint("placement_decided", {"host_id": result.host_id, "reserved": result.reserved})
            logger.info(f"Placed node {result.node_id} on host {result.host_id}")
            return

        if result.reason == InfeasibleReason.CANCELLED:
            self.stats["cancelled"] += 1
        else:
            self.stats["infeasible"] += 1
        log_checkpoint("placement_infeasible", {"reason": result.reason.value, "detail": result.detail})
        logger.info(f"Node {result.node_id} not placed: {result.reason.value} ({result.detail})")


__all__ = ["PlacementScheduler"]
