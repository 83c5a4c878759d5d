# ============================================================================
# LIFECYCLE RECONCILER
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Node/validator state machines and host failover
# PURPOSE: Consume heartbeats, detect offline hosts, re-place lost nodes
# CREATED: 07 OCT 2026
# ============================================================================
"""
Lifecycle Reconciler

Drives nodes and validators through their state machines:

    provisioning -> syncing      host reports the node running
    syncing      -> upgrading    operator upgrade / newer target version
    syncing      -> synced       sync height reaches chain height
    upgrading    -> syncing      running version == target version
    synced       -> consensus    validator reports participation
    consensus    -> syncing      lag beyond sync_lag_tolerance
    any          -> stopped      operator stop, fatal error, host loss
    stopped      -> provisioning restart on a (re)assigned host

Two background loops (asyncio tasks sharing one stop event):
- sweep loop: hosts silent longer than heartbeat_timeout_sec go offline;
  their nodes are released, detached, stopped and queued for re-placement
- replacement loop: due queue entries are handed to the placement
  scheduler; failures back off exponentially

The queue is a local schedule over state the store already holds: every
stopped, unassigned node an operator did not stop is adopted into it
before each pass, so a restarted or newly promoted instance picks up
what a previous leader left behind, and a start accepted by a standby
is drained by the leader. Backoff attempts are not persisted.

Detection never waits on remediation: the sweep only enqueues.

Per node id, every state change runs under that node's lock, so
transitions for one node apply in arrival order. With a LockService,
only the instance holding the reconciler advisory lock runs the loops;
the others stand by and retry.

Usage:
    reconciler = LifecycleReconciler(store, ledger, scheduler)
    await reconciler.start()
    ...
    await reconciler.handle_heartbeat("host-a", telemetry=[...])
    ...
    await reconciler.stop()
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from core.config import ReconcilerDefaults, get_defaults
from core.contracts import InfeasibleReason, NodeStatus, OperatorCommand
from core.errors import ConcurrentModification, InvalidTransition, NotFound
from core.logging import log_context, log_checkpoint
from core.models import (
    Host,
    HostAssignment,
    Infeasible,
    Node,
    NodeStatusView,
    NodeTelemetry,
    ReplacementRequest,
)
from infrastructure.locking import KeyedLocks, LockService
from repositories.base import FleetStore
from scheduler.ledger import ResourceLedger
from scheduler.placement import PlacementScheduler

logger = logging.getLogger(__name__)

# Upper bound on chained transitions applied from one telemetry report
_MAX_TRANSITIONS_PER_REPORT = 6


class LifecycleReconciler:
    """
    Node lifecycle reconciler.

    Owns the re-placement queue (one entry per node) and the per-node
    locks that make status changes single-writer.
    """

    def __init__(
        self,
        store: FleetStore,
        ledger: ResourceLedger,
        scheduler: PlacementScheduler,
        defaults: Optional[ReconcilerDefaults] = None,
        lock_service: Optional[LockService] = None,
        node_locks: Optional[KeyedLocks] = None,
    ):
        """
        Initialize reconciler.

        Args:
            store: Fleet store (source of truth)
            ledger: Resource ledger shared with the scheduler
            scheduler: Placement scheduler used for re-placement
            defaults: Reconciler configuration
            lock_service: Optional advisory-lock leader election
            node_locks: Per-node locks shared with the fleet service
        """
        self.store = store
        self.ledger = ledger
        self.scheduler = scheduler
        self.defaults = defaults or get_defaults().reconciler
        self.lock_service = lock_service
        self.node_locks = node_locks or KeyedLocks("node")

        # node_id -> pending re-placement
        self._queue: Dict[str, ReplacementRequest] = {}

        # State
        self._running = False
        self._stop_event = asyncio.Event()
        self._is_leader = False

        # Background tasks
        self._sweep_task: Optional[asyncio.Task] = None
        self._replacement_task: Optional[asyncio.Task] = None
        self._standby_task: Optional[asyncio.Task] = None

        # Metrics
        self._started_at: Optional[datetime] = None
        self._cycles = 0
        self._heartbeats = 0
        self._transitions = 0
        self._hosts_marked_offline = 0
        self._replacements_succeeded = 0
        self._replacements_failed = 0
        self._errors = 0
        self._last_sweep_at: Optional[datetime] = None

    # =========================================================================
    # HEARTBEATS & TELEMETRY
    # =========================================================================

    async def handle_heartbeat(
        self,
        host_id: str,
        timestamp: Optional[datetime] = None,
        telemetry: Iterable[NodeTelemetry] = (),
    ) -> List[NodeStatusView]:
        """
        Record a host heartbeat and apply per-node telemetry.

        Telemetry for nodes that are unknown or not assigned to this host
        is logged and ignored.

        Raises:
            NotFound: unknown host

        Returns:
            Status of every node the telemetry was applied to
        """
        host = await self.store.get_host(host_id)
        if host is None:
            raise NotFound("host", host_id)

        was_offline = not host.is_online
        host.mark_online(timestamp)
        await self.store.update_host(host)
        self._heartbeats += 1

        if was_offline:
            logger.info(f"Host {host_id} is back online")
            log_checkpoint("host_online", {"host_id": host_id})

        views = []
        for report in telemetry:
            with log_context(host_id=host_id, node_id=report.node_id, component="reconciler"):
                view = await self._apply_report(host_id, report)
            if view is not None:
                views.append(view)
        return views

    async def _apply_report(self, host_id: str, report: NodeTelemetry) -> Optional[NodeStatusView]:
        async with self.node_locks.hold(report.node_id):
            node = await self.store.get_node(report.node_id)
            if node is None:
                logger.warning(f"Telemetry for unknown node {report.node_id} from host {host_id}")
                return None
            if node.host_id != host_id:
                logger.warning(
                    f"Telemetry for node {node.node_id} from host {host_id}, "
                    f"but node is assigned to {node.host_id} - ignored"
                )
                return None

            self.apply_telemetry(node, report)

            if not await self.store.update_node(node):
                raise ConcurrentModification("node", node.node_id)

            return NodeStatusView(
                node_id=node.node_id,
                status=node.status,
                stake_status=node.stake_status,
                host_id=node.host_id,
            )

    def apply_telemetry(self, node: Node, report: NodeTelemetry) -> List[NodeStatus]:
        """
        Fold one telemetry report into node (in memory).

        Applies chained transitions until the node is stable, then
        updates the consensus streak and derives stake status.

        Returns:
            Statuses entered, in order
        """
        if report.sync_height is not None:
            node.sync_height = report.sync_height
        if report.chain_height is not None:
            node.chain_height = report.chain_height
        if report.version is not None:
            node.running_version = report.version
        if node.validator is not None and report.score is not None:
            node.validator.score = report.score

        entered: List[NodeStatus] = []

        if report.fatal_error:
            logger.error(f"Node {node.node_id} reported fatal error: {report.fatal_error}")
            if self._transition(node, NodeStatus.STOPPED, f"fatal error: {report.fatal_error}"):
                entered.append(NodeStatus.STOPPED)
        elif node.status != NodeStatus.STOPPED:
            for _ in range(_MAX_TRANSITIONS_PER_REPORT):
                target = self._next_status(node, report)
                if target is None or target == node.status:
                    break
                self._transition(node, target, "telemetry")
                entered.append(target)

        if node.validator is not None:
            participating = node.status == NodeStatus.CONSENSUS and bool(report.consensus)
            node.validator.record_participation(participating)
            node.validator.derive_stake(
                node.status,
                report.observed_stake,
                self.defaults.staking_streak_threshold,
            )

        return entered

    def _next_status(self, node: Node, report: NodeTelemetry) -> Optional[NodeStatus]:
        status = node.status

        if status == NodeStatus.PROVISIONING:
            return NodeStatus.SYNCING if report.running else None

        if status == NodeStatus.SYNCING:
            if (
                node.target_version is not None
                and node.running_version is not None
                and node.running_version != node.target_version
            ):
                return NodeStatus.UPGRADING
            if node.sync_lag == 0:
                return NodeStatus.SYNCED
            return None

        if status == NodeStatus.UPGRADING:
            if node.target_version is None or node.running_version == node.target_version:
                return NodeStatus.SYNCING
            return None

        if status == NodeStatus.SYNCED:
            if node.validator is not None and report.consensus:
                return NodeStatus.CONSENSUS
            return None

        if status == NodeStatus.CONSENSUS:
            lag = node.sync_lag
            if lag is not None and lag > self.defaults.sync_lag_tolerance:
                return NodeStatus.SYNCING
            return None

        return None

    def _transition(self, node: Node, target: NodeStatus, cause: str) -> bool:
        previous = node.status
        changed = node.transition_to(target)
        if changed:
            self._transitions += 1
            log_checkpoint("node_transitioned", {
                "node_id": node.node_id,
                "from": previous.value,
                "to": target.value,
                "cause": cause,
            })
            logger.info(f"Node {node.node_id}: {previous.value} -> {target.value} ({cause})")
        return changed

    # =========================================================================
    # OFFLINE DETECTION
    # =========================================================================

    async def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """
        Mark hosts offline whose last heartbeat is older than the timeout.

        Returns:
            IDs of hosts marked offline by this sweep
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=self.defaults.heartbeat_timeout_sec)
        await self.scheduler.resync_hosts()

        offline = []
        for host in await self.store.list_hosts():
            if not host.is_online:
                continue
            last_seen = host.last_heartbeat_at or host.created_at
            if last_seen < cutoff:
                await self.mark_host_offline(host, now)
                offline.append(host.host_id)

        self._last_sweep_at = now
        return offline

    async def mark_host_offline(self, host: Host, now: Optional[datetime] = None) -> List[str]:
        """
        Take a host out of service.

        For each hosted node: release its reservation, detach it, stop it,
        derive stake, and queue a re-placement unless an operator stopped it.

        Returns:
            IDs of nodes queued for re-placement
        """
        now = now or datetime.utcnow()

        with log_context(host_id=host.host_id, component="reconciler"):
            host.mark_offline()
            await self.store.update_host(host)
            self._hosts_marked_offline += 1
            logger.warning(f"Host {host.host_id} missed its heartbeat window - offline")
            log_checkpoint("host_offline", {"host_id": host.host_id})

            queued = []
            for hosted in await self.store.nodes_on_host(host.host_id):
                async with self.node_locks.hold(hosted.node_id):
                    node = await self.store.get_node(hosted.node_id)
                    if node is None or node.host_id != host.host_id:
                        continue

                    self.ledger.release_node(node.node_id)
                    node.detach()
                    self._transition(node, NodeStatus.STOPPED, f"host {host.host_id} offline")
                    if node.validator is not None:
                        node.validator.derive_stake(
                            node.status, None, self.defaults.staking_streak_threshold
                        )

                    if not await self.store.update_node(node):
                        logger.error(f"Could not persist host-loss stop of node {node.node_id}")
                        continue

                    if node.stop_requested:
                        logger.info(f"Node {node.node_id} was operator-stopped; not re-placing")
                        continue

                    self.enqueue(node.node_id, exclude_host_id=host.host_id, due_at=now)
                    queued.append(node.node_id)

        return queued

    # =========================================================================
    # RE-PLACEMENT QUEUE
    # =========================================================================

    def enqueue(
        self,
        node_id: str,
        exclude_host_id: Optional[str] = None,
        due_at: Optional[datetime] = None,
    ) -> bool:
        """
        Queue a node for re-placement.

        Returns:
            False if the node was already queued (the entry is kept)
        """
        existing = self._queue.get(node_id)
        if existing is not None:
            if exclude_host_id is not None:
                existing.exclude_host_id = exclude_host_id
            return False

        self._queue[node_id] = ReplacementRequest(
            node_id=node_id,
            exclude_host_id=exclude_host_id,
            due_at=due_at or datetime.utcnow(),
        )
        logger.info(f"Queued node {node_id} for re-placement (excluding {exclude_host_id})")
        return True

    async def adopt_stranded(self, now: Optional[datetime] = None) -> List[str]:
        """
        Queue every stranded node from the store that is not queued yet.

        Returns:
            IDs of newly queued nodes
        """
        now = now or datetime.utcnow()
        adopted = []
        for node in await self.store.stranded_nodes():
            if node.node_id in self._queue or self.scheduler.is_inflight(node.node_id):
                continue
            self.enqueue(node.node_id, exclude_host_id=node.last_host_id, due_at=now)
            adopted.append(node.node_id)
        if adopted:
            logger.info(f"Adopted {len(adopted)} stranded node(s) from the store: {adopted}")
        return adopted

    def dequeue(self, node_id: str) -> bool:
        return self._queue.pop(node_id, None) is not None

    def pending_replacements(self) -> List[ReplacementRequest]:
        return sorted(self._queue.values(), key=lambda r: (r.due_at, r.node_id))

    async def process_replacements(self, now: Optional[datetime] = None) -> int:
        """
        Attempt every due re-placement once.

        Stranded nodes in the store are adopted into the queue first.

        Returns:
            Number of nodes placed
        """
        now = now or datetime.utcnow()
        await self.adopt_stranded(now)
        due = [r for r in self.pending_replacements() if r.due_at <= now]

        placed = 0
        for request in due:
            with log_context(node_id=request.node_id, component="reconciler"):
                if await self._replace(request, now):
                    placed += 1
        return placed

    async def _replace(self, request: ReplacementRequest, now: datetime) -> bool:
        async with self.node_locks.hold(request.node_id):
            node = await self.store.get_node(request.node_id)
            if node is None or node.host_id is not None or node.stop_requested:
                self.dequeue(request.node_id)
                return False
            if self.scheduler.is_inflight(node.node_id):
                return False

            exclude = set()
            if request.exclude_host_id is not None:
                lost = await self.store.get_host(request.exclude_host_id)
                if lost is not None and not lost.is_online:
                    exclude.add(lost.host_id)

            try:
                result = await self.scheduler.place(node, exclude_hosts=exclude)
            except NotFound as e:
                # Unknown node type: no host is eligible. The node stays
                # stranded in the store, so back off rather than drop it.
                logger.error(f"Re-placement of node {node.node_id} failed: {e}")
                result = Infeasible(
                    node_id=node.node_id,
                    reason=InfeasibleReason.AFFINITY_UNSATISFIABLE,
                    detail=str(e),
                )

        if isinstance(result, HostAssignment):
            self.dequeue(node.node_id)
            self._replacements_succeeded += 1
            logger.info(
                f"Re-placed node {node.node_id} on {result.host_id} "
                f"after {request.attempts + 1} attempt(s)"
            )
            return True

        request.attempts += 1
        request.last_reason = result.reason
        request.due_at = now + timedelta(seconds=self.defaults.backoff_for(request.attempts))
        self._replacements_failed += 1
        logger.info(
            f"Re-placement of node {node.node_id} failed ({result.reason.value}); "
            f"retry #{request.attempts + 1} at {request.due_at.isoformat()}"
        )
        return False

    # =========================================================================
    # OPERATOR COMMANDS
    # =========================================================================

    async def operator_command(
        self,
        node_id: str,
        command: OperatorCommand,
        target_version: Optional[str] = None,
    ) -> Node:
        """
        Apply an explicit operator command.

        stop:    node -> stopped, keeps its host and reservation
        start:   stopped node -> provisioning on its host, or queued for
                 placement if it has none
        upgrade: syncing node -> upgrading (target_version recorded)

        Raises:
            NotFound: unknown node
            InvalidTransition: command not valid in the node's status
            ConcurrentModification: lost an optimistic update
        """
        async with self.node_locks.hold(node_id):
            node = await self.store.get_node(node_id)
            if node is None:
                raise NotFound("node", node_id)

            with log_context(node_id=node_id, component="reconciler", operation=command.value):
                enqueue_now = False

                if command == OperatorCommand.STOP:
                    node.stop_requested = True
                    self._transition(node, NodeStatus.STOPPED, "operator stop")
                    self.dequeue(node_id)

                elif command == OperatorCommand.START:
                    if not node.can_transition_to(NodeStatus.PROVISIONING):
                        raise InvalidTransition(node_id, node.status.value, NodeStatus.PROVISIONING.value)
                    node.stop_requested = False
                    if node.status == NodeStatus.STOPPED:
                        if node.host_id is not None:
                            self._transition(node, NodeStatus.PROVISIONING, "operator start")
                        else:
                            enqueue_now = True

                elif command == OperatorCommand.UPGRADE:
                    if node.status != NodeStatus.SYNCING:
                        raise InvalidTransition(node_id, node.status.value, NodeStatus.UPGRADING.value)
                    if target_version is not None:
                        node.target_version = target_version
                    self._transition(node, NodeStatus.UPGRADING, "operator upgrade")

                if node.validator is not None:
                    node.validator.derive_stake(
                        node.status, None, self.defaults.staking_streak_threshold
                    )

                if not await self.store.update_node(node):
                    raise ConcurrentModification("node", node_id)

                if enqueue_now:
                    self.enqueue(node_id, exclude_host_id=node.last_host_id)

        return node

    # =========================================================================
    # CYCLE
    # =========================================================================

    async def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        One reconciliation cycle: sweep, then every due re-placement.

        Used by the background loops and directly by tests.
        """
        now = now or datetime.utcnow()
        offline = await self.sweep(now)
        placed = await self.process_replacements(now)
        self._cycles += 1
        return {
            "hosts_offline": offline,
            "replaced": placed,
            "pending": len(self._queue),
        }

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """
        Start the background loops.

        With a LockService, only the advisory-lock holder runs them;
        other instances retry every standby_retry_sec.
        """
        if self._running:
            logger.warning("Reconciler already running")
            return

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._stop_event.clear()

        if self.lock_service is None or await self.lock_service.try_acquire_reconciler_lock():
            self._start_as_leader()
        else:
            logger.info(
                f"Reconciler entering standby mode "
                f"(retry_interval={self.defaults.standby_retry_sec}s)"
            )
            self._standby_task = asyncio.create_task(self._standby_loop(), name="reconciler-standby")

    def _start_as_leader(self) -> None:
        self._is_leader = True
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="reconciler-sweep")
        self._replacement_task = asyncio.create_task(self._replacement_loop(), name="reconciler-replacement")
        logger.info(
            f"Reconciler started as LEADER (sweep={self.defaults.sweep_interval_sec}s, "
            f"heartbeat_timeout={self.defaults.heartbeat_timeout_sec}s)"
        )

    async def _standby_loop(self) -> None:
        while self._running and not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.defaults.standby_retry_sec,
                )
                break
            except asyncio.TimeoutError:
                pass

            try:
                if await self.lock_service.try_acquire_reconciler_lock():
                    logger.info("Reconciler standby promoted to LEADER")
                    self._start_as_leader()
                    return
            except Exception as e:
                self._errors += 1
                logger.error(f"Reconciler standby error: {e}")

    async def _sweep_loop(self) -> None:
        logger.info("Starting sweep loop")
        while self._running and not self._stop_event.is_set():
            try:
                await self.sweep()
                self._cycles += 1
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._errors += 1
                logger.exception(f"Error in sweep cycle: {e}")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.defaults.sweep_interval_sec,
                )
                break
            except asyncio.TimeoutError:
                pass
        logger.info("Sweep loop stopped")

    async def _replacement_loop(self) -> None:
        logger.info("Starting replacement loop")
        while self._running and not self._stop_event.is_set():
            try:
                await self.process_replacements()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._errors += 1
                logger.exception(f"Error in replacement cycle: {e}")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.defaults.replacement_poll_interval_sec,
                )
                break
            except asyncio.TimeoutError:
                pass
        logger.info("Replacement loop stopped")

    async def stop(self) -> None:
        """Stop the loops and release leadership."""
        logger.info("Stopping reconciler")
        self._running = False
        self._stop_event.set()

        for task in (self._sweep_task, self._replacement_task, self._standby_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._sweep_task = None
        self._replacement_task = None
        self._standby_task = None

        was_leader = self._is_leader
        self._is_leader = False
        if was_leader and self.lock_service is not None:
            await self.lock_service.release_reconciler_lock()

        logger.info(
            f"Reconciler stopped (was_leader={was_leader}, cycles={self._cycles}, "
            f"hosts_marked_offline={self._hosts_marked_offline}, "
            f"replacements={self._replacements_succeeded})"
        )

    # =========================================================================
    # STATS AND PROPERTIES
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_leader(self) -> bool:
        return self._is_leader

    @property
    def stats(self) -> Dict[str, Any]:
        """Get reconciler statistics."""
        uptime_seconds = None
        if self._started_at:
            uptime_seconds = (datetime.now(timezone.utc) - self._started_at).total_seconds()

        return {
            "running": self._running,
            "is_leader": self._is_leader,
            "role": "leader" if self._is_leader else "standby",
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "uptime_seconds": uptime_seconds,
            "cycles": self._cycles,
            "heartbeats": self._heartbeats,
            "transitions": self._transitions,
            "hosts_marked_offline": self._hosts_marked_offline,
            "replacements_succeeded": self._replacements_succeeded,
            "replacements_failed": self._replacements_failed,
            "pending_replacements": len(self._queue),
            "errors": self._errors,
            "last_sweep_at": self._last_sweep_at.isoformat() if self._last_sweep_at else None,
        }


__all__ = ["LifecycleReconciler"]
