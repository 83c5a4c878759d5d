# ============================================================================
# RESOURCE LEDGER
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Scheduler - Per-host capacity accounting
# PURPOSE: Atomic reserve / idempotent release against host capacity
# CREATED: 05 OCT 2026
# ============================================================================
"""
Resource Ledger

Tracks capacity and committed allocation per host. The ledger is a
materialized index over Node -> Host assignments, never the source of
truth: rebuild() recomputes it from the store.

Invariants:
- used[h][k] <= capacity[h][k] for every host h and resource k
- try_reserve and release are the only local mutators of used;
  sync_host/refresh apply what other instances committed
- a node holds at most one reservation
- release of an unknown or already released reservation is a no-op

try_reserve runs its check-and-commit under the host's asyncio.Lock;
the wait for that lock is bounded and raises ReservationTimeout.

Several instances may share one store, so a ledger drifts: placements,
deletes and failover releases made elsewhere never pass through it.
sync_host() re-derives one host from the store's nodes. A reservation
is "pending" from try_reserve until confirm() (store commit done) and
survives a sync, since the store cannot show it yet. Syncs are
optimistic: the caller reads host_versions() before querying the store,
and a host touched locally since then is left alone.

Usage:
    ledger = ResourceLedger()
    ledger.register_host("host-a", {"cpu": 8, "memory": 32})

    reservation = await ledger.try_reserve("host-a", "node-1", {"cpu": 2}, timeout=5.0)
    ledger.release(reservation)
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from core.errors import InsufficientCapacity, NotFound, ReservationTimeout
from core.models import Host, Node, Reservation, HostUtilization, resource_key_order
from infrastructure.locking import KeyedLocks

logger = logging.getLogger(__name__)


class ResourceLedger:
    """In-memory per-host capacity ledger."""

    def __init__(self):
        self._capacity: Dict[str, Dict[str, int]] = {}
        self._used: Dict[str, Dict[str, int]] = {}
        self._reservations: Dict[str, Reservation] = {}
        self._by_node: Dict[str, str] = {}
        self._locks = KeyedLocks("host")

        # reservation ids taken but not yet committed to the store
        self._pending: Set[str] = set()

        # host_id -> sequence number of its last local change
        self._seq = 0
        self._host_version: Dict[str, int] = {}

        self.stats = {
            "reservations": 0,
            "releases": 0,
            "stale_releases": 0,
            "insufficient": 0,
            "lock_timeouts": 0,
            "resyncs": 0,
        }

    def _touch(self, host_id: str) -> None:
        self._seq += 1
        self._host_version[host_id] = self._seq

    # =========================================================================
    # HOSTS
    # =========================================================================

    def register_host(self, host_id: str, capacity: Dict[str, int]) -> None:
        """Add a host, or replace the capacity of a known one."""
        if host_id in self._capacity:
            self.update_capacity(host_id, capacity)
            return
        self._capacity[host_id] = dict(capacity)
        self._used[host_id] = {}
        self._touch(host_id)
        logger.info(f"Ledger registered host {host_id} capacity={capacity}")

    def update_capacity(self, host_id: str, capacity: Dict[str, int]) -> None:
        """
        Replace a host's capacity vector.

        Raises:
            NotFound: unknown host
            ValueError: new capacity is below what is already reserved
        """
        self._require_host(host_id)
        used = self._used[host_id]
        for key, amount in used.items():
            if amount > capacity.get(key, 0):
                raise ValueError(
                    f"Host {host_id}: capacity[{key}]={capacity.get(key, 0)} "
                    f"is below reserved {amount}"
                )
        self._capacity[host_id] = dict(capacity)
        self._touch(host_id)

    def remove_host(self, host_id: str) -> None:
        """
        Forget a host.

        Raises:
            ValueError: the host still holds reservations
        """
        self._require_host(host_id)
        held = [r.node_id for r in self._reservations.values() if r.host_id == host_id]
        if held:
            raise ValueError(f"Host {host_id} still holds reservations for {sorted(held)}")
        self._forget_host(host_id)
        logger.info(f"Ledger removed host {host_id}")

    def _forget_host(self, host_id: str) -> None:
        del self._capacity[host_id]
        del self._used[host_id]
        self._host_version.pop(host_id, None)
        self._locks.discard(host_id)

    def has_host(self, host_id: str) -> bool:
        return host_id in self._capacity

    def host_ids(self) -> List[str]:
        return sorted(self._capacity)

    def capacity(self, host_id: str) -> Dict[str, int]:
        self._require_host(host_id)
        return dict(self._capacity[host_id])

    def used(self, host_id: str) -> Dict[str, int]:
        self._require_host(host_id)
        return dict(self._used[host_id])

    def free(self, host_id: str) -> Dict[str, int]:
        """Free amount per resource key the host declares."""
        self._require_host(host_id)
        used = self._used[host_id]
        return {k: cap - used.get(k, 0) for k, cap in self._capacity[host_id].items()}

    # =========================================================================
    # QUERIES
    # =========================================================================

    def fits(self, host_id: str, requirement: Dict[str, int]) -> bool:
        """
        Cheap, unlocked check whether requirement fits host_id right now.

        Unknown hosts never fit.
        """
        capacity = self._capacity.get(host_id)
        if capacity is None:
            return False
        used = self._used[host_id]
        for key, amount in requirement.items():
            if used.get(key, 0) + amount > capacity.get(key, 0):
                return False
        return True

    def hosts_with_capacity(
        self,
        requirement: Dict[str, int],
        host_ids: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """Hosts (optionally limited to host_ids) that fit requirement."""
        candidates = self._capacity.keys() if host_ids is None else host_ids
        return sorted(h for h in candidates if self.fits(h, requirement))

    def utilization(self, host_id: str) -> Dict[str, float]:
        """Used fraction per resource key. Zero-capacity keys count as full."""
        self._require_host(host_id)
        used = self._used[host_id]
        result = {}
        for key, cap in self._capacity[host_id].items():
            if cap <= 0:
                result[key] = 1.0
            else:
                result[key] = used.get(key, 0) / cap
        return result

    def free_fractions(self, host_id: str, keys: Iterable[str]) -> List[float]:
        """
        Free fraction for each key, in resource priority order.

        This is the sort key the affinity evaluator compares
        lexicographically.
        """
        self._require_host(host_id)
        capacity = self._capacity[host_id]
        used = self._used[host_id]
        fractions = []
        for key in resource_key_order(keys):
            cap = capacity.get(key, 0)
            fractions.append((cap - used.get(key, 0)) / cap if cap > 0 else 0.0)
        return fractions

    def reservation_for(self, node_id: str) -> Optional[Reservation]:
        reservation_id = self._by_node.get(node_id)
        if reservation_id is None:
            return None
        return self._reservations[reservation_id].model_copy()

    def host_versions(self) -> Dict[str, int]:
        """Current version of every host; pass back to sync_host/refresh."""
        return dict(self._host_version)

    def snapshot(self) -> List[HostUtilization]:
        """Per-host capacity, used, free and utilization."""
        node_counts: Dict[str, int] = {}
        for reservation in self._reservations.values():
            node_counts[reservation.host_id] = node_counts.get(reservation.host_id, 0) + 1

        return [
            HostUtilization(
                host_id=host_id,
                capacity=self.capacity(host_id),
                used=self.used(host_id),
                free=self.free(host_id),
                utilization=self.utilization(host_id),
                node_count=node_counts.get(host_id, 0),
            )
            for host_id in self.host_ids()
        ]

    # =========================================================================
    # MUTATORS
    # =========================================================================

    def host_lock(self, host_id: str, timeout: Optional[float] = None):
        """The host's reservation lock, as an async context manager."""
        return self._locks.hold(host_id, timeout=timeout)

    async def try_reserve(
        self,
        host_id: str,
        node_id: str,
        requirement: Dict[str, int],
        timeout: Optional[float] = None,
    ) -> Reservation:
        """
        Atomically check and commit requirement on host_id for node_id.

        Raises:
            NotFound: unknown host
            InsufficientCapacity: requirement does not fit
            ReservationTimeout: waiting for the host lock exceeded timeout
            ValueError: node already holds a reservation on another host
        """
        self._require_host(host_id)

        try:
            async with self._locks.hold(host_id, timeout=timeout):
                return self._commit(host_id, node_id, requirement)
        except asyncio.TimeoutError:
            self.stats["lock_timeouts"] += 1
            logger.warning(f"Reservation for node {node_id} timed out on host {host_id} lock")
            raise ReservationTimeout(host_id, timeout)

    def _commit(self, host_id: str, node_id: str, requirement: Dict[str, int]) -> Reservation:
        # Host may have been removed while we waited
        self._require_host(host_id)

        existing_id = self._by_node.get(node_id)
        if existing_id is not None:
            existing = self._reservations[existing_id]
            if existing.host_id == host_id and existing.resources == requirement:
                return existing.model_copy()
            raise ValueError(
                f"Node {node_id} already holds reservation {existing_id} on {existing.host_id}"
            )

        if not self.fits(host_id, requirement):
            self.stats["insufficient"] += 1
            raise InsufficientCapacity(host_id, requirement, self.free(host_id))

        reservation = Reservation(node_id=node_id, host_id=host_id, resources=dict(requirement))
        self._apply(reservation)
        self._pending.add(reservation.reservation_id)
        self.stats["reservations"] += 1
        logger.debug(f"Reserved {requirement} on {host_id} for node {node_id}")
        return reservation.model_copy()

    def _apply(self, reservation: Reservation) -> None:
        used = self._used[reservation.host_id]
        for key, amount in reservation.resources.items():
            used[key] = used.get(key, 0) + amount
        self._reservations[reservation.reservation_id] = reservation
        self._by_node[reservation.node_id] = reservation.reservation_id
        self._touch(reservation.host_id)

    def _drop(self, held: Reservation) -> None:
        del self._reservations[held.reservation_id]
        self._pending.discard(held.reservation_id)
        if self._by_node.get(held.node_id) == held.reservation_id:
            del self._by_node[held.node_id]

        used = self._used.get(held.host_id)
        if used is not None:
            for key, amount in held.resources.items():
                remaining = used.get(key, 0) - amount
                if remaining > 0:
                    used[key] = remaining
                else:
                    used.pop(key, None)
            self._touch(held.host_id)

    def confirm(self, reservation: Reservation) -> bool:
        """
        Mark a reservation as committed to the store.

        Returns:
            False if the reservation is no longer held
        """
        if reservation.reservation_id not in self._reservations:
            return False
        self._pending.discard(reservation.reservation_id)
        self._touch(reservation.host_id)
        return True

    def release(self, reservation: Reservation) -> bool:
        """
        Return a reservation's resources to its host.

        Idempotent: an unknown or already released reservation is a
        logged no-op.

        Returns:
            True if resources were returned, False for a stale release
        """
        held = self._reservations.get(reservation.reservation_id)
        if held is None:
            self.stats["stale_releases"] += 1
            logger.warning(
                f"Stale reservation {reservation.reservation_id} "
                f"(node {reservation.node_id}, host {reservation.host_id}) - ignored"
            )
            return False

        self._drop(held)
        self.stats["releases"] += 1
        logger.debug(f"Released {held.resources} on {held.host_id} for node {held.node_id}")
        return True

    def release_node(self, node_id: str) -> bool:
        """Release whatever node_id holds. No-op if it holds nothing."""
        reservation_id = self._by_node.get(node_id)
        if reservation_id is None:
            return False
        return self.release(self._reservations[reservation_id])

    # =========================================================================
    # REBUILD
    # =========================================================================

    def rebuild(self, hosts: Iterable[Host], nodes: Iterable[Node]) -> int:
        """
        Recompute the ledger from the source of truth.

        Every node with a host_id and a reserved vector contributes one
        reservation. Returns the number of reservations rebuilt.
        """
        self._capacity.clear()
        self._used.clear()
        self._reservations.clear()
        self._by_node.clear()
        self._pending.clear()
        self._host_version.clear()

        for host in hosts:
            self._capacity[host.host_id] = dict(host.capacity)
            self._used[host.host_id] = {}
            self._touch(host.host_id)

        count = 0
        for node in nodes:
            if node.host_id is None:
                continue
            if node.host_id not in self._capacity:
                logger.error(f"Node {node.node_id} references unknown host {node.host_id}")
                continue
            if not self.fits(node.host_id, node.reserved):
                logger.error(
                    f"Host {node.host_id} overcommitted while rebuilding "
                    f"(node {node.node_id} reserved={node.reserved})"
                )
            self._apply(Reservation(
                node_id=node.node_id,
                host_id=node.host_id,
                resources=dict(node.reserved),
                created_at=node.placed_at or datetime.utcnow(),
            ))
            count += 1

        logger.info(f"Ledger rebuilt: {len(self._capacity)} hosts, {count} reservations")
        return count

    def sync_host(
        self,
        host: Host,
        nodes: Iterable[Node],
        expected_version: Optional[int] = None,
    ) -> bool:
        """
        Re-derive one host's committed reservations from the store.

        nodes are the store's nodes on the host. Pending reservations are
        kept. With expected_version, the sync is skipped if the host has
        changed locally since that version was read.

        Returns:
            True if the host's entry changed
        """
        host_id = host.host_id
        if expected_version is not None and self._host_version.get(host_id) != expected_version:
            logger.debug(f"Ledger sync of host {host_id} skipped: changed locally")
            return False

        changed = False
        if host_id not in self._capacity:
            self._capacity[host_id] = {}
            self._used[host_id] = {}
            self._touch(host_id)
            changed = True
        if self._capacity[host_id] != host.capacity:
            self._capacity[host_id] = dict(host.capacity)
            self._touch(host_id)
            changed = True

        desired = {n.node_id: dict(n.reserved) for n in nodes if n.host_id == host_id}

        held = [r for r in self._reservations.values() if r.host_id == host_id]
        for reservation in held:
            if reservation.reservation_id in self._pending:
                continue
            if desired.get(reservation.node_id) != reservation.resources:
                self._drop(reservation)
                changed = True

        for node_id, resources in desired.items():
            current_id = self._by_node.get(node_id)
            if current_id is not None:
                current = self._reservations[current_id]
                if current.host_id == host_id and current.resources == resources:
                    # committed by this instance or already known
                    self._pending.discard(current_id)
                    continue
                self._drop(current)
            self._apply(Reservation(node_id=node_id, host_id=host_id, resources=resources))
            changed = True

        if changed:
            self.stats["resyncs"] += 1
            capacity = self._capacity[host_id]
            if any(amount > capacity.get(key, 0) for key, amount in self._used[host_id].items()):
                logger.error(f"Host {host_id} overcommitted after sync (used={self._used[host_id]})")
            logger.info(
                f"Ledger resynced host {host_id} from store: used={self._used[host_id]}, "
                f"{len(desired)} committed node(s)"
            )
        return changed

    def refresh(
        self,
        hosts: Iterable[Host],
        nodes: Iterable[Node],
        versions: Optional[Dict[str, int]] = None,
    ) -> int:
        """
        Sync every host against a full store snapshot.

        versions is host_versions() read before the snapshot. Hosts the
        store no longer has are dropped unless they changed locally or
        hold pending reservations.

        Returns:
            Number of hosts whose entry changed
        """
        versions = versions or {}
        by_host: Dict[str, List[Node]] = {}
        for node in nodes:
            if node.host_id is not None:
                by_host.setdefault(node.host_id, []).append(node)

        changed = 0
        present = set()
        for host in hosts:
            present.add(host.host_id)
            if self.sync_host(host, by_host.get(host.host_id, []), versions.get(host.host_id)):
                changed += 1

        for host_id in [h for h in self._capacity if h not in present]:
            if versions.get(host_id) != self._host_version.get(host_id):
                continue
            held = [r for r in self._reservations.values() if r.host_id == host_id]
            if any(r.reservation_id in self._pending for r in held):
                continue
            for reservation in held:
                self._drop(reservation)
            self._forget_host(host_id)
            logger.info(f"Ledger dropped host {host_id}: removed from store")
            changed += 1

        return changed

    def _require_host(self, host_id: str) -> None:
        if host_id not in self._capacity:
            raise NotFound("host", host_id)


__all__ = ["ResourceLedger"]
