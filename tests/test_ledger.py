# ============================================================================
# RESOURCE LEDGER TESTS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Tests - Capacity accounting
# PURPOSE: Verify reserve/release, capacity bounds, lock timeout, rebuild
# CREATED: 11 OCT 2026
# ============================================================================
"""
Resource Ledger Tests

Covers:
1. try_reserve fits / does not fit / unknown host
2. Idempotent and stale release
3. Lock wait bounded by timeout -> ReservationTimeout
4. Concurrent reservations never overcommit (property test)
5. rebuild() from hosts and nodes
6. sync_host/refresh against the store (pending kept, local changes win)

Run with:
    pytest tests/test_ledger.py -v
"""

import asyncio
import logging
import pytest

from hypothesis import given, settings, strategies as st

from core.errors import InsufficientCapacity, NotFound, ReservationTimeout
from core.models import Host, Node, Reservation
from scheduler.ledger import ResourceLedger


def _ledger(**hosts):
    ledger = ResourceLedger()
    for host_id, capacity in hosts.items():
        ledger.register_host(host_id, capacity)
    return ledger


# ============================================================================
# RESERVE
# ============================================================================

class TestReserve:
    """try_reserve check-and-commit."""

    def test_reserve_reduces_free(self):
        ledger = _ledger(h1={"cpu": 8, "memory": 32})
        reservation = asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 2, "memory": 4}))

        assert reservation.host_id == "h1"
        assert ledger.used("h1") == {"cpu": 2, "memory": 4}
        assert ledger.free("h1") == {"cpu": 6, "memory": 28}

    def test_reserve_exact_fit(self):
        ledger = _ledger(h1={"cpu": 2})
        asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 2}))
        assert ledger.free("h1") == {"cpu": 0}

    def test_insufficient_capacity_leaves_ledger_unchanged(self):
        ledger = _ledger(h1={"cpu": 2})
        with pytest.raises(InsufficientCapacity):
            asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 3}))
        assert ledger.used("h1") == {}
        assert ledger.stats["insufficient"] == 1

    def test_missing_resource_key_counts_as_zero_capacity(self):
        ledger = _ledger(h1={"cpu": 8})
        with pytest.raises(InsufficientCapacity):
            asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 1, "ips": 1}))

    def test_unknown_host(self):
        ledger = _ledger()
        with pytest.raises(NotFound):
            asyncio.run(ledger.try_reserve("ghost", "n1", {"cpu": 1}))

    def test_reserve_is_idempotent_for_same_host(self):
        ledger = _ledger(h1={"cpu": 8})

        async def run():
            first = await ledger.try_reserve("h1", "n1", {"cpu": 2})
            second = await ledger.try_reserve("h1", "n1", {"cpu": 2})
            return first, second

        first, second = asyncio.run(run())
        assert first.reservation_id == second.reservation_id
        assert ledger.used("h1") == {"cpu": 2}

    def test_node_cannot_hold_two_hosts(self):
        ledger = _ledger(h1={"cpu": 8}, h2={"cpu": 8})

        async def run():
            await ledger.try_reserve("h1", "n1", {"cpu": 2})
            await ledger.try_reserve("h2", "n1", {"cpu": 2})

        with pytest.raises(ValueError):
            asyncio.run(run())

    def test_lock_wait_times_out(self):
        ledger = _ledger(h1={"cpu": 8})

        async def run():
            async with ledger.host_lock("h1"):
                await ledger.try_reserve("h1", "n1", {"cpu": 1}, timeout=0.05)

        with pytest.raises(ReservationTimeout) as exc_info:
            asyncio.run(run())
        assert exc_info.value.host_id == "h1"
        assert ledger.used("h1") == {}
        assert ledger.stats["lock_timeouts"] == 1


# ============================================================================
# RELEASE
# ============================================================================

class TestRelease:
    """Release is idempotent; stale releases are no-ops."""

    def test_reserve_then_release_restores_free(self):
        ledger = _ledger(h1={"cpu": 8, "memory": 32})
        before = ledger.free("h1")

        reservation = asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 3, "memory": 5}))
        assert ledger.release(reservation) is True

        assert ledger.free("h1") == before
        assert ledger.reservation_for("n1") is None

    def test_double_release_is_noop(self):
        ledger = _ledger(h1={"cpu": 8})
        reservation = asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 3}))

        assert ledger.release(reservation) is True
        assert ledger.release(reservation) is False
        assert ledger.free("h1") == {"cpu": 8}
        assert ledger.stats["stale_releases"] == 1

    def test_release_of_unknown_reservation(self):
        ledger = _ledger(h1={"cpu": 8})
        stray = Reservation(node_id="n9", host_id="h1", resources={"cpu": 4})
        assert ledger.release(stray) is False
        assert ledger.free("h1") == {"cpu": 8}

    def test_stale_release_logs_warning(self, caplog):
        ledger = _ledger(h1={"cpu": 8})
        stray = Reservation(node_id="n9", host_id="h1", resources={"cpu": 4})

        with caplog.at_level(logging.WARNING, logger="scheduler.ledger"):
            ledger.release(stray)

        [record] = [r for r in caplog.records if r.name == "scheduler.ledger"]
        assert record.levelno == logging.WARNING
        assert stray.reservation_id in record.getMessage()

    def test_release_node(self):
        ledger = _ledger(h1={"cpu": 8})
        asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 3}))
        assert ledger.release_node("n1") is True
        assert ledger.release_node("n1") is False


# ============================================================================
# HOSTS
# ============================================================================

class TestHostManagement:

    def test_cannot_remove_host_with_reservations(self):
        ledger = _ledger(h1={"cpu": 8})
        asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 1}))
        with pytest.raises(ValueError):
            ledger.remove_host("h1")

    def test_cannot_shrink_below_reserved(self):
        ledger = _ledger(h1={"cpu": 8})
        asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 6}))
        with pytest.raises(ValueError):
            ledger.update_capacity("h1", {"cpu": 4})
        ledger.update_capacity("h1", {"cpu": 6})
        assert ledger.free("h1") == {"cpu": 0}

    def test_utilization_and_snapshot(self):
        ledger = _ledger(h1={"cpu": 8, "memory": 0})
        asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 2}))

        util = ledger.utilization("h1")
        assert util["cpu"] == pytest.approx(0.25)
        assert util["memory"] == 1.0

        [row] = ledger.snapshot()
        assert row.host_id == "h1"
        assert row.node_count == 1
        assert row.free["cpu"] == 6


# ============================================================================
# REBUILD
# ============================================================================

class TestRebuild:

    def test_rebuild_from_store_state(self):
        hosts = [
            Host(host_id="h1", name="h1", capacity={"cpu": 8}),
            Host(host_id="h2", name="h2", capacity={"cpu": 4}),
        ]
        nodes = [
            Node(node_id="n1", node_type_id="t", host_id="h1", reserved={"cpu": 2}),
            Node(node_id="n2", node_type_id="t", host_id="h1", reserved={"cpu": 3}),
            Node(node_id="n3", node_type_id="t"),
        ]
        ledger = _ledger(old={"cpu": 1})

        count = ledger.rebuild(hosts, nodes)

        assert count == 2
        assert ledger.host_ids() == ["h1", "h2"]
        assert ledger.used("h1") == {"cpu": 5}
        assert ledger.free("h2") == {"cpu": 4}
        assert ledger.reservation_for("n1").host_id == "h1"


# ============================================================================
# SYNC WITH THE STORE
# ============================================================================

class TestSync:
    """Other instances change the store; sync_host/refresh catch up."""

    def test_sync_drops_reservation_deleted_elsewhere(self):
        ledger = _ledger(h1={"cpu": 4})
        reservation = asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 4}))
        ledger.confirm(reservation)

        changed = ledger.sync_host(Host(host_id="h1", name="h1", capacity={"cpu": 4}), [])

        assert changed is True
        assert ledger.used("h1") == {}
        assert ledger.reservation_for("n1") is None
        assert ledger.stats["resyncs"] == 1

    def test_sync_adds_placement_made_elsewhere(self):
        ledger = _ledger(h1={"cpu": 8})
        host = Host(host_id="h1", name="h1", capacity={"cpu": 8})
        nodes = [Node(node_id="n2", node_type_id="t", host_id="h1", reserved={"cpu": 3})]

        assert ledger.sync_host(host, nodes) is True
        assert ledger.sync_host(host, nodes) is False

        assert ledger.used("h1") == {"cpu": 3}
        assert ledger.reservation_for("n2").host_id == "h1"

    def test_pending_reservation_survives_sync(self):
        ledger = _ledger(h1={"cpu": 8})
        asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 2}))

        ledger.sync_host(Host(host_id="h1", name="h1", capacity={"cpu": 8}), [])

        assert ledger.used("h1") == {"cpu": 2}
        assert ledger.reservation_for("n1") is not None

    def test_confirmed_reservation_matches_store_row(self):
        ledger = _ledger(h1={"cpu": 8})
        reservation = asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 2}))
        assert ledger.confirm(reservation) is True

        nodes = [Node(node_id="n1", node_type_id="t", host_id="h1", reserved={"cpu": 2})]
        changed = ledger.sync_host(Host(host_id="h1", name="h1", capacity={"cpu": 8}), nodes)

        assert changed is False
        assert ledger.reservation_for("n1").reservation_id == reservation.reservation_id

    def test_confirm_after_release(self):
        ledger = _ledger(h1={"cpu": 8})
        reservation = asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 2}))
        ledger.release(reservation)
        assert ledger.confirm(reservation) is False

    def test_sync_skipped_after_local_change(self):
        ledger = _ledger(h1={"cpu": 8})
        versions = ledger.host_versions()

        # store snapshot read now, then a local reservation lands
        snapshot = []
        reservation = asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 2}))
        ledger.confirm(reservation)

        changed = ledger.sync_host(
            Host(host_id="h1", name="h1", capacity={"cpu": 8}), snapshot, versions["h1"]
        )

        assert changed is False
        assert ledger.used("h1") == {"cpu": 2}

    def test_sync_registers_unknown_host(self):
        ledger = ResourceLedger()
        ledger.sync_host(Host(host_id="h1", name="h1", capacity={"cpu": 8}), [])
        assert ledger.free("h1") == {"cpu": 8}

    def test_refresh_drops_hosts_removed_from_store(self):
        ledger = _ledger(h1={"cpu": 8}, h2={"cpu": 8})
        reservation = asyncio.run(ledger.try_reserve("h2", "n1", {"cpu": 2}))
        ledger.confirm(reservation)
        versions = ledger.host_versions()

        changed = ledger.refresh([Host(host_id="h1", name="h1", capacity={"cpu": 8})], [], versions)

        assert changed == 1
        assert ledger.host_ids() == ["h1"]
        assert ledger.reservation_for("n1") is None

    def test_refresh_keeps_host_with_pending_reservation(self):
        ledger = _ledger(h1={"cpu": 8})
        asyncio.run(ledger.try_reserve("h1", "n1", {"cpu": 2}))

        ledger.refresh([], [], ledger.host_versions())

        assert ledger.host_ids() == ["h1"]


# ============================================================================
# PROPERTY: NO OVERCOMMIT UNDER CONCURRENCY
# ============================================================================

@settings(max_examples=50, deadline=None)
@given(
    capacity=st.integers(min_value=0, max_value=20),
    demands=st.lists(st.integers(min_value=0, max_value=6), min_size=1, max_size=15),
    releases=st.lists(st.booleans(), max_size=15),
)
def test_concurrent_reservations_never_exceed_capacity(capacity, demands, releases):
    """Whatever the interleaving, used never exceeds capacity."""
    ledger = _ledger(h1={"cpu": capacity})

    async def reserve(i, amount):
        try:
            reservation = await ledger.try_reserve("h1", f"n{i}", {"cpu": amount})
        except InsufficientCapacity:
            return None
        await asyncio.sleep(0)
        if i < len(releases) and releases[i]:
            ledger.release(reservation)
        return reservation

    async def run():
        return await asyncio.gather(*(reserve(i, d) for i, d in enumerate(demands)))

    results = asyncio.run(run())

    used = ledger.used("h1").get("cpu", 0)
    assert 0 <= used <= capacity
    held = sum(
        r.resources["cpu"]
        for i, r in enumerate(results)
        if r is not None and not (i < len(releases) and releases[i])
    )
    assert used == held
