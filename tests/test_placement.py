# ============================================================================
# PLACEMENT SCHEDULER TESTS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Tests - Host selection
# PURPOSE: Verify placement outcomes, races, cancellation and lock timeout
# CREATED: 12 OCT 2026
# ============================================================================
"""
Placement Scheduler Tests

Covers:
1. Spread and cluster policies across a small fleet
2. Infeasible reasons (capacity, region, lock timeout, cancelled)
3. Eligibility: offline, excluded and private hosts
4. Concurrent placements racing for one slot
5. Commit conflicts against a concurrently modified node
6. Two service instances sharing one store

All scenarios run against the in-memory store through FleetService.build,
one asyncio.run per test.

Run with:
    pytest tests/test_placement.py -v
"""

import asyncio
import pytest

from core.config import Defaults, SchedulerDefaults
from core.contracts import HostType, InfeasibleReason, OperatorCommand, ResourceAffinity, SimilarityAffinity
from core.errors import NotFound
from core.models import (
    Host,
    HostAssignment,
    Infeasible,
    NodeType,
    ResourceRequirement,
    SchedulerPolicy,
)
from repositories import InMemoryFleetStore
from services.fleet_service import FleetService


SMALL = NodeType(
    type_id="small",
    name="Small Node",
    requirements=[
        ResourceRequirement(key="cpu", quantity=2),
        ResourceRequirement(key="memory", quantity=4),
    ],
)

SPREAD = SchedulerPolicy(similarity=SimilarityAffinity.SPREAD)
CLUSTER = SchedulerPolicy(similarity=SimilarityAffinity.CLUSTER)


async def _fleet(tmp_path, hosts, lock_timeout_sec=5.0):
    defaults = Defaults(scheduler=SchedulerDefaults(lock_timeout_sec=lock_timeout_sec))
    service = FleetService.build(InMemoryFleetStore(), node_types_dir=str(tmp_path), defaults=defaults)
    await service.startup()
    await service.registry.register(SMALL)
    for host in hosts:
        await service.register_host(host)
    return service


def _host(host_id, cpu=8, memory=32, **kwargs):
    return Host(host_id=host_id, name=host_id, capacity={"cpu": cpu, "memory": memory}, **kwargs)


# ============================================================================
# POLICIES
# ============================================================================

class TestPolicies:

    def test_spread_places_siblings_on_distinct_hosts(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1"), _host("h2"), _host("h3")])
            results = []
            for i in range(3):
                node = await service.create_node_request("small", policy=SPREAD, org_id="acme", node_id=f"n{i}")
                results.append(await service.place(node.node_id))
            return service, results

        service, results = asyncio.run(run())

        assert all(isinstance(r, HostAssignment) for r in results)
        assert sorted(r.host_id for r in results) == ["h1", "h2", "h3"]

    def test_spread_allows_sharing_when_fleet_is_exhausted(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1"), _host("h2")])
            hosts = []
            for i in range(3):
                node = await service.create_node_request("small", policy=SPREAD, node_id=f"n{i}")
                hosts.append((await service.place(node.node_id)).host_id)
            return hosts

        hosts = asyncio.run(run())
        assert sorted(hosts[:2]) == ["h1", "h2"]
        assert hosts[2] in ("h1", "h2")

    def test_cluster_prefers_host_with_siblings(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1"), _host("h2")])
            first = await service.create_node_request("small", policy=CLUSTER, node_id="n1")
            a = await service.place(first.node_id)
            second = await service.create_node_request("small", policy=CLUSTER, node_id="n2")
            b = await service.place(second.node_id)
            return a, b

        a, b = asyncio.run(run())
        # least_resources alone would pick the emptier h2
        assert a.host_id == "h1"
        assert b.host_id == "h1"

    def test_resource_policy_orders_by_free_fraction(self, tmp_path):
        most = SchedulerPolicy(resource=ResourceAffinity.MOST_RESOURCES)
        least = SchedulerPolicy(resource=ResourceAffinity.LEAST_RESOURCES)

        async def run():
            service = await _fleet(tmp_path, [_host("h1"), _host("h2")])
            seed = await service.create_node_request("small", node_id="seed")
            await service.scheduler.place(seed, exclude_hosts={"h1"})
            packed = await service.create_node_request("small", policy=most, node_id="packed")
            spread = await service.create_node_request("small", policy=least, node_id="spread")
            return await service.place(packed.node_id), await service.place(spread.node_id)

        packed, spread = asyncio.run(run())
        assert packed.host_id == "h2"
        assert spread.host_id == "h1"

    def test_siblings_are_scoped_by_group_key(self, tmp_path):
        policy = SchedulerPolicy(similarity=SimilarityAffinity.SPREAD, resource=ResourceAffinity.MOST_RESOURCES)

        async def run():
            service = await _fleet(tmp_path, [_host("h1"), _host("h2")])
            a = await service.create_node_request("small", policy=policy, org_id="acme", node_id="a")
            b = await service.create_node_request("small", policy=policy, org_id="other", node_id="b")
            ra = await service.place(a.node_id)
            rb = await service.place(b.node_id)
            return ra, rb

        ra, rb = asyncio.run(run())
        # different orgs are not siblings, so spread does not separate them
        assert ra.host_id == rb.host_id == "h1"


# ============================================================================
# INFEASIBILITY
# ============================================================================

class TestInfeasible:

    def test_insufficient_capacity(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1", cpu=1)])
            node = await service.create_node_request("small")
            result = await service.place(node.node_id)
            return service, node, result

        service, node, result = asyncio.run(run())

        assert isinstance(result, Infeasible)
        assert result.reason == InfeasibleReason.INSUFFICIENT_CAPACITY
        assert asyncio.run(service.get_node(node.node_id)).host_id is None

    def test_no_hosts_is_insufficient_capacity(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [])
            node = await service.create_node_request("small")
            return await service.place(node.node_id)

        assert asyncio.run(run()).reason == InfeasibleReason.INSUFFICIENT_CAPACITY

    def test_region_without_capacity_is_affinity_unsatisfiable(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1", region="eu"), _host("h2", region="us", cpu=1)])
            node = await service.create_node_request("small", policy=SchedulerPolicy(region="us"))
            return await service.place(node.node_id)

        result = asyncio.run(run())
        assert result.reason == InfeasibleReason.AFFINITY_UNSATISFIABLE

    def test_region_is_honored(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1", region="eu"), _host("h2", region="us")])
            node = await service.create_node_request("small", policy=SchedulerPolicy(region="us"))
            return await service.place(node.node_id)

        assert asyncio.run(run()).host_id == "h2"

    def test_lock_timeout_is_distinct_reason(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1")], lock_timeout_sec=0.05)
            node = await service.create_node_request("small")
            async with service.ledger.host_lock("h1"):
                return await service.place(node.node_id)

        result = asyncio.run(run())
        assert result.reason == InfeasibleReason.LOCK_TIMEOUT

    def test_unknown_node_type(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1")])
            await service.create_node_request("nope")

        with pytest.raises(NotFound):
            asyncio.run(run())


# ============================================================================
# ELIGIBILITY
# ============================================================================

class TestEligibility:

    def test_offline_host_is_skipped(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1", cpu=64, memory=256), _host("h2")])
            h1 = await service.store.get_host("h1")
            h1.mark_offline()
            await service.store.update_host(h1)
            node = await service.create_node_request("small")
            return await service.place(node.node_id)

        assert asyncio.run(run()).host_id == "h2"

    def test_excluded_host_is_skipped(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1", cpu=64, memory=256), _host("h2")])
            node = await service.create_node_request("small")
            return await service.scheduler.place(node, exclude_hosts={"h1"})

        assert asyncio.run(run()).host_id == "h2"

    def test_private_host_only_accepts_owner(self, tmp_path):
        # "a1" wins every tie, so only tenancy keeps globex off it
        private = _host("a1", host_type=HostType.PRIVATE, org_id="acme")

        async def run():
            service = await _fleet(tmp_path, [private, _host("h1")])
            mine = await service.create_node_request("small", org_id="acme")
            theirs = await service.create_node_request("small", org_id="globex")
            return await service.place(mine.node_id), await service.place(theirs.node_id)

        mine, theirs = asyncio.run(run())
        assert mine.host_id == "a1"
        assert theirs.host_id == "h1"

    def test_place_of_assigned_node_returns_current_assignment(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1")])
            node = await service.create_node_request("small")
            first = await service.place(node.node_id)
            second = await service.place(node.node_id)
            return service, first, second

        service, first, second = asyncio.run(run())
        assert first.host_id == second.host_id == "h1"
        assert service.ledger.used("h1") == {"cpu": 2, "memory": 4}

    def test_scheduler_rejects_assigned_node(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1")])
            node = await service.create_node_request("small")
            await service.place(node.node_id)
            placed = await service.get_node(node.node_id)
            await service.scheduler.place(placed)

        with pytest.raises(ValueError):
            asyncio.run(run())

    def test_operator_stopped_node_is_not_placed(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1")])
            await service.create_node_request("small", node_id="n1")
            await service.operator_command("n1", OperatorCommand.STOP)
            await service.place("n1")

        with pytest.raises(ValueError, match="stopped by an operator"):
            asyncio.run(run())


# ============================================================================
# RACES
# ============================================================================

class TestConcurrency:

    def test_two_placements_race_for_one_slot(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1", cpu=2, memory=4)])
            a = await service.create_node_request("small", node_id="a")
            b = await service.create_node_request("small", node_id="b")
            results = await asyncio.gather(service.place(a.node_id), service.place(b.node_id))
            return service, results

        service, results = asyncio.run(run())

        placed = [r for r in results if isinstance(r, HostAssignment)]
        refused = [r for r in results if isinstance(r, Infeasible)]
        assert len(placed) == 1
        assert len(refused) == 1
        assert refused[0].reason == InfeasibleReason.INSUFFICIENT_CAPACITY
        assert service.ledger.used("h1") == {"cpu": 2, "memory": 4}

    def test_many_concurrent_placements_never_overcommit(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1", cpu=8, memory=32), _host("h2", cpu=4, memory=8)])
            nodes = [await service.create_node_request("small", node_id=f"n{i}") for i in range(10)]
            results = await asyncio.gather(*(service.place(n.node_id) for n in nodes))
            return service, results

        service, results = asyncio.run(run())

        assert sum(isinstance(r, HostAssignment) for r in results) == 6
        for host_id in ("h1", "h2"):
            free = service.ledger.free(host_id)
            assert all(v >= 0 for v in free.values())
        counts = asyncio.run(service.host_node_counts())
        assert counts == {"h1": 4, "h2": 2}

    def test_cancel_before_commit_releases_reservation(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1")])
            node = await service.create_node_request("small")

            async with service.ledger.host_lock("h1"):
                task = asyncio.create_task(service.place(node.node_id))
                await asyncio.sleep(0.01)
                assert service.scheduler.is_inflight(node.node_id)
                assert service.scheduler.cancel(node.node_id) is True

            result = await task
            stored = await service.get_node(node.node_id)
            return service, result, stored

        service, result, stored = asyncio.run(run())

        assert result.reason == InfeasibleReason.CANCELLED
        assert stored.host_id is None
        assert service.ledger.used("h1") == {}
        assert service.scheduler.stats["cancelled"] == 1

    def test_cancel_without_inflight_placement(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1")])
            return service.scheduler.cancel("nobody")

        assert asyncio.run(run()) is False

    def test_commit_conflict_on_stale_node(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1")])
            await service.create_node_request("small", node_id="n1")

            stale = await service.get_node("n1")
            fresh = await service.get_node("n1")
            fresh.properties = {"touched": True}
            assert await service.store.update_node(fresh)

            result = await service.scheduler.place(stale)
            return service, result

        service, result = asyncio.run(run())

        assert result.reason == InfeasibleReason.CANCELLED
        assert service.ledger.used("h1") == {}
        assert service.scheduler.stats["commit_conflicts"] == 1

    def test_delete_during_placement(self, tmp_path):
        async def run():
            service = await _fleet(tmp_path, [_host("h1")])
            node = await service.create_node_request("small")

            async with service.ledger.host_lock("h1"):
                placing = asyncio.create_task(service.place(node.node_id))
                await asyncio.sleep(0.01)
                deleting = asyncio.create_task(service.delete_node(node.node_id))
                await asyncio.sleep(0.01)

            result = await placing
            await deleting
            return service, result, await service.store.get_node(node.node_id)

        service, result, stored = asyncio.run(run())

        assert result.reason == InfeasibleReason.CANCELLED
        assert service.ledger.used("h1") == {}
        assert stored is None


# ============================================================================
# SHARED STORE
# ============================================================================

async def _second_instance(tmp_path, store):
    service = FleetService.build(store, node_types_dir=str(tmp_path))
    await service.startup()
    return service


class TestSharedStore:
    """Two service instances over one store keep their ledgers honest."""

    def test_delete_on_other_instance_frees_capacity(self, tmp_path):
        async def run():
            a = await _fleet(tmp_path, [_host("h1", cpu=2, memory=4)])
            await a.create_node_request("small", node_id="n1")
            assert isinstance(await a.place("n1"), HostAssignment)

            b = await _second_instance(tmp_path, a.store)
            await b.delete_node("n1")

            await a.create_node_request("small", node_id="n2")
            return a, await a.place("n2")

        a, result = asyncio.run(run())

        assert isinstance(result, HostAssignment)
        assert result.host_id == "h1"
        assert a.ledger.reservation_for("n1") is None
        assert a.ledger.used("h1") == {"cpu": 2, "memory": 4}

    def test_store_refusal_resyncs_host(self, tmp_path):
        async def run():
            a = await _fleet(tmp_path, [_host("h1", cpu=2, memory=4)])
            b = await _second_instance(tmp_path, a.store)
            await b.create_node_request("small", node_id="n1")
            assert isinstance(await b.place("n1"), HostAssignment)

            # a's ledger still sees h1 empty
            await a.create_node_request("small", node_id="n2")
            return a, await a.place("n2")

        a, result = asyncio.run(run())

        assert result.reason == InfeasibleReason.INSUFFICIENT_CAPACITY
        assert a.scheduler.stats["commit_conflicts"] == 1
        assert a.ledger.reservation_for("n1").host_id == "h1"
        assert a.ledger.used("h1") == {"cpu": 2, "memory": 4}

    def test_host_added_on_other_instance_is_used(self, tmp_path):
        async def run():
            a = await _fleet(tmp_path, [])
            b = await _second_instance(tmp_path, a.store)
            await b.register_host(_host("h9"))
            await b.host_heartbeat("h9")

            await a.create_node_request("small", node_id="n1")
            return await a.place("n1")

        result = asyncio.run(run())
        assert result.host_id == "h9"

    def test_utilization_reflects_other_instance(self, tmp_path):
        async def run():
            a = await _fleet(tmp_path, [_host("h1")])
            b = await _second_instance(tmp_path, a.store)
            await b.create_node_request("small", node_id="n1")
            await b.place("n1")
            return await a.list_host_utilization()

        [row] = asyncio.run(run())
        assert row.host_id == "h1"
        assert row.used == {"cpu": 2, "memory": 4}
        assert row.node_count == 1

    def test_remove_host_emptied_by_other_instance(self, tmp_path):
        async def run():
            a = await _fleet(tmp_path, [_host("h1")])
            await a.create_node_request("small", node_id="n1")
            await a.place("n1")

            b = await _second_instance(tmp_path, a.store)
            await b.delete_node("n1")

            await a.remove_host("h1")
            return a, await a.store.get_host("h1")

        a, stored = asyncio.run(run())
        assert stored is None
        assert a.ledger.has_host("h1") is False
