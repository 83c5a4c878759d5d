# ============================================================================
# FLEET MODEL TESTS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Tests - Pydantic models
# PURPOSE: Verify node state machine, validator stake rules, host tenancy
# CREATED: 11 OCT 2026
# ============================================================================
"""
Fleet Model Tests

Run with:
    pytest tests/test_models.py -v
"""

import pytest

from core.contracts import HostType, NodeStatus, StakeStatus
from core.errors import InvalidTransition
from core.models import Host, Node, Validator, default_group_key, resource_key_order


def _node(**kwargs):
    return Node(node_id="n1", node_type_id="eth", **kwargs)


class TestNodeStateMachine:

    @pytest.mark.parametrize("current,target", [
        (NodeStatus.PROVISIONING, NodeStatus.SYNCING),
        (NodeStatus.SYNCING, NodeStatus.UPGRADING),
        (NodeStatus.SYNCING, NodeStatus.SYNCED),
        (NodeStatus.UPGRADING, NodeStatus.SYNCING),
        (NodeStatus.SYNCED, NodeStatus.CONSENSUS),
        (NodeStatus.CONSENSUS, NodeStatus.SYNCING),
        (NodeStatus.STOPPED, NodeStatus.PROVISIONING),
        (NodeStatus.CONSENSUS, NodeStatus.STOPPED),
    ])
    def test_allowed(self, current, target):
        node = _node(status=current)
        assert node.transition_to(target) is True
        assert node.status == target

    @pytest.mark.parametrize("current,target", [
        (NodeStatus.PROVISIONING, NodeStatus.CONSENSUS),
        (NodeStatus.SYNCED, NodeStatus.UPGRADING),
        (NodeStatus.STOPPED, NodeStatus.SYNCING),
        (NodeStatus.SYNCING, NodeStatus.PROVISIONING),
    ])
    def test_forbidden(self, current, target):
        node = _node(status=current)
        with pytest.raises(InvalidTransition):
            node.transition_to(target)
        assert node.status == current

    def test_same_status_is_noop(self):
        node = _node(status=NodeStatus.SYNCING)
        assert node.transition_to(NodeStatus.SYNCING) is False

    def test_invalid_transition_is_value_error(self):
        with pytest.raises(ValueError):
            _node().transition_to(NodeStatus.SYNCED)


class TestNodeAssignment:

    def test_default_group_key(self):
        assert _node(org_id="acme").group_key == default_group_key("eth", "acme") == "eth:acme"
        assert _node().group_key == "eth:"
        assert _node(group_key="custom").group_key == "custom"

    def test_assign_and_detach(self):
        node = _node(status=NodeStatus.STOPPED)
        node.assign("h1", {"cpu": 2})
        assert node.is_assigned
        assert node.status == NodeStatus.PROVISIONING
        assert node.placed_at is not None

        assert node.detach() == "h1"
        assert node.host_id is None
        assert node.last_host_id == "h1"
        assert node.reserved == {}

    def test_assign_elsewhere_refused(self):
        node = _node(host_id="h1")
        with pytest.raises(ValueError):
            node.assign("h2", {})

    def test_sync_lag(self):
        assert _node().sync_lag is None
        assert _node(sync_height=90, chain_height=100).sync_lag == 10
        assert _node(sync_height=110, chain_height=100).sync_lag == 0

    def test_siblings(self):
        a = _node(org_id="acme")
        b = Node(node_id="n2", node_type_id="eth", org_id="acme")
        c = Node(node_id="n3", node_type_id="eth", org_id="other")
        assert a.sibling_of(b)
        assert not a.sibling_of(c)
        assert not a.sibling_of(a)


class TestValidatorStake:

    def test_staked_needs_streak(self):
        validator = Validator()
        for _ in range(2):
            validator.record_participation(True)
        assert validator.derive_stake(NodeStatus.CONSENSUS, StakeStatus.STAKED, 3) == StakeStatus.AVAILABLE

        validator.record_participation(True)
        assert validator.derive_stake(NodeStatus.CONSENSUS, StakeStatus.STAKED, 3) == StakeStatus.STAKED

    def test_staked_not_reflected_from_delinquent(self):
        validator = Validator(stake_status=StakeStatus.DELINQUENT, consensus_streak=5)
        assert validator.derive_stake(NodeStatus.CONSENSUS, StakeStatus.STAKED, 3) == StakeStatus.DELINQUENT

    def test_stopped_disables(self):
        validator = Validator(stake_status=StakeStatus.STAKED, consensus_streak=5, stake_eligible=True)
        assert validator.derive_stake(NodeStatus.STOPPED, None, 3) == StakeStatus.DISABLED
        assert validator.consensus_streak == 0
        assert validator.stake_eligible is False

    def test_disabled_can_be_restaked(self):
        validator = Validator(stake_status=StakeStatus.DISABLED, consensus_streak=3)
        assert validator.derive_stake(NodeStatus.CONSENSUS, StakeStatus.STAKED, 3) == StakeStatus.STAKED

    def test_leaving_consensus_resets(self):
        validator = Validator(consensus_streak=4)
        validator.derive_stake(NodeStatus.SYNCING, None, 3)
        assert validator.consensus_streak == 0
        assert validator.stake_eligible is False


class TestHost:

    def test_private_host_tenancy(self):
        host = Host(host_id="p", name="p", host_type=HostType.PRIVATE, org_id="acme")
        assert host.accepts_org("acme")
        assert not host.accepts_org("globex")
        assert not host.accepts_org(None)

    def test_cloud_host_accepts_everyone(self):
        host = Host(host_id="c", name="c")
        assert host.accepts_org(None)
        assert host.accepts_org("anyone")

    def test_negative_capacity_rejected(self):
        with pytest.raises(ValueError):
            Host(host_id="h", name="h", capacity={"cpu": -1})

    def test_online_offline(self):
        host = Host(host_id="h", name="h")
        host.mark_offline()
        assert not host.is_online
        host.mark_online()
        assert host.is_online
        assert host.last_heartbeat_at is not None

    def test_resource_key_order(self):
        assert resource_key_order(["gpu", "ips", "cpu", "bandwidth", "memory"]) == [
            "cpu", "memory", "ips", "bandwidth", "gpu",
        ]
