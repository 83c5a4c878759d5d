# ============================================================================
# NODE MODEL
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core model - Node instance, scheduler policy, validator attributes
# PURPOSE: Track a node's placement, lifecycle status and stake status
# CREATED: 29 SEP 2026
# EXPORTS: Node, SchedulerPolicy, Validator, default_group_key
# DEPENDENCIES: pydantic
# ============================================================================
"""
Node Model

Key concept:
- NodeType = TEMPLATE (what a node needs)
- Node = INSTANCE (where it runs and what state it is in)

A node carries two independent status fields:
- status (node lifecycle, driven by telemetry and operator commands)
- validator.stake_status (stake lifecycle, observed from chain)

Node status influences stake status (derive_stake), never the reverse.
"""

from datetime import datetime
from typing import Any, Dict, Optional, ClassVar
from pydantic import BaseModel, Field, computed_field, model_validator

from core.contracts import (
    NodeData,
    NodeStatus,
    StakeStatus,
    SimilarityAffinity,
    ResourceAffinity,
)
from core.errors import InvalidTransition


def default_group_key(node_type_id: str, org_id: Optional[str]) -> str:
    """Siblings default to same node type + same tenant."""
    return f"{node_type_id}:{org_id or ''}"


class SchedulerPolicy(BaseModel):
    """
    Placement policy for a node.

    similarity=None means no affinity constraint: every capacity-eligible
    host ranks equally before the resource policy applies.
    """
    similarity: Optional[SimilarityAffinity] = None
    resource: ResourceAffinity = ResourceAffinity.LEAST_RESOURCES
    region: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Only hosts in this region are candidates"
    )


class Validator(BaseModel):
    """
    Validator attribute set of a validator-capable node.

    Maps to: fleet.validators table (keyed by node_id)
    """
    stake_status: StakeStatus = Field(default=StakeStatus.AVAILABLE)
    address: Optional[str] = Field(default=None, max_length=128)
    score: int = Field(default=0)

    consensus_streak: int = Field(
        default=0,
        ge=0,
        description="Consecutive heartbeats reporting consensus participation"
    )
    stake_eligible: bool = Field(
        default=False,
        description="Participation sustained long enough to reflect an on-chain stake"
    )

    def record_participation(self, participating: bool) -> None:
        """Count a heartbeat toward (or break) the consensus streak."""
        if participating:
            self.consensus_streak += 1
        else:
            self.consensus_streak = 0

    def derive_stake(
        self,
        node_status: NodeStatus,
        observed: Optional[StakeStatus],
        streak_threshold: int,
    ) -> StakeStatus:
        """
        Apply node status and chain observations to stake status.

        Rules:
            stopped node -> disabled (delinquent stays delinquent)
            not in consensus -> streak reset, not eligible
            streak >= threshold -> eligible
            observed staked -> reflected only when eligible and currently
                               available or disabled
            any other observation -> reflected as-is

        Staking itself happens on chain; this only mirrors it.
        """
        if node_status == NodeStatus.STOPPED:
            self.consensus_streak = 0
            self.stake_eligible = False
            if self.stake_status != StakeStatus.DELINQUENT:
                self.stake_status = StakeStatus.DISABLED
            return self.stake_status

        if node_status != NodeStatus.CONSENSUS:
            self.consensus_streak = 0
        self.stake_eligible = (
            node_status == NodeStatus.CONSENSUS
            and self.consensus_streak >= streak_threshold
        )

        if observed is None:
            return self.stake_status

        if observed == StakeStatus.STAKED:
            if self.stake_eligible and self.stake_status in (
                StakeStatus.AVAILABLE,
                StakeStatus.DISABLED,
            ):
                self.stake_status = StakeStatus.STAKED
        else:
            self.stake_status = observed

        return self.stake_status


class Node(NodeData):
    """
    A running (or pending) instance of a node type.

    Maps to: fleet.nodes table

    Lifecycle:
        1. Created in PROVISIONING with host_id=None
        2. place() assigns a host (still PROVISIONING)
        3. Telemetry drives SYNCING -> SYNCED -> CONSENSUS, UPGRADING
        4. Stop, fatal error or host loss -> STOPPED
        5. Restart or re-placement -> PROVISIONING on a (new) host
    """

    __sql_table__: ClassVar[str] = "nodes"
    __sql_schema__: ClassVar[str] = "fleet"

    host_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Assigned host; None while pending placement"
    )
    status: NodeStatus = Field(default=NodeStatus.PROVISIONING)

    scheduler: SchedulerPolicy = Field(default_factory=SchedulerPolicy)
    group_key: Optional[str] = Field(
        default=None,
        max_length=160,
        description="Nodes with equal group keys are siblings for affinity"
    )

    properties: Dict[str, Any] = Field(default_factory=dict)

    reserved: Dict[str, int] = Field(
        default_factory=dict,
        description="Resource vector committed on host_id (ledger rebuild source)"
    )
    last_host_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Host the node ran on before it was detached"
    )

    stop_requested: bool = Field(
        default=False,
        description="Operator asked for the node to stay stopped"
    )
    target_version: Optional[str] = Field(default=None, max_length=64)
    running_version: Optional[str] = Field(default=None, max_length=64)

    sync_height: Optional[int] = Field(default=None, ge=0)
    chain_height: Optional[int] = Field(default=None, ge=0)

    validator: Optional[Validator] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    placed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Optimistic locking
    version: int = Field(
        default=1,
        ge=1,
        description="Version for optimistic locking - incremented on each update"
    )

    @model_validator(mode="after")
    def _fill_group_key(self) -> "Node":
        if self.group_key is None:
            self.group_key = default_group_key(self.node_type_id, self.org_id)
        return self

    @computed_field
    @property
    def is_assigned(self) -> bool:
        return self.host_id is not None

    @computed_field
    @property
    def sync_lag(self) -> Optional[int]:
        """Blocks behind chain head, if both heights are known."""
        if self.sync_height is None or self.chain_height is None:
            return None
        return max(self.chain_height - self.sync_height, 0)

    @property
    def stake_status(self) -> Optional[StakeStatus]:
        return self.validator.stake_status if self.validator else None

    def can_transition_to(self, new_status: NodeStatus) -> bool:
        """
        Validate if a status transition is allowed.

        Valid transitions:
            PROVISIONING -> SYNCING
            SYNCING -> UPGRADING, SYNCED
            UPGRADING -> SYNCING
            SYNCED -> CONSENSUS
            CONSENSUS -> SYNCING
            any -> STOPPED
            STOPPED -> PROVISIONING
        """
        if self.status == new_status:
            return True

        if new_status == NodeStatus.STOPPED:
            return True

        allowed = {
            NodeStatus.PROVISIONING: {NodeStatus.SYNCING},
            NodeStatus.SYNCING: {NodeStatus.UPGRADING, NodeStatus.SYNCED},
            NodeStatus.UPGRADING: {NodeStatus.SYNCING},
            NodeStatus.SYNCED: {NodeStatus.CONSENSUS},
            NodeStatus.CONSENSUS: {NodeStatus.SYNCING},
            NodeStatus.STOPPED: {NodeStatus.PROVISIONING},
        }

        return new_status in allowed.get(self.status, set())

    def transition_to(self, new_status: NodeStatus) -> bool:
        """
        Apply a status transition.

        Returns True if the status changed, False for a no-op.
        Raises InvalidTransition if the state machine forbids it.
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransition(self.node_id, self.status.value, new_status.value)
        if self.status == new_status:
            return False
        self.status = new_status
        self.updated_at = datetime.utcnow()
        return True

    def assign(self, host_id: str, reserved: Dict[str, int]) -> None:
        """Record a committed placement; the node (re)starts provisioning."""
        if self.host_id is not None and self.host_id != host_id:
            raise ValueError(f"Node {self.node_id} is already assigned to {self.host_id}")
        self.host_id = host_id
        self.reserved = dict(reserved)
        if self.status != NodeStatus.PROVISIONING:
            self.transition_to(NodeStatus.PROVISIONING)
        self.placed_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()

    def detach(self) -> Optional[str]:
        """Drop the host reference after its reservation was released."""
        previous = self.host_id
        if previous is not None:
            self.last_host_id = previous
        self.host_id = None
        self.reserved = {}
        self.updated_at = datetime.utcnow()
        return previous

    def sibling_of(self, other: "Node") -> bool:
        return other.node_id != self.node_id and other.group_key == self.group_key


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Node", "SchedulerPolicy", "Validator", "default_group_key"]
