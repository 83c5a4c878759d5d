# ============================================================================
# HOST MODEL
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core model - Physical/virtual machine in the fleet
# PURPOSE: Capacity vector, connectivity and tenancy of a host
# CREATED: 29 SEP 2026
# EXPORTS: Host, RESOURCE_PRIORITY, resource_key_order
# DEPENDENCIES: pydantic
# ============================================================================
"""
Host Model

A Host offers finite capacity (cpu, memory, disk, IP slots, ...) to run
nodes. Capacity is an open mapping: node types may declare any resource
key, a host that does not list a key has zero of it.

Tenancy:
    CLOUD hosts accept nodes from every org.
    PRIVATE hosts accept nodes only from their owning org_id.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, ClassVar
from pydantic import Field, computed_field, field_validator

from core.contracts import HostData, ConnectionStatus, HostType


# Resource keys compared first, in this order, when ranking hosts by free
# capacity. Any other key follows alphabetically.
RESOURCE_PRIORITY: List[str] = ["cpu", "memory", "disk", "ips"]


def resource_key_order(keys: Iterable[str]) -> List[str]:
    """Order resource keys by RESOURCE_PRIORITY, then alphabetically."""
    keys = set(keys)
    ordered = [k for k in RESOURCE_PRIORITY if k in keys]
    ordered.extend(sorted(k for k in keys if k not in RESOURCE_PRIORITY))
    return ordered


class Host(HostData):
    """
    A machine offering capacity to run nodes.

    Maps to: fleet.hosts table
    """

    __sql_table__: ClassVar[str] = "hosts"
    __sql_schema__: ClassVar[str] = "fleet"

    address: Optional[str] = Field(default=None, max_length=255)
    ip_addresses: List[str] = Field(
        default_factory=list,
        description="Addresses the host can hand out to nodes"
    )
    region: Optional[str] = Field(default=None, max_length=64)
    host_type: HostType = Field(default=HostType.CLOUD)
    org_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Owning org; private hosts only accept this org's nodes"
    )

    capacity: Dict[str, int] = Field(
        default_factory=dict,
        description="Total capacity per resource key (cpu, memory, disk, ips, ...)"
    )

    status: ConnectionStatus = Field(default=ConnectionStatus.ONLINE)
    last_heartbeat_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("capacity")
    @classmethod
    def _non_negative_capacity(cls, value: Dict[str, int]) -> Dict[str, int]:
        for key, amount in value.items():
            if amount < 0:
                raise ValueError(f"capacity[{key}] must be >= 0, got {amount}")
        return value

    @computed_field
    @property
    def is_online(self) -> bool:
        return self.status == ConnectionStatus.ONLINE

    def accepts_org(self, org_id: Optional[str]) -> bool:
        """Check tenancy: private hosts only run their owner's nodes."""
        if self.host_type == HostType.PRIVATE:
            return self.org_id is not None and self.org_id == org_id
        return True

    def mark_online(self, at: Optional[datetime] = None) -> None:
        """Record a heartbeat."""
        self.status = ConnectionStatus.ONLINE
        self.last_heartbeat_at = at or datetime.utcnow()
        self.updated_at = datetime.utcnow()

    def mark_offline(self) -> None:
        """Host missed its heartbeat window."""
        self.status = ConnectionStatus.OFFLINE
        self.updated_at = datetime.utcnow()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Host", "RESOURCE_PRIORITY", "resource_key_order"]
