# ============================================================================
# HOST REPOSITORY
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Host CRUD operations
# PURPOSE: Database access for fleet.hosts table
# CREATED: 03 OCT 2026
# ============================================================================
"""
Host Repository

CRUD operations for fleet hosts.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import ConnectionStatus, HostType
from core.models import Host
from .base import BaseRepository
from .database import TABLE_HOSTS

logger = logging.getLogger(__name__)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """TIMESTAMPTZ values come back aware; models hold naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class HostRepository(BaseRepository):
    """Repository for Host entities."""

    def __init__(self, pool: AsyncConnectionPool):
        super().__init__()
        self.pool = pool

    async def create(self, host: Host) -> Host:
        """
        Create a new host.

        Raises:
            RepositoryError: on driver errors (duplicate id included)
        """
        with self._error_context("host insert", host.host_id):
            async with self.pool.connection() as conn:
                await conn.execute(
                    sql.SQL("""
                    INSERT INTO {} (
                        host_id, name, address, ip_addresses, region, host_type,
                        org_id, capacity, status, last_heartbeat_at,
                        created_at, updated_at
                    ) VALUES (
                        %(host_id)s, %(name)s, %(address)s, %(ip_addresses)s,
                        %(region)s, %(host_type)s, %(org_id)s, %(capacity)s,
                        %(status)s, %(last_heartbeat_at)s,
                        %(created_at)s, %(updated_at)s
                    )
                    """).format(TABLE_HOSTS),
                    self._params(host),
                )
        self._log_operation(True, "Created host", host.host_id, {"capacity": host.capacity})
        return host

    async def get(self, host_id: str) -> Optional[Host]:
        with self._error_context("host fetch", host_id):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL("SELECT * FROM {} WHERE host_id = %s").format(TABLE_HOSTS),
                    (host_id,),
                )
                row = await result.fetchone()
        return self._row_to_host(row) if row else None

    async def list_all(self) -> List[Host]:
        with self._error_context("host list"):
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL("SELECT * FROM {} ORDER BY host_id").format(TABLE_HOSTS)
                )
                rows = await result.fetchall()
        return [self._row_to_host(row) for row in rows]

    async def update(self, host: Host) -> bool:
        """Persist mutable host fields. Returns False if the host is gone."""
        with self._error_context("host update", host.host_id):
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("""
                    UPDATE {} SET
                        name = %(name)s,
                        address = %(address)s,
                        ip_addresses = %(ip_addresses)s,
                        region = %(region)s,
                        host_type = %(host_type)s,
                        org_id = %(org_id)s,
                        capacity = %(capacity)s,
                        status = %(status)s,
                        last_heartbeat_at = %(last_heartbeat_at)s,
                        updated_at = %(updated_at)s
                    WHERE host_id = %(host_id)s
                    """).format(TABLE_HOSTS),
                    self._params(host),
                )
                return result.rowcount > 0

    async def delete(self, host_id: str) -> bool:
        with self._error_context("host delete", host_id):
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("DELETE FROM {} WHERE host_id = %s").format(TABLE_HOSTS),
                    (host_id,),
                )
                deleted = result.rowcount > 0
        if deleted:
            self._log_operation(True, "Deleted host", host_id)
        return deleted

    @staticmethod
    def _params(host: Host) -> Dict[str, Any]:
        return {
            "host_id": host.host_id,
            "name": host.name,
            "address": host.address,
            "ip_addresses": Json(host.ip_addresses),
            "region": host.region,
            "host_type": host.host_type.value,
            "org_id": host.org_id,
            "capacity": Json(host.capacity),
            "status": host.status.value,
            "last_heartbeat_at": host.last_heartbeat_at,
            "created_at": host.created_at,
            "updated_at": host.updated_at,
        }

    @staticmethod
    def _row_to_host(row: Dict[str, Any]) -> Host:
        """Convert database row to Host."""
        return Host(
            host_id=row["host_id"],
            name=row["name"],
            address=row.get("address"),
            ip_addresses=row.get("ip_addresses") or [],
            region=row.get("region"),
            host_type=HostType(row.get("host_type") or HostType.CLOUD.value),
            org_id=row.get("org_id"),
            capacity=row.get("capacity") or {},
            status=ConnectionStatus(row["status"]),
            last_heartbeat_at=naive_utc(row.get("last_heartbeat_at")),
            created_at=naive_utc(row.get("created_at")) or datetime.utcnow(),
            updated_at=naive_utc(row.get("updated_at")) or datetime.utcnow(),
        )


__all__ = ["HostRepository", "naive_utc"]
