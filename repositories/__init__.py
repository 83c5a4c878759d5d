# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Storage layer
# PURPOSE: FleetStore contract, in-memory and PostgreSQL implementations
# CREATED: 04 OCT 2026
# ============================================================================
"""
Repositories Module

Provides the FleetStore contract and its two implementations.
PostgreSQL access uses psycopg3 async with connection pooling.

Usage:
    from repositories import InMemoryFleetStore, PostgresFleetStore, init_pool

    store = InMemoryFleetStore()

    pool = await init_pool()
    store = PostgresFleetStore(pool)
"""

from .base import FleetStore, RepositoryError
from .memory_store import InMemoryFleetStore
from .database import init_pool, get_pool, close_pool
from .host_repo import HostRepository
from .node_type_repo import NodeTypeRepository
from .node_repo import NodeRepository
from .postgres_store import PostgresFleetStore
from .schema import ensure_schema

__all__ = [
    "FleetStore",
    "RepositoryError",
    "InMemoryFleetStore",
    "PostgresFleetStore",
    "HostRepository",
    "NodeTypeRepository",
    "NodeRepository",
    "init_pool",
    "get_pool",
    "close_pool",
    "ensure_schema",
]
