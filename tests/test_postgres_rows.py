# ============================================================================
# POSTGRES MAPPING TESTS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Tests - PostgreSQL row mapping (no database needed)
# PURPOSE: Verify row -> model conversion, DDL layout, lock ids, conninfo
# CREATED: 14 OCT 2026
# ============================================================================
"""
PostgreSQL Mapping Tests

Exercises the pieces of the PostgreSQL store that do not need a server:
row conversion, parameter building, DDL inventory, advisory lock ids and
connection string resolution.

Run with:
    pytest tests/test_postgres_rows.py -v
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from core.contracts import (
    ConnectionStatus,
    HostType,
    NodeStatus,
    ResourceAffinity,
    SimilarityAffinity,
    StakeStatus,
)
from core.models import Node, SchedulerPolicy
from infrastructure.locking import LockService
from repositories.database import _mask, get_connection_string
from repositories.host_repo import HostRepository, naive_utc
from repositories.node_repo import NodeRepository
from repositories.node_type_repo import NodeTypeRepository
from repositories.schema import EXPECTED_TABLES, ddl_statements


NODE_ROW = {
    "node_id": "n1",
    "node_type_id": "solana-validator",
    "org_id": "acme",
    "host_id": "h1",
    "status": "consensus",
    "scheduler_similarity": None,
    "scheduler_resource": "most_resources",
    "scheduler_region": "eu",
    "group_key": "solana-validator:acme",
    "properties": {"network": "mainnet"},
    "reserved": {"cpu": 16},
    "last_host_id": None,
    "stop_requested": False,
    "target_version": None,
    "running_version": "1.18.2",
    "sync_height": 100,
    "chain_height": 101,
    "created_at": datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
    "placed_at": None,
    "updated_at": datetime(2026, 10, 1, 12, 5, tzinfo=timezone.utc),
    "version": 4,
    "v_node_id": "n1",
    "v_stake_status": "staked",
    "v_address": "Vote111",
    "v_score": 42,
    "v_consensus_streak": 7,
    "v_stake_eligible": True,
}


class TestNodeRows:

    def test_row_with_validator(self):
        node = NodeRepository._row_to_node(NODE_ROW)

        assert node.status == NodeStatus.CONSENSUS
        assert node.scheduler.similarity is None
        assert node.scheduler.resource == ResourceAffinity.MOST_RESOURCES
        assert node.sync_lag == 1
        assert node.version == 4
        assert node.validator.stake_status == StakeStatus.STAKED
        assert node.validator.consensus_streak == 7
        assert node.created_at == datetime(2026, 10, 1, 12, 0)
        assert node.created_at.tzinfo is None

    def test_row_without_validator(self):
        row = dict(NODE_ROW, v_node_id=None, scheduler_similarity="spread")
        node = NodeRepository._row_to_node(row)

        assert node.validator is None
        assert node.stake_status is None
        assert node.scheduler.similarity == SimilarityAffinity.SPREAD

    def test_params_store_enums_as_values(self):
        node = Node(
            node_id="n2",
            node_type_id="eth",
            scheduler=SchedulerPolicy(similarity=SimilarityAffinity.CLUSTER),
        )
        params = NodeRepository._params(node)

        assert params["status"] == "provisioning"
        assert params["scheduler_similarity"] == "cluster"
        assert params["scheduler_resource"] == "least_resources"
        assert params["group_key"] == "eth:"
        assert params["version"] == 1

    def test_stranded_query_binds_stopped_status(self):
        row = dict(NODE_ROW, host_id=None, status="stopped", last_host_id="h1", v_node_id=None)
        result = MagicMock()
        result.fetchall = AsyncMock(return_value=[row])
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=result)
        pool = MagicMock()
        pool.connection.return_value.__aenter__.return_value = conn

        [node] = asyncio.run(NodeRepository(pool).list_stranded())

        assert conn.execute.await_args.args[1] == ("stopped",)
        assert node.host_id is None
        assert node.status == NodeStatus.STOPPED
        assert node.last_host_id == "h1"


class TestHostAndTypeRows:

    def test_host_row(self):
        host = HostRepository._row_to_host({
            "host_id": "h1",
            "name": "fra-01",
            "host_type": "private",
            "org_id": "acme",
            "capacity": {"cpu": 32},
            "status": "offline",
            "last_heartbeat_at": None,
        })

        assert host.host_type == HostType.PRIVATE
        assert host.status == ConnectionStatus.OFFLINE
        assert not host.is_online
        assert host.ip_addresses == []

    def test_node_type_row_keeps_order(self):
        node_type = NodeTypeRepository._row_to_node_type({
            "type_id": "t",
            "name": "T",
            "validator_capable": True,
            "properties": [{"key": "b"}, {"key": "a", "field_type": "switch", "default": False}],
            "requirements": [{"key": "memory", "quantity": 4}, {"key": "cpu", "quantity": 2}],
        })

        assert [p.key for p in node_type.properties] == ["b", "a"]
        assert node_type.requirement_vector() == {"memory": 4, "cpu": 2}

    def test_naive_utc(self):
        aware = datetime(2026, 10, 1, 14, 0, tzinfo=timezone.utc)
        assert naive_utc(aware) == datetime(2026, 10, 1, 14, 0)
        assert naive_utc(None) is None


class TestSchemaAndLocks:

    def test_ddl_inventory(self):
        statements = ddl_statements()
        assert len(statements) == 1 + len(EXPECTED_TABLES) + 4
        assert EXPECTED_TABLES == ["hosts", "node_types", "nodes", "validators"]

    def test_lock_ids_are_stable_signed_int64(self):
        a = LockService._hash_to_lock_id("fleet:host:h1")
        b = LockService._hash_to_lock_id("fleet:host:h1")
        c = LockService._hash_to_lock_id("fleet:host:h2")

        assert a == b
        assert a != c
        assert -(2 ** 63) <= a < 2 ** 63

    def test_first_value_handles_row_shapes(self):
        assert LockService._first_value({"acquired": True}) is True
        assert LockService._first_value((False,)) is False
        assert LockService._first_value(None) is False


class TestConnectionString:

    def test_database_url_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/fleet")
        assert get_connection_string() == "postgresql://u:p@db:5432/fleet"

    def test_components(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("POSTGRES_HOST", "db")
        monkeypatch.setenv("POSTGRES_USER", "fleet")
        monkeypatch.setenv("POSTGRES_PASSWORD", "pw")
        monkeypatch.setenv("POSTGRES_DB", "fleet")
        monkeypatch.delenv("POSTGRES_PORT", raising=False)
        monkeypatch.delenv("POSTGRES_SSLMODE", raising=False)

        conninfo = get_connection_string()

        assert conninfo == "postgresql://fleet:pw@db:5432/fleet?sslmode=prefer"
        assert _mask(conninfo) == "db:5432/fleet?sslmode=prefer"

    def test_credentials_are_quoted(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("POSTGRES_HOST", "db")
        monkeypatch.setenv("POSTGRES_USER", "fleet")
        monkeypatch.setenv("POSTGRES_PASSWORD", "p@ss:word/1")
        monkeypatch.setenv("POSTGRES_DB", "fleet")
        monkeypatch.setenv("POSTGRES_SSLMODE", "require")

        conninfo = get_connection_string()

        assert conninfo == "postgresql://fleet:p%40ss%3Aword%2F1@db:5432/fleet?sslmode=require"
        assert _mask(conninfo) == "db:5432/fleet?sslmode=require"
