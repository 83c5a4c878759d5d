# ============================================================================
# API ROUTE TESTS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Tests - HTTP surface
# PURPOSE: Verify endpoints, status codes and error mapping
# CREATED: 14 OCT 2026
# ============================================================================
"""
API Route Tests

Uses FastAPI TestClient. Error mapping is checked against a mocked
FleetService; the happy path runs against a real service over the
in-memory store and the shipped node type catalog.

Run with:
    pytest tests/test_routes.py -v
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.config import Defaults
from core.contracts import InfeasibleReason, NodeStatus
from core.errors import ConcurrentModification, InvalidTransition, NotFound
from core.models import Infeasible, Node
from repositories import InMemoryFleetStore
from services.fleet_service import FleetService
from api.routes import router, set_services


def _make_test_app(fleet_service):
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    set_services(fleet_service)
    return app


@pytest.fixture
def mock_service():
    service = MagicMock()
    for name in (
        "register_host", "remove_host", "host_heartbeat", "list_host_utilization",
        "host_node_counts", "candidate_regions", "create_node_request", "get_node",
        "get_node_status", "place", "delete_node", "operator_command",
    ):
        setattr(service, name, AsyncMock())
    return service


@pytest.fixture
def real_service():
    service = FleetService.build(InMemoryFleetStore(), defaults=Defaults())
    asyncio.run(service.startup())
    return service


# ============================================================================
# ERROR MAPPING
# ============================================================================

class TestErrorMapping:

    def test_uninitialized_services(self):
        set_services(None)
        app = FastAPI()
        app.include_router(router, prefix="/api/v1")
        with TestClient(app) as client:
            assert client.get("/api/v1/node-types").status_code == 500

    def test_unknown_node_is_404(self, mock_service):
        mock_service.get_node_status.side_effect = NotFound("node", "ghost")
        with TestClient(_make_test_app(mock_service)) as client:
            response = client.get("/api/v1/nodes/ghost/status")
        assert response.status_code == 404
        assert "ghost" in response.json()["detail"]

    def test_invalid_transition_is_409(self, mock_service):
        mock_service.operator_command.side_effect = InvalidTransition("n1", "provisioning", "upgrading")
        with TestClient(_make_test_app(mock_service)) as client:
            response = client.post("/api/v1/nodes/n1/commands", json={"command": "upgrade"})
        assert response.status_code == 409

    def test_concurrent_modification_is_409(self, mock_service):
        mock_service.operator_command.side_effect = ConcurrentModification("node", "n1")
        with TestClient(_make_test_app(mock_service)) as client:
            response = client.post("/api/v1/nodes/n1/commands", json={"command": "stop"})
        assert response.status_code == 409

    def test_unknown_command_is_422(self, mock_service):
        with TestClient(_make_test_app(mock_service)) as client:
            response = client.post("/api/v1/nodes/n1/commands", json={"command": "reboot"})
        assert response.status_code == 422
        mock_service.operator_command.assert_not_awaited()

    def test_bad_properties_are_400(self, mock_service):
        mock_service.create_node_request.side_effect = ValueError("Unknown properties")
        with TestClient(_make_test_app(mock_service)) as client:
            response = client.post("/api/v1/nodes", json={"node_type_id": "eth", "properties": {"x": "y"}})
        assert response.status_code == 400

    def test_remove_busy_host_is_409(self, mock_service):
        mock_service.remove_host.side_effect = ValueError("still has nodes")
        with TestClient(_make_test_app(mock_service)) as client:
            assert client.delete("/api/v1/hosts/h1").status_code == 409

    def test_place_of_stopped_node_is_409(self, mock_service):
        mock_service.place.side_effect = ValueError("Node n1 was stopped by an operator; start it first")
        with TestClient(_make_test_app(mock_service)) as client:
            response = client.post("/api/v1/nodes/n1/place")
        assert response.status_code == 409
        assert "stopped" in response.json()["detail"]

    def test_infeasible_placement_is_200(self, mock_service):
        mock_service.place.return_value = Infeasible(
            node_id="n1",
            reason=InfeasibleReason.INSUFFICIENT_CAPACITY,
            detail="no eligible hosts",
        )
        with TestClient(_make_test_app(mock_service)) as client:
            response = client.post("/api/v1/nodes/n1/place")
        assert response.status_code == 200
        body = response.json()
        assert body["placed"] is False
        assert body["reason"] == "insufficient_capacity"

    def test_heartbeat_passes_telemetry(self, mock_service):
        mock_service.host_heartbeat.return_value = []
        with TestClient(_make_test_app(mock_service)) as client:
            response = client.post(
                "/api/v1/hosts/h1/heartbeat",
                json={"telemetry": [{"node_id": "n1", "running": True, "sync_height": 5}]},
            )
        assert response.status_code == 200
        host_id, timestamp, telemetry = mock_service.host_heartbeat.await_args.args
        assert host_id == "h1"
        assert timestamp is None
        assert telemetry[0].node_id == "n1"
        assert telemetry[0].sync_height == 5


# ============================================================================
# END TO END
# ============================================================================

class TestFleetApi:

    HOST = {
        "host_id": "h1",
        "name": "h1",
        "region": "eu-central",
        "capacity": {"cpu": 32, "memory": 512, "disk": 10000, "ips": 4},
    }

    def test_node_lifecycle_over_http(self, real_service):
        with TestClient(_make_test_app(real_service)) as client:
            assert client.post("/api/v1/hosts", json=self.HOST).status_code == 201
            assert client.post("/api/v1/hosts", json=self.HOST).status_code == 400

            created = client.post(
                "/api/v1/nodes",
                json={"node_type_id": "ethereum-node", "node_id": "n1", "org_id": "acme"},
            )
            assert created.status_code == 201
            body = created.json()
            assert body["placement"]["placed"] is True
            assert body["placement"]["host_id"] == "h1"
            assert body["node"]["properties"]["network"] == "mainnet"

            heartbeat = client.post(
                "/api/v1/hosts/h1/heartbeat",
                json={"telemetry": [{"node_id": "n1", "running": True, "sync_height": 7, "chain_height": 7}]},
            )
            assert heartbeat.json()[0]["status"] == NodeStatus.SYNCED.value

            status = client.get("/api/v1/nodes/n1/status").json()
            assert status == {"node_id": "n1", "status": "synced", "stake_status": None, "host_id": "h1"}

            [util] = client.get("/api/v1/hosts/utilization").json()
            assert util["used"]["cpu"] == 8
            assert util["status"] == "online"

            assert client.get("/api/v1/node-types/ethereum-node/regions").json() == ["eu-central"]
            assert client.get("/api/v1/hosts/node-counts").json() == {"h1": 1}

            assert client.delete("/api/v1/hosts/h1").status_code == 409
            assert client.delete("/api/v1/nodes/n1").status_code == 204
            assert client.get("/api/v1/nodes/n1").status_code == 404
            assert client.delete("/api/v1/hosts/h1").status_code == 204

    def test_unplaceable_node_is_created_unassigned(self, real_service):
        with TestClient(_make_test_app(real_service)) as client:
            response = client.post("/api/v1/nodes", json={"node_type_id": "solana-validator"})
        assert response.status_code == 201
        body = response.json()
        assert body["placement"]["placed"] is False
        assert body["node"]["host_id"] is None
        assert body["node"]["stake_status"] == "available"

    def test_node_types(self, real_service):
        with TestClient(_make_test_app(real_service)) as client:
            listed = client.get("/api/v1/node-types").json()
            one = client.get("/api/v1/node-types/solana-validator")
            missing = client.get("/api/v1/node-types/nope")

        assert "solana-validator" in [t["type_id"] for t in listed]
        assert one.json()["requirements"]["cpu"] == 16
        assert missing.status_code == 404

    def test_reconciler_status(self, real_service):
        with TestClient(_make_test_app(real_service)) as client:
            body = client.get("/api/v1/reconciler/status").json()
        assert body["status"] == "stopped"
        assert body["metrics"]["pending_replacements"] == 0
        assert "placements" in body["scheduler"]
