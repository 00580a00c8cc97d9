"""Unit tests for API endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from calcgraph.api.main import create_app
from calcgraph.api.routes import CriticalPathResponse, HealthResponse, LoadRequest, LODRequest
from calcgraph.engine import GraphEngine
from calcgraph.layout import ForceLayout
from calcgraph.lod import LODEngine
from calcgraph.models import GraphSnapshot
from calcgraph.pipeline import ManualScheduler
from calcgraph.sync import GraphManager


@pytest.fixture
def engine(manager: GraphManager, scheduler: ManualScheduler) -> GraphEngine:
    """Engine over the fake graph source; clusters anything above five nodes."""
    return GraphEngine(
        manager=manager,
        layout=ForceLayout(seed=11),
        lod=LODEngine(threshold=5, min_cluster_size=5, cluster_radius=50),
        scheduler=scheduler,
        auto_lod=False,
    )


@pytest.fixture
def client(engine: GraphEngine):
    app = create_app(engine)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


@pytest.fixture
def loaded_client(client: TestClient) -> TestClient:
    response = client.post("/engine/load", json={"subject_id": "T1"})
    assert response.status_code == 200
    return client


class TestModels:
    """Tests for request/response models."""

    def test_health_response_defaults(self) -> None:
        resp = HealthResponse(status="healthy", graph_loaded=False)
        assert resp.version == "0.1.0"

    def test_load_request_defaults(self) -> None:
        assert LoadRequest().subject_id is None

    def test_lod_request_flip(self) -> None:
        assert LODRequest().enabled is None

    def test_critical_path_response(self) -> None:
        resp = CriticalPathResponse(path=["a", "b"], length=1, projected=["a", "b"])
        assert resp.error is None


class TestHealth:
    """Tests for /health."""

    def test_before_load(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "graph_loaded": False, "version": "0.1.0"}

    def test_after_load(self, loaded_client: TestClient) -> None:
        assert loaded_client.get("/health").json()["graph_loaded"] is True


class TestLoad:
    """Tests for loading and viewing a snapshot."""

    def test_load_success(self, client: TestClient) -> None:
        response = client.post("/engine/load", json={"subject_id": "T1"})

        assert response.status_code == 200
        data = response.json()
        assert data["subject_id"] == "T1"
        assert data["node_count"] == 9
        assert data["edge_count"] == 9
        assert data["depth"] == 3
        assert data["render_mode"] == "vector"
        assert data["lod_enabled"] is False

    def test_load_not_found_is_bad_gateway(self, client: TestClient) -> None:
        response = client.post("/engine/load", json={"subject_id": "missing"})

        assert response.status_code == 502
        assert "Trade not found" in response.json()["detail"]

    def test_load_malformed_graph_is_bad_gateway(self, client: TestClient) -> None:
        response = client.post("/engine/load", json={"subject_id": "garbled"})

        assert response.status_code == 502
        assert "Malformed graph payload" in response.json()["detail"]
        assert client.get("/health").json()["graph_loaded"] is False

    def test_view_requires_graph(self, client: TestClient) -> None:
        assert client.get("/engine/view").status_code == 409

    def test_view(self, loaded_client: TestClient) -> None:
        data = loaded_client.get("/engine/view").json()

        assert data["render_mode"] == "vector"
        assert len(data["nodes"]) == 9
        assert len(data["edges"]) == 9
        spot = next(n for n in data["nodes"] if n["id"] == "spot")
        assert spot["is_sensitivity_target"] is True
        assert spot["value"] == 100.0


class TestLOD:
    """Tests for clustering endpoints."""

    def test_enable_and_disable(self, loaded_client: TestClient) -> None:
        data = loaded_client.post("/engine/lod", json={"enabled": True}).json()
        assert data["lod_enabled"] is True
        assert {n["id"] for n in data["nodes"]} == {
            "cluster:input:0", "cluster:intermediate:0", "cluster:output:0",
        }
        assert all(n["is_cluster"] for n in data["nodes"])

        data = loaded_client.post("/engine/lod", json={}).json()
        assert data["lod_enabled"] is False
        assert len(data["nodes"]) == 9

    def test_expand_and_collapse(self, loaded_client: TestClient) -> None:
        loaded_client.post("/engine/lod", json={"enabled": True})

        expanded = loaded_client.post("/engine/clusters/cluster:input:0/expand").json()
        ids = {n["id"] for n in expanded["nodes"]}
        assert {"spot", "vol", "rate"} <= ids

        collapsed = loaded_client.post("/engine/clusters/cluster:input:0/collapse").json()
        assert "cluster:input:0" in {n["id"] for n in collapsed["nodes"]}

    def test_unknown_cluster(self, loaded_client: TestClient) -> None:
        loaded_client.post("/engine/lod", json={"enabled": True})
        response = loaded_client.post("/engine/clusters/cluster:nope:0/expand")
        assert response.status_code == 404


class TestAnalysis:
    """Tests for path analysis and search endpoints."""

    def test_critical_path(self, loaded_client: TestClient) -> None:
        data = loaded_client.get("/engine/critical-path").json()

        assert data["path"] == ["spot", "log_moneyness", "d1", "price"]
        assert data["length"] == 3
        assert data["projected"] == data["path"]
        assert data["error"] is None

    def test_critical_path_projected(self, loaded_client: TestClient) -> None:
        loaded_client.post("/engine/lod", json={"enabled": True})
        data = loaded_client.get("/engine/critical-path").json()
        assert data["projected"] == [
            "cluster:input:0", "cluster:intermediate:0", "cluster:output:0",
        ]

    def test_critical_path_cycle(self, engine: GraphEngine, client: TestClient) -> None:
        engine.show(GraphSnapshot.from_dict({
            "nodes": [{"id": "a", "type": "add"}, {"id": "b", "type": "add"}],
            "links": [{"source": "a", "target": "b"}, {"source": "b", "target": "a"}],
        }))

        response = client.get("/engine/critical-path")

        assert response.status_code == 200
        data = response.json()
        assert data["path"] == []
        assert "cycle" in data["error"].lower()

    def test_sensitivity_paths(self, loaded_client: TestClient) -> None:
        data = loaded_client.get("/engine/sensitivity-paths").json()
        assert {(p["target"], p["output"]): p["path"] for p in data} == {
            ("spot", "price"): ["spot", "log_moneyness", "d1", "price"],
            ("vol", "price"): ["vol", "variance", "d1", "price"],
            ("vol", "vega"): ["vol", "variance", "vega"],
        }

    def test_search(self, loaded_client: TestClient) -> None:
        data = loaded_client.get("/engine/search", params={"q": "VOL"}).json()
        assert data["query"] == "VOL"
        assert [n["id"] for n in data["results"]] == ["vol"]

    def test_blank_search(self, loaded_client: TestClient) -> None:
        assert loaded_client.get("/engine/search").json()["results"] == []


class TestUpdates:
    """Tests for subscriptions, the update stream and history."""

    def test_subscribe_and_unsubscribe(self, engine: GraphEngine, client: TestClient) -> None:
        assert client.put("/engine/subscriptions/T1").json() == {
            "subject_id": "T1", "subscribed": True,
        }
        assert engine.manager.is_subscribed("T1")

        assert client.delete("/engine/subscriptions/T1").json()["subscribed"] is False
        assert not engine.manager.is_subscribed("T1")

    def test_stream_then_history(
        self, loaded_client: TestClient, scheduler: ManualScheduler
    ) -> None:
        loaded_client.put("/engine/subscriptions/T1")
        message = json.dumps({
            "type": "graph_update",
            "data": {"subject_id": "T1", "updated_nodes": [{"id": "spot", "value": 104.0}]},
        })

        with loaded_client.websocket_connect("/engine/updates") as ws:
            ws.send_text(message)
            assert ws.receive_json() == {"accepted": True, "pending": 1}
            ws.send_text("not json")
            assert ws.receive_json() == {"accepted": False, "pending": 1}

        scheduler.advance(0.05)

        history = loaded_client.get("/engine/history/spot").json()
        assert len(history) == 1
        assert history[0]["old_value"] == 100.0
        assert history[0]["new_value"] == 104.0
        assert history[0]["delta"] == 4.0

    def test_history_unknown_node(self, loaded_client: TestClient) -> None:
        assert loaded_client.get("/engine/history/nope", params={"subject_id": "T1"}).json() == []
