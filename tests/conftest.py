"""Pytest configuration and fixtures."""

import copy
from typing import Callable

import httpx
import pytest

from calcgraph.config import Settings, get_test_settings
from calcgraph.models import GraphEdge, GraphMetadata, GraphNode, GraphSnapshot, Position
from calcgraph.pipeline import ManualScheduler
from calcgraph.sync import GraphManager


# Small Black-Scholes style pricing graph:
#
#   spot -> log_moneyness -> d1 -> price
#   vol  -> variance -----> d1
#           variance -> vega
#   rate -> d1, rate -> discount -> price
PRICING_GRAPH: dict = {
    "nodes": [
        {"id": "spot", "label": "Spot", "type": "input", "group": "input",
         "value": 100.0, "is_sensitivity_target": True},
        {"id": "vol", "label": "Volatility", "type": "input", "group": "input",
         "value": 0.2, "is_sensitivity_target": True},
        {"id": "rate", "label": "Rate", "type": "input", "group": "input", "value": 0.05},
        {"id": "log_moneyness", "label": "ln(S/K)", "type": "log", "group": "intermediate",
         "value": 0.0},
        {"id": "variance", "label": "sigma^2 t", "type": "mul", "group": "intermediate",
         "value": 0.04},
        {"id": "discount", "label": "exp(-rt)", "type": "exp", "group": "intermediate",
         "value": 0.95},
        {"id": "d1", "label": "d1", "type": "div", "group": "intermediate", "value": 0.35},
        {"id": "price", "label": "Price", "type": "output", "group": "output", "value": 10.45},
        {"id": "vega", "label": "Vega", "type": "output", "group": "output", "value": 37.5},
    ],
    "links": [
        {"source": "spot", "target": "log_moneyness"},
        {"source": "vol", "target": "variance"},
        {"source": "rate", "target": "d1"},
        {"source": "rate", "target": "discount"},
        {"source": "log_moneyness", "target": "d1"},
        {"source": "variance", "target": "d1"},
        {"source": "variance", "target": "vega"},
        {"source": "d1", "target": "price"},
        {"source": "discount", "target": "price"},
    ],
    "metadata": {
        "node_count": 9,
        "edge_count": 9,
        "depth": 3,
        "generated_at": "2024-01-15T10:30:00Z",
        "trade_id": "T1",
    },
}

TEST_BASE_URL = "http://graph.test/api"


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with defaults."""
    return get_test_settings()


@pytest.fixture
def graph_payload() -> dict:
    """Wire payload for the sample pricing graph (safe to mutate)."""
    return copy.deepcopy(PRICING_GRAPH)


@pytest.fixture
def snapshot(graph_payload: dict) -> GraphSnapshot:
    """Decoded sample pricing graph for subject T1."""
    return GraphSnapshot.from_dict(graph_payload, subject_id="T1")


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Virtual clock for batch/settle timing."""
    return ManualScheduler()


@pytest.fixture
def graph_transport(graph_payload: dict) -> httpx.MockTransport:
    """
    Fake graph source.

    - subject "missing" -> 404 with a JSON error message
    - subject "broken"  -> 200 with a non-JSON body
    - subject "garbled" -> 200 with JSON that is not a graph
    - anything else     -> the sample pricing graph
    """

    def handler(request: httpx.Request) -> httpx.Response:
        subject_id = request.url.params.get("subject_id")
        if subject_id == "missing":
            return httpx.Response(404, json={"message": "Trade not found"})
        if subject_id == "broken":
            return httpx.Response(200, text="<html>gateway</html>")
        if subject_id == "garbled":
            return httpx.Response(200, json={"nodes": ["spot"], "metadata": "oops"})
        return httpx.Response(200, json=graph_payload)

    return httpx.MockTransport(handler)


@pytest.fixture
def manager(graph_transport: httpx.MockTransport) -> GraphManager:
    """GraphManager wired to the fake graph source."""
    client = httpx.AsyncClient(transport=graph_transport)
    return GraphManager(base_url=TEST_BASE_URL, client=client)


@pytest.fixture
def make_layered_snapshot() -> Callable[..., GraphSnapshot]:
    """Factory for larger synthetic graphs with pre-assigned positions.

    Nodes are laid out on a grid of `spacing` world units, one row band per
    group, and chained left to right within each row.
    """

    def factory(
        per_group: int,
        groups: tuple[str, ...] = ("input", "intermediate", "output"),
        columns: int = 10,
        spacing: float = 10.0,
    ) -> GraphSnapshot:
        nodes: list[GraphNode] = []
        edges: list[GraphEdge] = []
        for g, group in enumerate(groups):
            row_offset = g * (per_group // columns + 2) * spacing
            previous = None
            for i in range(per_group):
                node_id = f"{group}-{i}"
                nodes.append(
                    GraphNode(
                        id=node_id,
                        label=node_id,
                        type="input" if group == "input" else "add",
                        group=group,
                        value=float(i),
                        position=Position((i % columns) * spacing, row_offset + (i // columns) * spacing),
                    )
                )
                if previous is not None:
                    edges.append(GraphEdge(previous, node_id))
                previous = node_id
        for g in range(len(groups) - 1):
            for i in range(per_group):
                edges.append(GraphEdge(f"{groups[g]}-{i}", f"{groups[g + 1]}-{i}"))
        metadata = GraphMetadata(node_count=len(nodes), edge_count=len(edges))
        return GraphSnapshot(nodes=nodes, edges=edges, metadata=metadata)

    return factory
