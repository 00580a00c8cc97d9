"""Computation graph models - nodes, edges, snapshots and render views."""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

logger = logging.getLogger(__name__)

NodeGroup = Literal["input", "intermediate", "output", "sensitivity"]

NODE_GROUPS: tuple[str, ...] = ("input", "intermediate", "output", "sensitivity")

# Cache key for the aggregate graph (no subject id)
ALL_SUBJECTS = "all"


def subject_key(subject_id: str | None) -> str:
    """Map a subject id (or None for the aggregate graph) to its cache key."""
    return subject_id or ALL_SUBJECTS


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (trailing 'Z' allowed)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _endpoint_id(value: Any) -> str:
    # Force libraries replace link endpoints with node objects in place
    if isinstance(value, dict):
        return str(value["id"])
    return str(value)


def _require_object(data: Any, kind: str) -> None:
    if not isinstance(data, dict):
        raise TypeError(f"{kind} must be an object, got {type(data).__name__}")


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    result = float(value)
    if math.isnan(result):
        return None
    return result


@dataclass
class Position:
    """Mutable 2D layout coordinate, written in place by the layout engine."""

    x: float = 0.0
    y: float = 0.0


@dataclass
class GraphNode:
    """
    A single computation step in a pricing graph.

    Example: spot (input) --> mul --> price (output)
    """

    id: str
    label: str
    type: str  # input, add, mul, exp, log, sqrt, div, output, custom_<n>
    group: NodeGroup = "intermediate"
    value: float | None = None
    is_sensitivity_target: bool = False

    # Assigned by the layout engine; None until the first layout pass
    position: Position | None = None

    def to_dict(self) -> dict:
        """Convert to the wire/JSON representation."""
        data = {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "group": self.group,
            "value": self.value,
            "is_sensitivity_target": self.is_sensitivity_target,
        }
        if self.position is not None:
            data["x"] = self.position.x
            data["y"] = self.position.y
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "GraphNode":
        """Create from the wire representation."""
        _require_object(data, "Node")
        group = data.get("group") or "intermediate"
        if group not in NODE_GROUPS:
            group = "intermediate"

        position = None
        if data.get("x") is not None and data.get("y") is not None:
            position = Position(float(data["x"]), float(data["y"]))

        return cls(
            id=str(data["id"]),
            label=str(data.get("label") or data["id"]),
            type=str(data.get("type") or data.get("node_type") or "custom_0"),
            group=group,
            value=_optional_float(data.get("value")),
            is_sensitivity_target=bool(data.get("is_sensitivity_target", False)),
            position=position,
        )


@dataclass
class GraphEdge:
    """Directed dependency edge: source feeds into target."""

    source: str
    target: str
    weight: float = 1.0

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.target)

    def to_dict(self) -> dict:
        return {"source": self.source, "target": self.target, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: dict) -> "GraphEdge":
        _require_object(data, "Link")
        weight = data.get("weight")
        return cls(
            source=_endpoint_id(data["source"]),
            target=_endpoint_id(data["target"]),
            weight=1.0 if weight is None else float(weight),
        )


@dataclass
class GraphMetadata:
    """Summary statistics for a snapshot."""

    node_count: int = 0
    edge_count: int = 0
    depth: int | None = None  # Longest path length in edges; computed when absent
    generated_at: datetime | None = None
    subject_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "subject_id": self.subject_id,
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "depth": self.depth,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GraphMetadata":
        _require_object(data, "Metadata")
        depth = data.get("depth")
        return cls(
            node_count=int(data.get("node_count", 0)),
            edge_count=int(data.get("edge_count", 0)),
            depth=None if depth is None else int(depth),
            generated_at=parse_datetime(data.get("generated_at")),
            subject_id=data.get("subject_id") or data.get("trade_id"),
        )


@dataclass
class GraphSnapshot:
    """
    Complete computation graph for one subject key.

    Node ids are unique and every edge references existing nodes;
    `from_dict` enforces both by dropping offenders.
    """

    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    metadata: GraphMetadata = field(default_factory=GraphMetadata)

    _index: dict[str, GraphNode] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self.reindex()

    def reindex(self) -> None:
        """Rebuild the id lookup after the node list was replaced."""
        self._index = {node.id: node for node in self.nodes}

    def find_node(self, node_id: str) -> GraphNode | None:
        return self._index.get(node_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    @property
    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def edge_keys(self) -> set[tuple[str, str]]:
        return {edge.key for edge in self.edges}

    def to_dict(self) -> dict:
        """Convert to the wire format (edges under 'links')."""
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "links": [edge.to_dict() for edge in self.edges],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict, subject_id: str | None = None) -> "GraphSnapshot":
        """Decode a `GET /graph` payload.

        Raises:
            KeyError, TypeError, ValueError: payload does not describe a graph
        """
        if not isinstance(data, dict):
            raise TypeError(f"Graph payload must be an object, got {type(data).__name__}")

        nodes: list[GraphNode] = []
        seen: set[str] = set()
        raw_nodes = data.get("nodes") or []
        raw_links = data.get("links", data.get("edges")) or []
        for name, value in (("nodes", raw_nodes), ("links", raw_links)):
            if not isinstance(value, list):
                raise TypeError(f"Graph '{name}' must be a list, got {type(value).__name__}")

        for raw in raw_nodes:
            node = GraphNode.from_dict(raw)
            if node.id in seen:
                logger.warning(f"Dropping duplicate node id '{node.id}'")
                continue
            seen.add(node.id)
            nodes.append(node)

        edges: list[GraphEdge] = []
        dropped = 0
        for raw in raw_links:
            edge = GraphEdge.from_dict(raw)
            if edge.source not in seen or edge.target not in seen:
                dropped += 1
                continue
            edges.append(edge)
        if dropped:
            logger.debug(f"Dropped {dropped} dangling edges")

        metadata = GraphMetadata.from_dict(data.get("metadata") or {})
        metadata.node_count = len(nodes)
        metadata.edge_count = len(edges)
        if metadata.subject_id is None:
            metadata.subject_id = subject_id

        return cls(nodes=nodes, edges=edges, metadata=metadata)


@dataclass
class NodeUpdate:
    """A single node value delta pushed from the live feed."""

    id: str
    value: float | None
    delta: float | None = None  # Informational; recomputed against the cache

    def to_dict(self) -> dict:
        return {"id": self.id, "value": self.value, "delta": self.delta}


@dataclass
class UpdateMessage:
    """Differential update for one subject."""

    subject_id: str
    node_updates: list[NodeUpdate] = field(default_factory=list)


@dataclass
class ValueChange:
    """Applied value change; also the per-node history entry."""

    node_id: str
    old_value: float | None
    new_value: float | None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def delta(self) -> float | None:
        if self.old_value is None or self.new_value is None:
            return None
        return self.new_value - self.old_value

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "delta": self.delta,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ViewNode:
    """A node as handed to a renderer: a graph node or a cluster aggregate."""

    id: str
    label: str
    group: str
    x: float = 0.0
    y: float = 0.0
    value: float | None = None
    is_sensitivity_target: bool = False
    is_cluster: bool = False
    member_count: int = 1

    @classmethod
    def from_node(cls, node: GraphNode) -> "ViewNode":
        pos = node.position or Position()
        return cls(
            id=node.id,
            label=node.label,
            group=node.group,
            x=pos.x,
            y=pos.y,
            value=node.value,
            is_sensitivity_target=node.is_sensitivity_target,
        )


@dataclass
class ViewEdge:
    """Edge between two visible nodes. Weight counts underlying edges for clusters."""

    source: str
    target: str
    weight: float = 1.0

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.target)


@dataclass
class GraphView:
    """What is currently visible: full graph, or cluster-space when LOD is on."""

    nodes: list[ViewNode] = field(default_factory=list)
    edges: list[ViewEdge] = field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: GraphSnapshot) -> "GraphView":
        return cls(
            nodes=[ViewNode.from_node(n) for n in snapshot.nodes],
            edges=[ViewEdge(e.source, e.target, e.weight) for e in snapshot.edges],
        )

    @property
    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    def edge_keys(self) -> set[tuple[str, str]]:
        return {edge.key for edge in self.edges}

    def to_dict(self) -> dict:
        return {
            "nodes": [
                {
                    "id": n.id,
                    "label": n.label,
                    "group": n.group,
                    "x": n.x,
                    "y": n.y,
                    "value": n.value,
                    "is_sensitivity_target": n.is_sensitivity_target,
                    "is_cluster": n.is_cluster,
                    "member_count": n.member_count,
                }
                for n in self.nodes
            ],
            "links": [
                {"source": e.source, "target": e.target, "weight": e.weight}
                for e in self.edges
            ],
        }
