"""Path analysis over the computation DAG.

Critical path: longest dependency chain (topological order + DP).
Sensitivity paths: minimum-hop routes from sensitivity targets to outputs.

Both run on the full, uncompressed graph. Projecting results into
cluster space is left to the caller.
"""

import logging
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from calcgraph.errors import CycleError
from calcgraph.models import GraphEdge, GraphNode, GraphSnapshot

logger = logging.getLogger(__name__)


@dataclass
class CriticalPath:
    """Result of the longest-path search."""

    path: list[str] = field(default_factory=list)
    distances: dict[str, int] = field(default_factory=dict)
    error: CycleError | None = None

    @property
    def length(self) -> int:
        """Number of edges on the path."""
        return max(len(self.path) - 1, 0)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SensitivityPath:
    """Minimum-hop route from a sensitivity target to an output."""

    target: str
    output: str
    path: list[str]

    def to_dict(self) -> dict:
        return {"from": self.target, "to": self.output, "path": self.path}


def _unpack(
    graph: GraphSnapshot | tuple[Sequence[GraphNode], Sequence[GraphEdge]],
) -> tuple[Sequence[GraphNode], Sequence[GraphEdge]]:
    if isinstance(graph, GraphSnapshot):
        return graph.nodes, graph.edges
    nodes, edges = graph
    return nodes, edges


def build_adjacency(
    node_ids: Iterable[str],
    edges: Iterable[GraphEdge],
) -> tuple[dict[str, list[str]], dict[str, int]]:
    """Forward adjacency and in-degree maps.

    Successor lists keep edge order; edges touching unknown ids are skipped.
    Parallel edges count once per edge.
    """
    adjacency: dict[str, list[str]] = {}
    in_degree: dict[str, int] = {}
    for node_id in node_ids:
        adjacency[node_id] = []
        in_degree[node_id] = 0

    for edge in edges:
        if edge.source not in adjacency or edge.target not in adjacency:
            continue
        adjacency[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    return adjacency, in_degree


def topological_order(
    adjacency: dict[str, list[str]],
    in_degree: dict[str, int],
) -> list[str]:
    """Kahn's algorithm; returns fewer ids than nodes when a cycle exists."""
    remaining = dict(in_degree)
    queue = deque(node_id for node_id, degree in remaining.items() if degree == 0)
    order: list[str] = []

    while queue:
        current = queue.popleft()
        order.append(current)
        for successor in adjacency[current]:
            remaining[successor] -= 1
            if remaining[successor] == 0:
                queue.append(successor)

    return order


def critical_path(
    graph: GraphSnapshot | tuple[Sequence[GraphNode], Sequence[GraphEdge]],
    strict: bool = False,
) -> CriticalPath:
    """
    Find the longest dependency chain in the DAG.

    Algorithm:
    1. Topologically order nodes by repeated removal of zero in-degree nodes
    2. If not every node was ordered, the graph has a cycle
    3. dist[n] = max over predecessors p of dist[p] + 1, recording the
       maximising predecessor (first one wins on ties)
    4. Walk predecessor links back from the node with the largest dist

    Args:
        graph: Snapshot, or a (nodes, edges) pair
        strict: Raise CycleError instead of returning it on the result

    Returns:
        CriticalPath; on a cycle the path is empty and `error` is set
    """
    nodes, edges = _unpack(graph)
    if not nodes:
        return CriticalPath()

    adjacency, in_degree = build_adjacency((n.id for n in nodes), edges)
    order = topological_order(adjacency, in_degree)

    if len(order) < len(adjacency):
        ordered = set(order)
        cyclic = [node_id for node_id in adjacency if node_id not in ordered]
        error = CycleError(len(adjacency), len(order), cyclic)
        if strict:
            raise error
        logger.warning(str(error))
        return CriticalPath(error=error)

    dist: dict[str, int] = {node_id: 0 for node_id in order}
    predecessor: dict[str, str | None] = {node_id: None for node_id in order}

    for current in order:
        for successor in adjacency[current]:
            if dist[current] + 1 > dist[successor]:
                dist[successor] = dist[current] + 1
                predecessor[successor] = current

    end = order[0]
    for node_id in order:
        if dist[node_id] > dist[end]:
            end = node_id

    path = [end]
    while dist[path[-1]] > 0:
        path.append(predecessor[path[-1]])
    path.reverse()

    logger.debug(f"Critical path: {len(path)} nodes, ending at '{end}'")
    return CriticalPath(path=path, distances=dist)


def compute_depth(
    graph: GraphSnapshot | tuple[Sequence[GraphNode], Sequence[GraphEdge]],
) -> int:
    """Longest path length in edges; 0 for empty or cyclic graphs."""
    result = critical_path(graph)
    return result.length


def _bfs_parents(source: str, adjacency: dict[str, list[str]]) -> dict[str, str | None]:
    # Nodes are marked on discovery, so each keeps its first discoverer
    parents: dict[str, str | None] = {source: None}
    queue = deque([source])
    while queue:
        current = queue.popleft()
        for neighbour in adjacency.get(current, []):
            if neighbour not in parents:
                parents[neighbour] = current
                queue.append(neighbour)
    return parents


def _walk_back(parents: dict[str, str | None], target: str) -> list[str]:
    path = [target]
    while parents[path[-1]] is not None:
        path.append(parents[path[-1]])
    path.reverse()
    return path


def find_path(
    graph: GraphSnapshot | tuple[Sequence[GraphNode], Sequence[GraphEdge]],
    source: str,
    target: str,
) -> list[str] | None:
    """Minimum-hop directed path from source to target, or None."""
    nodes, edges = _unpack(graph)
    adjacency, _ = build_adjacency((n.id for n in nodes), edges)
    if source not in adjacency or target not in adjacency:
        return None

    parents = _bfs_parents(source, adjacency)
    if target not in parents:
        return None
    return _walk_back(parents, target)


def sensitivity_paths(
    graph: GraphSnapshot | tuple[Sequence[GraphNode], Sequence[GraphEdge]],
) -> list[SensitivityPath]:
    """All (target, output, path) triples with a directed connection.

    Targets are nodes flagged `is_sensitivity_target`; outputs are nodes in
    the `output` group. Ties between equal-length paths break by edge order.
    """
    nodes, edges = _unpack(graph)
    adjacency, _ = build_adjacency((n.id for n in nodes), edges)

    targets = [n.id for n in nodes if n.is_sensitivity_target]
    outputs = [n.id for n in nodes if n.group == "output"]

    results: list[SensitivityPath] = []
    for target in targets:
        parents = _bfs_parents(target, adjacency)
        for output in outputs:
            if output in parents:
                results.append(
                    SensitivityPath(target=target, output=output, path=_walk_back(parents, output))
                )

    logger.debug(
        f"Sensitivity paths: {len(results)} found for "
        f"{len(targets)} targets x {len(outputs)} outputs"
    )
    return results
