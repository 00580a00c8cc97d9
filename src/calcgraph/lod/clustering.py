"""Level-of-detail clustering for large graphs.

Nodes are partitioned by semantic group, then by a uniform spatial grid
over their layout coordinates:

- a group with at most 2 * min_cluster_size members becomes one cluster
- otherwise each grid cell (side = cluster_radius) holding at least
  min_cluster_size members becomes a cluster, and every undersized cell is
  merged into the nearest full-cell cluster of the same group
  (by centroid distance, ties to the earlier cluster)
- a group with no full cell at all becomes one cluster

Cluster ids are `cluster:<group>:<index>`, suffixed with `~<n>` when a graph
node already owns that id.

Edges are lifted into cluster space: endpoints map through the
node -> cluster table, intra-cluster edges disappear and parallel
inter-cluster edges collapse into one edge weighted by their count.
"""

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Callable

from calcgraph.config import settings
from calcgraph.errors import UnknownClusterError
from calcgraph.models import GraphNode, GraphSnapshot, GraphView, Position, ViewEdge, ViewNode

logger = logging.getLogger(__name__)

CLUSTER_PREFIX = "cluster"


@dataclass
class Cluster:
    """Aggregate of same-group nodes shown as a single view node."""

    id: str
    group: str
    member_ids: list[str] = field(default_factory=list)
    centroid: Position = field(default_factory=Position)
    expanded: bool = False

    @property
    def member_count(self) -> int:
        return len(self.member_ids)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "group": self.group,
            "member_ids": list(self.member_ids),
            "member_count": self.member_count,
            "centroid": {"x": self.centroid.x, "y": self.centroid.y},
            "expanded": self.expanded,
        }


def _coords(node: GraphNode) -> tuple[float, float]:
    pos = node.position
    return (pos.x, pos.y) if pos is not None else (0.0, 0.0)


def _centroid(nodes: Sequence[GraphNode]) -> Position:
    if not nodes:
        return Position()
    xs, ys = zip(*(_coords(n) for n in nodes))
    return Position(sum(xs) / len(xs), sum(ys) / len(ys))


def _cluster_id(group: str, index: int, taken: set[str]) -> str:
    base = cluster_id = f"{CLUSTER_PREFIX}:{group}:{index}"
    suffix = 1
    while cluster_id in taken:
        cluster_id = f"{base}~{suffix}"
        suffix += 1
    taken.add(cluster_id)
    return cluster_id


def build_clusters(
    nodes: Sequence[GraphNode],
    min_cluster_size: int,
    cluster_radius: float,
) -> list[Cluster]:
    """Partition nodes into clusters. Every node lands in exactly one cluster."""
    by_group: dict[str, list[GraphNode]] = defaultdict(list)
    for node in nodes:
        by_group[node.group].append(node)

    taken = {node.id for node in nodes}
    clusters: list[Cluster] = []
    for group, members in by_group.items():
        clusters.extend(_cluster_group(group, members, min_cluster_size, cluster_radius, taken))
    return clusters


def _cluster_group(
    group: str,
    members: list[GraphNode],
    min_cluster_size: int,
    cluster_radius: float,
    taken: set[str],
) -> list[Cluster]:
    def make(index: int, cell_members: list[GraphNode]) -> Cluster:
        return Cluster(
            id=_cluster_id(group, index, taken),
            group=group,
            member_ids=[n.id for n in cell_members],
            centroid=_centroid(cell_members),
        )

    if len(members) <= 2 * min_cluster_size:
        return [make(0, members)]

    cells: dict[tuple[int, int], list[GraphNode]] = defaultdict(list)
    for node in members:
        x, y = _coords(node)
        cells[(math.floor(x / cluster_radius), math.floor(y / cluster_radius))].append(node)

    full_keys = sorted(k for k, v in cells.items() if len(v) >= min_cluster_size)
    if not full_keys:
        return [make(0, members)]

    # Merge targets are fixed before any merge so the result does not depend on cell order
    anchors = [_centroid(cells[k]) for k in full_keys]
    buckets = [list(cells[k]) for k in full_keys]

    full = set(full_keys)
    for key in sorted(k for k in cells if k not in full):
        cell_members = cells[key]
        center = _centroid(cell_members)
        cx, cy = center.x, center.y
        nearest = min(
            range(len(anchors)),
            key=lambda i: ((anchors[i].x - cx) ** 2 + (anchors[i].y - cy) ** 2, i),
        )
        buckets[nearest].extend(cell_members)

    return [make(i, bucket) for i, bucket in enumerate(buckets)]


class LODEngine:
    """
    Cluster-space view of a snapshot with per-cluster expand/collapse.

    on_change(view) is called after every enable, disable, expand and
    collapse so the caller can re-render.
    """

    def __init__(
        self,
        threshold: int | None = None,
        min_cluster_size: int | None = None,
        cluster_radius: float | None = None,
        on_change: Callable[[GraphView], None] | None = None,
    ) -> None:
        self.threshold = threshold if threshold is not None else settings.lod_node_threshold
        self.min_cluster_size = min_cluster_size or settings.lod_min_cluster_size
        self.cluster_radius = cluster_radius or settings.lod_cluster_radius
        self.on_change = on_change

        self.snapshot: GraphSnapshot | None = None
        self.clusters: dict[str, Cluster] = {}
        self._membership: dict[str, str] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.clusters)

    def should_enable(self, node_count: int) -> bool:
        return node_count > self.threshold

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def enable(self, snapshot: GraphSnapshot) -> GraphView:
        """(Re)build clusters from the snapshot's current positions, all collapsed."""
        self.snapshot = snapshot
        clusters = build_clusters(snapshot.nodes, self.min_cluster_size, self.cluster_radius)
        self.clusters = {c.id: c for c in clusters}
        self._membership = {
            member_id: cluster.id for cluster in clusters for member_id in cluster.member_ids
        }
        logger.info(
            f"LOD enabled: {snapshot.node_count} nodes in {len(self.clusters)} clusters"
        )
        return self._changed()

    def disable(self) -> GraphView:
        """Drop all clusters; the view is the full original graph again."""
        was_enabled = self.enabled
        self.reset()
        if was_enabled:
            logger.info("LOD disabled")
        return self._changed()

    def reset(self) -> None:
        """Forget clusters without notifying."""
        self.clusters = {}
        self._membership = {}

    def _changed(self) -> GraphView:
        view = self.view()
        if self.on_change is not None:
            self.on_change(view)
        return view

    # ------------------------------------------------------------------
    # Expand / collapse
    # ------------------------------------------------------------------

    def get_cluster(self, cluster_id: str) -> Cluster:
        cluster = self.clusters.get(cluster_id)
        if cluster is None:
            raise UnknownClusterError(cluster_id)
        return cluster

    def expand(self, cluster_id: str) -> GraphView:
        self.get_cluster(cluster_id).expanded = True
        return self._changed()

    def collapse(self, cluster_id: str) -> GraphView:
        self.get_cluster(cluster_id).expanded = False
        return self._changed()

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def cluster_of(self, node_id: str) -> str | None:
        return self._membership.get(node_id)

    def visible_id(self, node_id: str) -> str:
        """Id under which node_id is currently drawn (itself or its collapsed cluster)."""
        cluster_id = self._membership.get(node_id)
        if cluster_id is None or self.clusters[cluster_id].expanded:
            return node_id
        return cluster_id

    def project_path(self, path: Iterable[str]) -> list[str]:
        """Map a node path into visible ids, merging consecutive repeats."""
        projected: list[str] = []
        for node_id in path:
            vid = self.visible_id(node_id)
            if not projected or projected[-1] != vid:
                projected.append(vid)
        return projected

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def view(self) -> GraphView:
        snapshot = self.snapshot
        if snapshot is None:
            return GraphView()
        if not self.enabled:
            return GraphView.from_snapshot(snapshot)

        nodes: list[ViewNode] = []
        for cluster in self.clusters.values():
            members = [snapshot.find_node(mid) for mid in cluster.member_ids]
            members = [m for m in members if m is not None]
            if cluster.expanded:
                nodes.extend(ViewNode.from_node(m) for m in members)
                continue
            cluster.centroid = _centroid(members)
            nodes.append(
                ViewNode(
                    id=cluster.id,
                    label=f"{cluster.group} ({cluster.member_count})",
                    group=cluster.group,
                    x=cluster.centroid.x,
                    y=cluster.centroid.y,
                    is_cluster=True,
                    member_count=cluster.member_count,
                )
            )

        edges: dict[tuple[str, str], ViewEdge] = {}
        for edge in snapshot.edges:
            source, target = self.visible_id(edge.source), self.visible_id(edge.target)
            if source == target:
                continue
            aggregated = source != edge.source or target != edge.target
            existing = edges.get((source, target))
            if existing is None:
                edges[(source, target)] = ViewEdge(source, target, 1.0 if aggregated else edge.weight)
            elif aggregated:
                existing.weight += 1.0

        return GraphView(nodes=nodes, edges=list(edges.values()))
