"""Level-of-detail clustering."""

from calcgraph.lod.clustering import Cluster, LODEngine, build_clusters

__all__ = ["Cluster", "LODEngine", "build_clusters"]
