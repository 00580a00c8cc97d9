"""Graph analysis: critical path, sensitivity paths, search."""

from calcgraph.analysis.paths import (
    CriticalPath,
    SensitivityPath,
    build_adjacency,
    compute_depth,
    critical_path,
    find_path,
    sensitivity_paths,
    topological_order,
)
from calcgraph.analysis.search import SearchCursor, count_nodes_by_type, search_nodes

__all__ = [
    "CriticalPath",
    "SensitivityPath",
    "build_adjacency",
    "topological_order",
    "critical_path",
    "compute_depth",
    "find_path",
    "sensitivity_paths",
    "SearchCursor",
    "search_nodes",
    "count_nodes_by_type",
]
