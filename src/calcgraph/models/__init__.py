"""Calcgraph data models."""

from calcgraph.models.graph import (
    ALL_SUBJECTS,
    NODE_GROUPS,
    GraphEdge,
    GraphMetadata,
    GraphNode,
    GraphSnapshot,
    GraphView,
    NodeGroup,
    NodeUpdate,
    Position,
    UpdateMessage,
    ValueChange,
    ViewEdge,
    ViewNode,
    subject_key,
)

__all__ = [
    "ALL_SUBJECTS",
    "NODE_GROUPS",
    "NodeGroup",
    "Position",
    "GraphNode",
    "GraphEdge",
    "GraphMetadata",
    "GraphSnapshot",
    "NodeUpdate",
    "UpdateMessage",
    "ValueChange",
    "ViewNode",
    "ViewEdge",
    "GraphView",
    "subject_key",
]
