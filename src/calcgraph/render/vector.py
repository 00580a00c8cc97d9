"""Vector backend: one retained element per node and edge."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from calcgraph.models import GraphView, ValueChange
from calcgraph.render.base import (
    DEFAULT_STROKE,
    HIGHLIGHT_COLOR,
    GraphRenderer,
    RenderMode,
    node_color,
    node_radius,
)

logger = logging.getLogger(__name__)

DIMMED_OPACITY = 0.2


@dataclass
class NodeElement:
    id: str
    label: str
    x: float
    y: float
    radius: float
    fill: str
    value: float | None = None
    is_cluster: bool = False
    stroke: str = DEFAULT_STROKE
    stroke_width: float = 1.5
    opacity: float = 1.0
    highlighted: bool = False


@dataclass
class EdgeElement:
    source: str
    target: str
    width: float = 1.0
    opacity: float = 0.6


class VectorRenderer(GraphRenderer):
    """
    Retained-mode renderer.

    Value updates touch only the affected elements; elements_updated
    counts those per-element mutations.
    """

    mode = RenderMode.VECTOR

    def __init__(self, zoom_min: float | None = None, zoom_max: float | None = None) -> None:
        super().__init__(zoom_min, zoom_max)
        self.nodes: dict[str, NodeElement] = {}
        self.edges: list[EdgeElement] = []
        self.elements_updated = 0

    def render(self, view: GraphView) -> None:
        self.nodes = {
            node.id: NodeElement(
                id=node.id,
                label=node.label,
                x=node.x,
                y=node.y,
                radius=node_radius(node),
                fill=node_color(node),
                value=node.value,
                is_cluster=node.is_cluster,
            )
            for node in view.nodes
        }
        self.edges = [
            EdgeElement(source=e.source, target=e.target, width=1.0 + min(e.weight, 10.0) / 2)
            for e in view.edges
        ]
        logger.debug(f"Vector render: {len(self.nodes)} nodes, {len(self.edges)} edges")

    def update_nodes(self, changes: Iterable[ValueChange]) -> int:
        touched = 0
        for change in changes:
            element = self.nodes.get(change.node_id)
            if element is None:
                continue
            if not element.is_cluster:
                element.value = change.new_value
            element.highlighted = True
            element.stroke = HIGHLIGHT_COLOR
            element.stroke_width = 4.0
            touched += 1
        self.elements_updated += touched
        return touched

    def update_positions(self, positions: Mapping[str, tuple[float, float]]) -> None:
        for node_id, (x, y) in positions.items():
            element = self.nodes.get(node_id)
            if element is not None:
                element.x, element.y = x, y

    def clear_highlights(self) -> None:
        for element in self.nodes.values():
            if element.highlighted:
                element.highlighted = False
                element.stroke = DEFAULT_STROKE
                element.stroke_width = 1.5

    def set_emphasis(self, node_ids: Iterable[str] | None) -> None:
        if node_ids is None:
            for element in self.nodes.values():
                element.opacity = 1.0
            for edge in self.edges:
                edge.opacity = 0.6
            return
        keep = set(node_ids)
        for element in self.nodes.values():
            element.opacity = 1.0 if element.id in keep else DIMMED_OPACITY
        for edge in self.edges:
            on_path = edge.source in keep and edge.target in keep
            edge.opacity = 1.0 if on_path else DIMMED_OPACITY / 2

    def hit_test(self, point: tuple[float, float]) -> str | None:
        wx, wy = self.transform.to_world(*point)
        # Topmost (last drawn) element wins
        for element in reversed(list(self.nodes.values())):
            dx, dy = wx - element.x, wy - element.y
            if dx * dx + dy * dy <= element.radius * element.radius:
                return element.id
        return None

    def clear(self) -> None:
        self.nodes = {}
        self.edges = []
