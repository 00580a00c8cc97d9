"""Renderer interface shared by the vector and raster backends.

Renderers keep a scene model (what would be drawn, where, in what style)
rather than drawing pixels; drawing is left to the presentation layer.
"""

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from calcgraph.config import settings
from calcgraph.models import GraphView, ValueChange, ViewNode

logger = logging.getLogger(__name__)


class RenderMode(str, Enum):
    """Rendering backend."""

    VECTOR = "vector"  # One element per node/edge
    RASTER = "raster"  # Single bitmap redrawn per frame


NODE_COLORS = {
    "input": "#3b82f6",
    "intermediate": "#6b7280",
    "output": "#22c55e",
    "sensitivity": "#f97316",
}
HIGHLIGHT_COLOR = "#f97316"
DEFAULT_STROKE = "#ffffff"


def node_color(node: ViewNode) -> str:
    if node.is_sensitivity_target:
        return NODE_COLORS["sensitivity"]
    return NODE_COLORS.get(node.group, NODE_COLORS["intermediate"])


def node_radius(node: ViewNode) -> float:
    if node.is_cluster:
        return min(40.0, 8.0 + 3.0 * math.sqrt(node.member_count))
    return 12.0 if node.is_sensitivity_target else 8.0


@dataclass
class Transform:
    """Pan/zoom viewport transform: screen = world * k + (x, y)."""

    x: float = 0.0
    y: float = 0.0
    k: float = 1.0

    @classmethod
    def identity(cls) -> "Transform":
        return cls()

    @classmethod
    def fit(
        cls,
        bounds: tuple[float, float, float, float],
        width: float,
        height: float,
        max_zoom: float = 2.0,
    ) -> "Transform":
        """Zoom-to-fit for world bounds (min_x, min_y, max_x, max_y) at 90% fill."""
        min_x, min_y, max_x, max_y = bounds
        bw = max(max_x - min_x, 1e-9)
        bh = max(max_y - min_y, 1e-9)
        k = min(0.9 * width / bw, 0.9 * height / bh, max_zoom)
        return cls(
            x=(width - k * bw) / 2 - k * min_x,
            y=(height - k * bh) / 2 - k * min_y,
            k=k,
        )

    def to_world(self, px: float, py: float) -> tuple[float, float]:
        return ((px - self.x) / self.k, (py - self.y) / self.k)

    def to_screen(self, wx: float, wy: float) -> tuple[float, float]:
        return (wx * self.k + self.x, wy * self.k + self.y)


@dataclass
class InteractionHandlers:
    """Pointer callbacks a renderer wires to its surface while attached."""

    on_click: Callable[[str], None] | None = None
    on_hover: Callable[[str | None], None] | None = None
    on_drag_start: Callable[[str], None] | None = None
    on_drag: Callable[[str, float, float], None] | None = None
    on_drag_end: Callable[[str], None] | None = None


class GraphRenderer(ABC):
    """
    Rendering backend contract.

    render(view)          full rebuild of the scene
    update_nodes(changes) value changes with a transient highlight
    hit_test(point)       screen point -> node id (or None)
    set_transform(pan, zoom)
    """

    mode: RenderMode

    def __init__(self, zoom_min: float | None = None, zoom_max: float | None = None) -> None:
        self.zoom_min = zoom_min or settings.zoom_min
        self.zoom_max = zoom_max or settings.zoom_max
        self.transform = Transform.identity()
        self.handlers: InteractionHandlers | None = None
        self._dragging: str | None = None

    @property
    def attached(self) -> bool:
        return self.handlers is not None

    def attach(self, handlers: InteractionHandlers) -> None:
        """Install interaction handlers on this backend's surface."""
        self.handlers = handlers
        logger.debug(f"{self.mode.value} renderer attached")

    def detach(self) -> None:
        """Tear down interaction handlers; the scene is discarded."""
        self.handlers = None
        self._dragging = None
        self.clear()
        logger.debug(f"{self.mode.value} renderer detached")

    def set_transform(self, pan: tuple[float, float], zoom: float) -> Transform:
        k = min(max(zoom, self.zoom_min), self.zoom_max)
        self.transform = Transform(x=pan[0], y=pan[1], k=k)
        return self.transform

    # ------------------------------------------------------------------
    # Pointer dispatch (only while attached)
    # ------------------------------------------------------------------

    def pointer_click(self, px: float, py: float) -> str | None:
        if self.handlers is None:
            return None
        node_id = self.hit_test((px, py))
        if node_id is not None and self.handlers.on_click:
            self.handlers.on_click(node_id)
        return node_id

    def pointer_move(self, px: float, py: float) -> str | None:
        if self.handlers is None:
            return None
        if self._dragging is not None:
            if self.handlers.on_drag:
                wx, wy = self.transform.to_world(px, py)
                self.handlers.on_drag(self._dragging, wx, wy)
            return self._dragging
        node_id = self.hit_test((px, py))
        if self.handlers.on_hover:
            self.handlers.on_hover(node_id)
        return node_id

    def pointer_down(self, px: float, py: float) -> str | None:
        if self.handlers is None:
            return None
        node_id = self.hit_test((px, py))
        if node_id is not None:
            self._dragging = node_id
            if self.handlers.on_drag_start:
                self.handlers.on_drag_start(node_id)
        return node_id

    def pointer_up(self) -> str | None:
        node_id, self._dragging = self._dragging, None
        if node_id is not None and self.handlers and self.handlers.on_drag_end:
            self.handlers.on_drag_end(node_id)
        return node_id

    # ------------------------------------------------------------------
    # Backend specifics
    # ------------------------------------------------------------------

    @abstractmethod
    def render(self, view: GraphView) -> None: ...

    @abstractmethod
    def update_nodes(self, changes: Iterable[ValueChange]) -> int:
        """Apply value changes and highlight the affected nodes.

        Returns:
            Number of visible nodes touched
        """

    @abstractmethod
    def update_positions(self, positions: Mapping[str, tuple[float, float]]) -> None: ...

    @abstractmethod
    def clear_highlights(self) -> None: ...

    @abstractmethod
    def set_emphasis(self, node_ids: Iterable[str] | None) -> None:
        """Dim everything except node_ids (None restores normal styling)."""

    @abstractmethod
    def hit_test(self, point: tuple[float, float]) -> str | None: ...

    @abstractmethod
    def clear(self) -> None: ...
