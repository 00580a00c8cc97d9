"""Raster backend: one bitmap surface redrawn as a whole.

Hit-testing cannot ask the surface which element was clicked, so the
backend keeps a uniform grid index of node positions.
"""

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from calcgraph.models import GraphView, ValueChange, ViewEdge
from calcgraph.render.base import GraphRenderer, RenderMode, node_color, node_radius

logger = logging.getLogger(__name__)


@dataclass
class Sprite:
    id: str
    x: float
    y: float
    radius: float
    fill: str
    value: float | None = None
    is_cluster: bool = False


class SpatialGrid:
    """Uniform grid over node centres for point queries."""

    def __init__(self, cell_size: float = 32.0) -> None:
        self.cell_size = cell_size
        self._cells: dict[tuple[int, int], list[Sprite]] = defaultdict(list)

    def _cell(self, x: float, y: float) -> tuple[int, int]:
        return (math.floor(x / self.cell_size), math.floor(y / self.cell_size))

    def rebuild(self, sprites: Iterable[Sprite]) -> None:
        self._cells.clear()
        for sprite in sprites:
            self._cells[self._cell(sprite.x, sprite.y)].append(sprite)

    def query(self, x: float, y: float) -> Sprite | None:
        """Nearest sprite whose disc contains (x, y)."""
        cx, cy = self._cell(x, y)
        best: Sprite | None = None
        best_d2 = math.inf
        for gx in (cx - 1, cx, cx + 1):
            for gy in (cy - 1, cy, cy + 1):
                for sprite in self._cells.get((gx, gy), ()):
                    d2 = (x - sprite.x) ** 2 + (y - sprite.y) ** 2
                    if d2 <= sprite.radius**2 and d2 < best_d2:
                        best, best_d2 = sprite, d2
        return best

    def __len__(self) -> int:
        return sum(len(cell) for cell in self._cells.values())


class RasterRenderer(GraphRenderer):
    """
    Immediate-mode renderer.

    Every change redraws the full frame; frames_drawn counts redraws.
    """

    mode = RenderMode.RASTER

    def __init__(self, zoom_min: float | None = None, zoom_max: float | None = None) -> None:
        super().__init__(zoom_min, zoom_max)
        self.sprites: dict[str, Sprite] = {}
        self.edges: list[ViewEdge] = []
        self.highlighted: set[str] = set()
        self.emphasis: set[str] | None = None
        self.frames_drawn = 0
        self.index = SpatialGrid()

    def _redraw(self) -> None:
        self.frames_drawn += 1

    def _reindex(self) -> None:
        # Cell must cover the largest disc so a 3x3 neighbourhood query is exhaustive
        largest = max((s.radius for s in self.sprites.values()), default=16.0)
        self.index.cell_size = max(2 * largest, 1.0)
        self.index.rebuild(self.sprites.values())

    def render(self, view: GraphView) -> None:
        self.sprites = {
            node.id: Sprite(
                id=node.id,
                x=node.x,
                y=node.y,
                radius=node_radius(node),
                fill=node_color(node),
                value=node.value,
                is_cluster=node.is_cluster,
            )
            for node in view.nodes
        }
        self.edges = list(view.edges)
        self.highlighted &= set(self.sprites)
        self._reindex()
        self._redraw()
        logger.debug(f"Raster render: {len(self.sprites)} nodes, {len(self.edges)} edges")

    def update_nodes(self, changes: Iterable[ValueChange]) -> int:
        touched = 0
        for change in changes:
            sprite = self.sprites.get(change.node_id)
            if sprite is None:
                continue
            if not sprite.is_cluster:
                sprite.value = change.new_value
            self.highlighted.add(sprite.id)
            touched += 1
        if touched:
            self._redraw()
        return touched

    def update_positions(self, positions: Mapping[str, tuple[float, float]]) -> None:
        for node_id, (x, y) in positions.items():
            sprite = self.sprites.get(node_id)
            if sprite is not None:
                sprite.x, sprite.y = x, y
        self._reindex()
        self._redraw()

    def clear_highlights(self) -> None:
        if self.highlighted:
            self.highlighted.clear()
            self._redraw()

    def set_emphasis(self, node_ids: Iterable[str] | None) -> None:
        self.emphasis = None if node_ids is None else set(node_ids)
        self._redraw()

    def hit_test(self, point: tuple[float, float]) -> str | None:
        wx, wy = self.transform.to_world(*point)
        sprite = self.index.query(wx, wy)
        return sprite.id if sprite else None

    def clear(self) -> None:
        self.sprites = {}
        self.edges = []
        self.highlighted.clear()
        self.emphasis = None
        self.index.rebuild(())
