"""Force-directed layout simulation.

Velocity-Verlet style simulation with a cooling temperature (alpha):
- link attraction toward a target distance (80)
- charge repulsion over all node pairs (strength -300); large graphs
  aggregate distant nodes per grid cell, Barnes-Hut style
- centring on the viewport centre
- collision avoidance (radius depends on the render mode)

Both rendering backends share one simulation; positions are computed in
numpy arrays and copied out to GraphNode.position on sync.
"""

import logging
import math
from collections.abc import Iterator, Sequence
from typing import Callable

import numpy as np

from calcgraph.config import settings
from calcgraph.models import GraphEdge, GraphNode, Position

logger = logging.getLogger(__name__)

# Row block size for the pairwise kernels; bounds memory at BLOCK x n
BLOCK_SIZE = 1024

# Golden angle for phyllotaxis seeding
_INITIAL_ANGLE = math.pi * (3 - math.sqrt(5))
_INITIAL_RADIUS = 10.0


# Target occupancy of one grid cell in the approximate kernels
NODES_PER_CELL = 16
# Cells within this Chebyshev distance interact node by node
NEAR_CELLS = 2


def _charge(
    targets: np.ndarray,
    sources: np.ndarray,
    strength: float,
    weights: np.ndarray | None = None,
) -> np.ndarray:
    """Many-body velocity change on each target from all sources."""
    # source - target, shape (targets, sources)
    dx = sources[None, :, 0] - targets[:, None, 0]
    dy = sources[None, :, 1] - targets[:, None, 1]
    d2 = dx * dx + dy * dy
    # Soften very close pairs (distance_min = 1)
    d2 = np.where(d2 < 1.0, np.sqrt(d2), d2)
    factor = np.divide(strength, d2, out=np.zeros_like(d2), where=d2 > 0)
    if weights is not None:
        factor *= weights[None, :]
    return np.stack([(dx * factor).sum(axis=1), (dy * factor).sum(axis=1)], axis=1)


def _chunks(indices: np.ndarray) -> Iterator[np.ndarray]:
    for start in range(0, len(indices), BLOCK_SIZE):
        yield indices[start:start + BLOCK_SIZE]


def _cell_size(points: np.ndarray, minimum: float = 0.0) -> float:
    span = float((points.max(axis=0) - points.min(axis=0)).max())
    side = math.ceil(math.sqrt(len(points) / NODES_PER_CELL))
    return max(span / side, minimum, 1e-6)


class _CellGrid:
    """Point indices bucketed into square cells, sorted by cell."""

    def __init__(self, points: np.ndarray, cell_size: float) -> None:
        coords = np.floor((points - points.min(axis=0)) / cell_size).astype(np.intp)
        self.rows = int(coords[:, 1].max()) + 1
        keys = coords[:, 0] * self.rows + coords[:, 1]
        self.order = np.argsort(keys, kind="stable")
        self.cells, self.starts, self.counts = np.unique(
            keys[self.order], return_index=True, return_counts=True
        )
        self.cell_x = self.cells // self.rows
        self.cell_y = self.cells % self.rows
        self._slots = {int(key): slot for slot, key in enumerate(self.cells)}

    @property
    def cell_count(self) -> int:
        return len(self.cells)

    def members(self, slot: int) -> np.ndarray:
        start = self.starts[slot]
        return self.order[start:start + self.counts[slot]]

    def centroids(self, points: np.ndarray) -> np.ndarray:
        sums = np.add.reduceat(points[self.order], self.starts, axis=0)
        return sums / self.counts[:, None]

    def near(self, slot: int, radius: int) -> np.ndarray:
        """Indices of all points within `radius` cells of a cell, itself included."""
        cx, cy = int(self.cell_x[slot]), int(self.cell_y[slot])
        parts = []
        for x in range(cx - radius, cx + radius + 1):
            for y in range(max(cy - radius, 0), min(cy + radius, self.rows - 1) + 1):
                other = self._slots.get(x * self.rows + y)
                if other is not None:
                    parts.append(self.members(other))
        return np.concatenate(parts)

    def far_mask(self, slot: int, radius: int) -> np.ndarray:
        """Occupied cells farther than `radius` cells from a cell."""
        return (
            (np.abs(self.cell_x - self.cell_x[slot]) > radius)
            | (np.abs(self.cell_y - self.cell_y[slot]) > radius)
        )


class ForceLayout:
    """
    Force simulation over one graph.

    Algorithm per tick:
    1. alpha += (alpha_target - alpha) * alpha_decay
    2. Accumulate link, charge and collision forces into velocities
    3. Shift all positions so their mean sits on the centre
    4. v *= (1 - velocity_decay); x += v; pinned nodes stay put
    The simulation is converged once alpha < alpha_min.
    """

    def __init__(
        self,
        width: float | None = None,
        height: float | None = None,
        link_distance: float | None = None,
        charge_strength: float | None = None,
        collision_radius: float | None = None,
        alpha_min: float | None = None,
        alpha_decay: float | None = None,
        velocity_decay: float | None = None,
        drag_alpha_target: float | None = None,
        max_iterations: int | None = None,
        approximate_above: int | None = None,
        seed: int | None = None,
    ) -> None:
        self.width = width or settings.layout_width
        self.height = height or settings.layout_height
        self.link_distance = link_distance or settings.layout_link_distance
        self.charge_strength = charge_strength or settings.layout_charge_strength
        self.collision_radius = collision_radius or settings.layout_collision_radius_vector
        self.alpha_min = alpha_min or settings.layout_alpha_min
        self.alpha_decay = alpha_decay or settings.layout_alpha_decay
        self.velocity_decay = velocity_decay or settings.layout_velocity_decay
        self.drag_alpha_target = drag_alpha_target or settings.layout_drag_alpha_target
        self.max_iterations = max_iterations or settings.layout_max_iterations
        self.approximate_above = (
            settings.layout_approximate_above if approximate_above is None else approximate_above
        )

        self.alpha = 1.0
        self.alpha_target = 0.0
        self.iterations = 0
        self.on_tick: Callable[["ForceLayout"], None] | None = None

        self._rng = np.random.default_rng(settings.layout_seed if seed is None else seed)
        self._nodes: list[GraphNode] = []
        self._index: dict[str, int] = {}
        self._pos = np.zeros((0, 2))
        self._vel = np.zeros((0, 2))
        self._fixed = np.zeros(0, dtype=bool)
        self._fixed_pos = np.zeros((0, 2))
        self._link_src = np.zeros(0, dtype=np.intp)
        self._link_tgt = np.zeros(0, dtype=np.intp)
        self._link_strength = np.zeros(0)
        self._link_bias = np.zeros(0)

    @property
    def center(self) -> tuple[float, float]:
        return (self.width / 2, self.height / 2)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def converged(self) -> bool:
        return self.alpha < self.alpha_min

    # ------------------------------------------------------------------
    # Graph binding
    # ------------------------------------------------------------------

    def set_graph(self, nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> None:
        """Bind the simulation to a node/edge set and reheat it.

        Nodes that already have a position keep it; others are seeded on a
        phyllotaxis spiral around the centre. Pins survive for node ids
        present in both the old and new graph.
        """
        old_pins = {
            node.id: self._fixed_pos[i]
            for i, node in enumerate(self._nodes)
            if self._fixed[i]
        }

        self._nodes = list(nodes)
        self._index = {node.id: i for i, node in enumerate(self._nodes)}
        n = len(self._nodes)

        cx, cy = self.center
        self._pos = np.zeros((n, 2))
        for i, node in enumerate(self._nodes):
            if node.position is not None:
                self._pos[i] = (node.position.x, node.position.y)
            else:
                radius = _INITIAL_RADIUS * math.sqrt(0.5 + i)
                angle = i * _INITIAL_ANGLE
                self._pos[i] = (cx + radius * math.cos(angle), cy + radius * math.sin(angle))

        self._vel = np.zeros((n, 2))
        self._fixed = np.zeros(n, dtype=bool)
        self._fixed_pos = np.zeros((n, 2))
        for node_id, pinned in old_pins.items():
            i = self._index.get(node_id)
            if i is not None:
                self._fixed[i] = True
                self._fixed_pos[i] = pinned

        self._bind_links(edges)
        self.iterations = 0
        self.restart()
        logger.debug(f"Layout bound to {n} nodes, {len(self._link_src)} links")

    def _bind_links(self, edges: Sequence[GraphEdge]) -> None:
        pairs = [
            (self._index[e.source], self._index[e.target])
            for e in edges
            if e.source in self._index and e.target in self._index and e.source != e.target
        ]
        if not pairs:
            self._link_src = np.zeros(0, dtype=np.intp)
            self._link_tgt = np.zeros(0, dtype=np.intp)
            self._link_strength = np.zeros(0)
            self._link_bias = np.zeros(0)
            return

        src, tgt = (np.array(col, dtype=np.intp) for col in zip(*pairs))
        degree = np.bincount(np.concatenate([src, tgt]), minlength=self.node_count).astype(float)

        self._link_src = src
        self._link_tgt = tgt
        # Weaker pull on links attached to hubs
        self._link_strength = 1.0 / np.minimum(degree[src], degree[tgt])
        self._link_bias = degree[src] / (degree[src] + degree[tgt])

    def restart(self, alpha: float = 1.0) -> None:
        self.alpha = alpha

    def set_collision_radius(self, radius: float) -> None:
        self.collision_radius = radius

    # ------------------------------------------------------------------
    # Forces
    # ------------------------------------------------------------------

    def _jiggle(self, shape: tuple[int, ...]) -> np.ndarray:
        return (self._rng.random(shape) - 0.5) * 1e-6

    def _apply_links(self) -> None:
        if len(self._link_src) == 0:
            return
        s, t = self._link_src, self._link_tgt
        delta = (self._pos[t] + self._vel[t]) - (self._pos[s] + self._vel[s])
        zero = (delta == 0).all(axis=1)
        if zero.any():
            delta[zero] = self._jiggle((int(zero.sum()), 2))

        length = np.sqrt((delta ** 2).sum(axis=1))
        scale = (length - self.link_distance) / length * self.alpha * self._link_strength
        delta *= scale[:, None]

        np.add.at(self._vel, t, -delta * self._link_bias[:, None])
        np.add.at(self._vel, s, delta * (1 - self._link_bias)[:, None])

    def _apply_charge(self) -> None:
        n = self.node_count
        if n < 2:
            return
        strength = self.charge_strength * self.alpha
        if n > self.approximate_above:
            self._apply_charge_approx(strength)
            return
        for start in range(0, n, BLOCK_SIZE):
            end = min(start + BLOCK_SIZE, n)
            self._vel[start:end] += _charge(self._pos[start:end], self._pos, strength)

    def _apply_charge_approx(self, strength: float) -> None:
        """Charge with distant cells collapsed onto their centre of mass.

        Nodes within NEAR_CELLS grid cells interact pairwise; every farther
        occupied cell acts as one point charge weighted by its node count.
        """
        grid = _CellGrid(self._pos, _cell_size(self._pos))
        centroids = grid.centroids(self._pos)
        masses = grid.counts.astype(float)
        for slot in range(grid.cell_count):
            near = grid.near(slot, NEAR_CELLS)
            far = grid.far_mask(slot, NEAR_CELLS)
            for rows in _chunks(grid.members(slot)):
                targets = self._pos[rows]
                self._vel[rows] += _charge(targets, self._pos[near], strength)
                if far.any():
                    self._vel[rows] += _charge(targets, centroids[far], strength, masses[far])

    def _apply_collisions(self) -> None:
        n = self.node_count
        if n < 2 or self.collision_radius <= 0:
            return
        reach = 2 * self.collision_radius
        predicted = self._pos + self._vel
        if n > self.approximate_above:
            # Overlapping pairs are never more than one cell apart
            grid = _CellGrid(predicted, _cell_size(predicted, minimum=reach))
            for slot in range(grid.cell_count):
                near = grid.near(slot, 1)
                for rows in _chunks(grid.members(slot)):
                    self._vel[rows] += self._collide(predicted, rows, near, reach)
            return
        everyone = np.arange(n)
        for start in range(0, n, BLOCK_SIZE):
            rows = everyone[start:start + BLOCK_SIZE]
            self._vel[rows] += self._collide(predicted, rows, everyone, reach)

    def _collide(
        self, predicted: np.ndarray, rows: np.ndarray, others: np.ndarray, reach: float
    ) -> np.ndarray:
        """Velocity corrections pushing `rows` out of overlap with `others`."""
        # node - other, shape (rows, others)
        dx = predicted[rows, None, 0] - predicted[None, others, 0]
        dy = predicted[rows, None, 1] - predicted[None, others, 1]
        d2 = dx * dx + dy * dy

        overlap = (d2 < reach * reach) & (rows[:, None] != others[None, :])
        if not overlap.any():
            return np.zeros((len(rows), 2))

        coincident = overlap & (d2 == 0)
        if coincident.any():
            dx = np.where(coincident, self._jiggle(dx.shape), dx)
            dy = np.where(coincident, self._jiggle(dy.shape), dy)
            d2 = dx * dx + dy * dy

        dist = np.sqrt(d2)
        push = np.divide(reach - dist, dist, out=np.zeros_like(dist), where=overlap)
        # Equal radii: each node of a pair takes half the correction
        return np.stack([(dx * push).sum(axis=1), (dy * push).sum(axis=1)], axis=1) * 0.5

    def _apply_center(self) -> None:
        if self.node_count == 0:
            return
        shift = self._pos.mean(axis=0) - np.array(self.center)
        self._pos -= shift

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def _step(self) -> None:
        self.alpha += (self.alpha_target - self.alpha) * self.alpha_decay

        self._apply_links()
        self._apply_charge()
        self._apply_collisions()
        self._apply_center()

        self._vel *= 1 - self.velocity_decay
        self._pos += self._vel
        if self._fixed.any():
            self._pos[self._fixed] = self._fixed_pos[self._fixed]
            self._vel[self._fixed] = 0.0
        self.iterations += 1

    def tick(self, iterations: int = 1) -> float:
        """Advance the simulation, copy positions out and notify on_tick.

        Returns:
            Current alpha
        """
        for _ in range(iterations):
            self._step()
        self.sync_positions()
        if self.on_tick is not None:
            self.on_tick(self)
        return self.alpha

    def run(self, max_iterations: int | None = None) -> int:
        """Run until converged or the iteration cap; returns ticks performed."""
        limit = max_iterations or self.max_iterations
        ticks = 0
        while not self.converged and ticks < limit:
            self._step()
            ticks += 1
        self.sync_positions()
        if self.on_tick is not None:
            self.on_tick(self)
        logger.debug(f"Layout ran {ticks} ticks, alpha={self.alpha:.4f}")
        return ticks

    # ------------------------------------------------------------------
    # Positions and dragging
    # ------------------------------------------------------------------

    def sync_positions(self) -> None:
        """Write simulated coordinates into each node's position."""
        for i, node in enumerate(self._nodes):
            x, y = float(self._pos[i, 0]), float(self._pos[i, 1])
            if node.position is None:
                node.position = Position(x, y)
            else:
                node.position.x = x
                node.position.y = y

    def positions(self) -> dict[str, tuple[float, float]]:
        """Copy of current coordinates by node id."""
        return {
            node.id: (float(self._pos[i, 0]), float(self._pos[i, 1]))
            for i, node in enumerate(self._nodes)
        }

    def position_of(self, node_id: str) -> tuple[float, float] | None:
        i = self._index.get(node_id)
        if i is None:
            return None
        return (float(self._pos[i, 0]), float(self._pos[i, 1]))

    def is_pinned(self, node_id: str) -> bool:
        i = self._index.get(node_id)
        return i is not None and bool(self._fixed[i])

    def pin(self, node_id: str, x: float, y: float) -> None:
        i = self._index[node_id]
        self._fixed[i] = True
        self._fixed_pos[i] = (x, y)
        self._pos[i] = (x, y)
        self._vel[i] = 0.0

    def release(self, node_id: str) -> None:
        i = self._index.get(node_id)
        if i is not None:
            self._fixed[i] = False

    def drag_start(self, node_id: str) -> None:
        """Pin a node where it is and keep the simulation warm while dragging."""
        i = self._index[node_id]
        self.alpha_target = self.drag_alpha_target
        if self.converged:
            self.restart(self.alpha_min)
        self.pin(node_id, float(self._pos[i, 0]), float(self._pos[i, 1]))

    def drag_to(self, node_id: str, x: float, y: float) -> None:
        self.pin(node_id, x, y)

    def drag_end(self, node_id: str, keep_pinned: bool = False) -> None:
        """Let the simulation cool again; the node is released unless keep_pinned."""
        self.alpha_target = 0.0
        if not keep_pinned:
            self.release(node_id)
