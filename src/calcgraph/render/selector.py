"""Rendering-mode selection by graph size."""

import logging
from typing import Callable

from calcgraph.config import settings
from calcgraph.render.base import GraphRenderer, InteractionHandlers, RenderMode
from calcgraph.render.raster import RasterRenderer
from calcgraph.render.vector import VectorRenderer

logger = logging.getLogger(__name__)


def select_render_mode(node_count: int, threshold: int | None = None) -> RenderMode:
    """Raster above the threshold, vector at or below it."""
    if threshold is None:
        threshold = settings.render_raster_threshold
    return RenderMode.RASTER if node_count > threshold else RenderMode.VECTOR


def collision_radius_for(mode: RenderMode) -> float:
    if mode is RenderMode.RASTER:
        return settings.layout_collision_radius_raster
    return settings.layout_collision_radius_vector


class RendererSwitcher:
    """
    Owns the active backend and swaps it when the node count crosses
    the threshold. The outgoing backend is detached before the incoming
    one is attached, so handlers are never live on both.
    """

    def __init__(
        self,
        handlers: InteractionHandlers | None = None,
        threshold: int | None = None,
        factories: dict[RenderMode, Callable[[], GraphRenderer]] | None = None,
    ) -> None:
        self.handlers = handlers or InteractionHandlers()
        self.threshold = threshold if threshold is not None else settings.render_raster_threshold
        self.factories = factories or {
            RenderMode.VECTOR: VectorRenderer,
            RenderMode.RASTER: RasterRenderer,
        }
        self.renderer: GraphRenderer | None = None
        self.switch_count = 0

    @property
    def mode(self) -> RenderMode | None:
        return self.renderer.mode if self.renderer else None

    def ensure(self, node_count: int) -> GraphRenderer:
        """Return a backend suited to node_count, switching if needed."""
        mode = select_render_mode(node_count, self.threshold)
        current = self.renderer
        if current is not None and current.mode is mode:
            return current

        transform = current.transform if current else None
        if current is not None:
            current.detach()
        renderer = self.factories[mode]()
        if transform is not None:
            renderer.set_transform((transform.x, transform.y), transform.k)
        renderer.attach(self.handlers)
        self.renderer = renderer
        if current is not None:
            self.switch_count += 1
        logger.info(f"Rendering {node_count} nodes with {mode.value} backend")
        return renderer

    def close(self) -> None:
        if self.renderer is not None:
            self.renderer.detach()
            self.renderer = None
