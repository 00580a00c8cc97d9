"""Rendering backends and mode selection."""

from calcgraph.render.base import (
    NODE_COLORS,
    GraphRenderer,
    InteractionHandlers,
    RenderMode,
    Transform,
    node_color,
    node_radius,
)
from calcgraph.render.raster import RasterRenderer, SpatialGrid
from calcgraph.render.selector import RendererSwitcher, collision_radius_for, select_render_mode
from calcgraph.render.vector import VectorRenderer

__all__ = [
    "RenderMode",
    "GraphRenderer",
    "InteractionHandlers",
    "Transform",
    "NODE_COLORS",
    "node_color",
    "node_radius",
    "VectorRenderer",
    "RasterRenderer",
    "SpatialGrid",
    "RendererSwitcher",
    "select_render_mode",
    "collision_radius_for",
]
