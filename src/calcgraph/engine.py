"""
GraphEngine - the context object tying the graph subsystems together.

On every `graph_loaded`:
1. pick the render backend for the node count
2. set that backend's collision radius on the layout
3. run the layout to convergence (a capped number of ticks above the LOD
   threshold; in a worker thread when loading through `load`)
4. auto-enable LOD above the threshold
5. render and fit the viewport

Streaming updates go through the differential pipeline; applied batches are
pushed to the active renderer as highlights and cleared when the batch
settles. Path analysis always runs on the full graph; results are projected
into cluster space only for display.
"""

import asyncio
import logging
from typing import Any

from calcgraph.analysis import (
    CriticalPath,
    SearchCursor,
    SensitivityPath,
    critical_path,
    sensitivity_paths,
)
from calcgraph.config import settings
from calcgraph.layout import ForceLayout
from calcgraph.lod import LODEngine
from calcgraph.models import GraphNode, GraphSnapshot, GraphView, ValueChange
from calcgraph.pipeline import BatchResult, DifferentialUpdatePipeline, Scheduler
from calcgraph.render import (
    GraphRenderer,
    InteractionHandlers,
    RendererSwitcher,
    Transform,
    collision_radius_for,
)
from calcgraph.sync import (
    ANALYSIS_ERROR,
    BATCH_APPLIED,
    BATCH_SETTLED,
    GRAPH_LOADED,
    VIEW_CHANGED,
    GraphLoadedEvent,
    GraphManager,
    ListenerRegistry,
    StreamConsumer,
)

logger = logging.getLogger(__name__)


class GraphEngine:
    """
    Public entry point for consumers (API, scripts, UI shells).

    Collaborators can be injected for tests; anything omitted is built
    from settings and shares one ListenerRegistry.
    """

    def __init__(
        self,
        manager: GraphManager | None = None,
        layout: ForceLayout | None = None,
        switcher: RendererSwitcher | None = None,
        lod: LODEngine | None = None,
        pipeline: DifferentialUpdatePipeline | None = None,
        scheduler: Scheduler | None = None,
        listeners: ListenerRegistry | None = None,
        auto_lod: bool | None = None,
    ) -> None:
        if listeners is None:
            listeners = manager.listeners if manager is not None else ListenerRegistry()
        self.listeners = listeners
        self.manager = manager or GraphManager(listeners=listeners)
        self.layout = layout or ForceLayout()
        self.switcher = switcher or RendererSwitcher(
            handlers=InteractionHandlers(
                on_click=self.select_node,
                on_drag_start=self.drag_start,
                on_drag=self.drag_to,
                on_drag_end=self.drag_end,
            )
        )
        self.lod = lod or LODEngine()
        self.lod.on_change = self._on_view_changed
        self.pipeline = pipeline or DifferentialUpdatePipeline(
            self.manager, scheduler=scheduler, listeners=listeners
        )
        self.consumer = StreamConsumer(self.pipeline.enqueue)
        self.auto_lod = settings.lod_auto_enable if auto_lod is None else auto_lod

        self.snapshot: GraphSnapshot | None = None
        self.subject_id: str | None = None
        self.selected_node_id: str | None = None
        self.search_cursor: SearchCursor | None = None
        self.critical: CriticalPath | None = None
        self.critical_path_visible = False
        self._loading = False

        self.listeners.add(GRAPH_LOADED, self._on_graph_loaded)
        self.listeners.add(BATCH_APPLIED, self._on_batch_applied)
        self.listeners.add(BATCH_SETTLED, self._on_batch_settled)

    @property
    def renderer(self) -> GraphRenderer | None:
        return self.switcher.renderer

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self, subject_id: str | None = None) -> GraphSnapshot:
        """Fetch a snapshot, lay it out in a worker thread and render it.

        The graph_loaded this fetch emits is handled here rather than by the
        synchronous listener, so the event loop keeps serving while the
        simulation runs.
        """
        self._loading = True
        try:
            snapshot = await self.manager.fetch(subject_id)
        finally:
            self._loading = False
        await self.show_async(snapshot, subject_id)
        return snapshot

    def show(self, snapshot: GraphSnapshot, subject_id: str | None = None) -> None:
        """Lay out and render a snapshot that is already in memory."""
        renderer = self._prepare(snapshot, subject_id)
        ticks = self.layout.run(self._layout_budget(snapshot))
        self._present(snapshot, renderer, ticks)

    async def show_async(self, snapshot: GraphSnapshot, subject_id: str | None = None) -> None:
        renderer = self._prepare(snapshot, subject_id)
        ticks = await asyncio.to_thread(self.layout.run, self._layout_budget(snapshot))
        self._present(snapshot, renderer, ticks)

    def _prepare(self, snapshot: GraphSnapshot, subject_id: str | None) -> GraphRenderer:
        self.snapshot = snapshot
        self.subject_id = subject_id
        self.selected_node_id = None
        self.search_cursor = None
        self.critical = None
        self.critical_path_visible = False

        renderer = self.switcher.ensure(snapshot.node_count)
        self.layout.set_collision_radius(collision_radius_for(renderer.mode))
        self.layout.set_graph(snapshot.nodes, snapshot.edges)
        return renderer

    def _layout_budget(self, snapshot: GraphSnapshot) -> int | None:
        # Clustered graphs only need a coarse layout
        if self.lod.should_enable(snapshot.node_count):
            return min(self.layout.max_iterations, settings.layout_large_graph_max_iterations)
        return None

    def _present(self, snapshot: GraphSnapshot, renderer: GraphRenderer, ticks: int) -> None:
        logger.info(
            f"Layout settled after {ticks} ticks ({snapshot.node_count} nodes, "
            f"{renderer.mode.value} backend)"
        )

        self.lod.reset()
        self.lod.snapshot = snapshot
        if self.auto_lod and self.lod.should_enable(snapshot.node_count):
            self.lod.enable(snapshot)
        else:
            self._on_view_changed(self.lod.view())
        self.zoom_to_fit()

    def _on_graph_loaded(self, event: GraphLoadedEvent) -> None:
        if self._loading:
            return
        self.show(event.snapshot, event.subject_id)

    def view(self) -> GraphView:
        return self.lod.view()

    def _on_view_changed(self, view: GraphView) -> None:
        renderer = self.renderer
        if renderer is None:
            return
        renderer.render(view)
        if self.critical_path_visible and self.critical is not None:
            renderer.set_emphasis(self.lod.project_path(self.critical.path))
        self.listeners.emit(VIEW_CHANGED, view)

    # ------------------------------------------------------------------
    # Streaming updates
    # ------------------------------------------------------------------

    def receive(self, raw: Any) -> bool:
        """Queue one raw stream message; False if it could not be decoded."""
        return self.consumer.feed(raw)

    def subscribe(self, subject_id: str) -> None:
        self.manager.subscribe(subject_id)

    def unsubscribe(self, subject_id: str) -> None:
        self.manager.unsubscribe(subject_id)

    def history(self, node_id: str, subject_id: str | None = None) -> list[ValueChange]:
        return self.pipeline.history.get(node_id, subject_id or self.subject_id)

    def _on_batch_applied(self, result: BatchResult) -> None:
        renderer = self.renderer
        if renderer is None or self.subject_id is None:
            return
        changes = result.changes.get(self.subject_id)
        if not changes:
            return
        if self.lod.enabled:
            changes = [
                ValueChange(self.lod.visible_id(c.node_id), c.old_value, c.new_value, c.timestamp)
                for c in changes
            ]
        touched = renderer.update_nodes(changes)
        logger.debug(f"Batch {result.sequence}: highlighted {touched} visible nodes")

    def _on_batch_settled(self, result: BatchResult | None) -> None:
        if self.renderer is not None:
            self.renderer.clear_highlights()

    # ------------------------------------------------------------------
    # LOD
    # ------------------------------------------------------------------

    def toggle_lod(self, enabled: bool | None = None) -> GraphView:
        """Enable or disable clustering (flip when enabled is None)."""
        if self.snapshot is None:
            return GraphView()
        if enabled is None:
            enabled = not self.lod.enabled
        if enabled:
            return self.lod.enable(self.snapshot)
        return self.lod.disable()

    def expand_cluster(self, cluster_id: str) -> GraphView:
        return self.lod.expand(cluster_id)

    def collapse_cluster(self, cluster_id: str) -> GraphView:
        return self.lod.collapse(cluster_id)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def toggle_critical_path(self) -> CriticalPath | None:
        """Show or hide the critical path.

        A cyclic graph is reported on `analysis_error` and nothing is shown.
        """
        renderer = self.renderer
        if self.critical_path_visible:
            self.critical_path_visible = False
            if renderer is not None:
                renderer.set_emphasis(None)
            return None

        if self.snapshot is None:
            return None
        result = critical_path(self.snapshot)
        self.critical = result
        if result.error is not None:
            self.listeners.emit(ANALYSIS_ERROR, result.error)
            return result

        self.critical_path_visible = True
        if renderer is not None:
            renderer.set_emphasis(self.lod.project_path(result.path))
        return result

    def sensitivity_paths(self) -> list[SensitivityPath]:
        if self.snapshot is None:
            return []
        return sensitivity_paths(self.snapshot)

    def search(self, query: str) -> list[GraphNode]:
        if self.snapshot is None:
            self.search_cursor = SearchCursor(query)
            return []
        self.search_cursor = SearchCursor.for_query(self.snapshot.nodes, query)
        current = self.search_cursor.current
        if current is not None:
            self.focus_node(current.id)
        return list(self.search_cursor.results)

    def search_next(self) -> GraphNode | None:
        if self.search_cursor is None:
            return None
        node = self.search_cursor.next()
        if node is not None:
            self.focus_node(node.id)
        return node

    def search_previous(self) -> GraphNode | None:
        if self.search_cursor is None:
            return None
        node = self.search_cursor.previous()
        if node is not None:
            self.focus_node(node.id)
        return node

    # ------------------------------------------------------------------
    # Selection and viewport
    # ------------------------------------------------------------------

    def select_node(self, node_id: str | None) -> GraphNode | None:
        self.selected_node_id = node_id
        if node_id is None or self.snapshot is None:
            return None
        return self.snapshot.find_node(node_id)

    def focus_node(self, node_id: str) -> Transform | None:
        """Select a node and centre the viewport on it at the current zoom.

        A node hidden in a collapsed cluster has that cluster expanded first.
        """
        renderer = self.renderer
        if renderer is None or self.snapshot is None or node_id not in self.snapshot:
            return None
        cluster_id = self.lod.cluster_of(node_id)
        if cluster_id is not None and self.lod.visible_id(node_id) == cluster_id:
            self.lod.expand(cluster_id)

        self.select_node(node_id)
        position = self.layout.position_of(node_id)
        if position is None:
            return None
        k = renderer.transform.k
        cx, cy = self.layout.center
        return renderer.set_transform((cx - position[0] * k, cy - position[1] * k), k)

    def zoom_to_fit(self) -> Transform | None:
        renderer = self.renderer
        view = self.view()
        if renderer is None or not view.nodes:
            return None
        xs = [n.x for n in view.nodes]
        ys = [n.y for n in view.nodes]
        fit = Transform.fit(
            (min(xs), min(ys), max(xs), max(ys)), self.layout.width, self.layout.height
        )
        return renderer.set_transform((fit.x, fit.y), fit.k)

    def reset_zoom(self) -> Transform | None:
        if self.renderer is None:
            return None
        return self.renderer.set_transform((0.0, 0.0), 1.0)

    def set_transform(self, pan: tuple[float, float], zoom: float) -> Transform | None:
        if self.renderer is None:
            return None
        return self.renderer.set_transform(pan, zoom)

    def hit_test(self, point: tuple[float, float]) -> str | None:
        if self.renderer is None:
            return None
        return self.renderer.hit_test(point)

    # ------------------------------------------------------------------
    # Layout interaction
    # ------------------------------------------------------------------

    def step_layout(self, iterations: int = 1) -> float:
        """Advance the simulation and push new positions to the renderer."""
        alpha = self.layout.tick(iterations)
        renderer = self.renderer
        if renderer is not None:
            if self.lod.enabled:
                self._on_view_changed(self.lod.view())
            else:
                renderer.update_positions(self.layout.positions())
        return alpha

    def drag_start(self, node_id: str) -> bool:
        if self.layout.position_of(node_id) is None:
            # Cluster aggregates are not part of the simulation
            return False
        self.layout.drag_start(node_id)
        return True

    def drag_to(self, node_id: str, x: float, y: float) -> bool:
        if self.layout.position_of(node_id) is None:
            return False
        self.layout.drag_to(node_id, x, y)
        self.step_layout()
        return True

    def drag_end(self, node_id: str, keep_pinned: bool = False) -> bool:
        if self.layout.position_of(node_id) is None:
            return False
        self.layout.drag_end(node_id, keep_pinned=keep_pinned)
        return True

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Apply anything still queued, tear down the renderer, close HTTP."""
        self.pipeline.flush(force=True)
        self.pipeline.reset()
        self.switcher.close()
        await self.manager.close()
