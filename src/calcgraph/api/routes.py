"""API routes for the graph engine.

Provides:
- /health
- /engine/* for loading, viewing and analysing the current graph
- /engine/updates WebSocket for live value updates
"""

import logging
from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from calcgraph.analysis import critical_path
from calcgraph.engine import GraphEngine
from calcgraph.errors import FetchError, UnknownClusterError
from calcgraph.models import GraphSnapshot

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    graph_loaded: bool
    version: str = "0.1.0"


class LoadRequest(BaseModel):
    """Snapshot to fetch; None means the full graph."""

    subject_id: str | None = None


class LoadResponse(BaseModel):
    """Summary of a freshly loaded snapshot."""

    subject_id: str | None
    node_count: int
    edge_count: int
    depth: int | None
    render_mode: str
    lod_enabled: bool


class LODRequest(BaseModel):
    """Enable/disable clustering; omitted flips the current state."""

    enabled: bool | None = None


class ViewNodeInfo(BaseModel):
    id: str
    label: str
    group: str
    x: float
    y: float
    value: float | None
    is_sensitivity_target: bool
    is_cluster: bool
    member_count: int


class ViewEdgeInfo(BaseModel):
    source: str
    target: str
    weight: float


class ViewResponse(BaseModel):
    """Currently visible nodes and edges."""

    render_mode: str | None
    lod_enabled: bool
    nodes: list[ViewNodeInfo]
    edges: list[ViewEdgeInfo]


class CriticalPathResponse(BaseModel):
    """Longest dependency chain; error is set (and path empty) for cyclic graphs."""

    path: list[str]
    length: int
    projected: list[str]
    error: str | None = None


class SensitivityPathInfo(BaseModel):
    target: str
    output: str
    path: list[str]


class NodeInfo(BaseModel):
    id: str
    label: str
    type: str
    group: str
    value: float | None


class SearchResponse(BaseModel):
    query: str
    results: list[NodeInfo]


class SubscriptionResponse(BaseModel):
    subject_id: str
    subscribed: bool


class ValueChangeInfo(BaseModel):
    node_id: str
    old_value: float | None
    new_value: float | None
    delta: float | None
    timestamp: str


# ============================================================================
# Helper Functions
# ============================================================================


def get_engine(request: Request) -> GraphEngine:
    """Get engine from app state."""
    return request.app.state.engine


def require_snapshot(engine: GraphEngine) -> GraphSnapshot:
    if engine.snapshot is None:
        raise HTTPException(status_code=409, detail="No graph loaded")
    return engine.snapshot


def build_view_response(engine: GraphEngine) -> ViewResponse:
    view = engine.view()
    return ViewResponse(
        render_mode=engine.renderer.mode.value if engine.renderer else None,
        lod_enabled=engine.lod.enabled,
        nodes=[ViewNodeInfo(**asdict(n)) for n in view.nodes],
        edges=[ViewEdgeInfo(source=e.source, target=e.target, weight=e.weight) for e in view.edges],
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint."""
    engine = get_engine(request)
    return HealthResponse(status="healthy", graph_loaded=engine.snapshot is not None)


@router.post("/engine/load", response_model=LoadResponse)
async def load_graph(request: Request, body: LoadRequest) -> LoadResponse:
    """Fetch a snapshot from the graph source and lay it out."""
    engine = get_engine(request)

    try:
        snapshot = await engine.load(body.subject_id)
    except FetchError as e:
        logger.warning(f"Load failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return LoadResponse(
        subject_id=body.subject_id,
        node_count=snapshot.metadata.node_count,
        edge_count=snapshot.metadata.edge_count,
        depth=snapshot.metadata.depth,
        render_mode=engine.renderer.mode.value if engine.renderer else "vector",
        lod_enabled=engine.lod.enabled,
    )


@router.get("/engine/view", response_model=ViewResponse)
async def get_view(request: Request) -> ViewResponse:
    engine = get_engine(request)
    require_snapshot(engine)
    return build_view_response(engine)


@router.post("/engine/lod", response_model=ViewResponse)
async def set_lod(request: Request, body: LODRequest) -> ViewResponse:
    engine = get_engine(request)
    require_snapshot(engine)
    engine.toggle_lod(body.enabled)
    return build_view_response(engine)


@router.post("/engine/clusters/{cluster_id}/expand", response_model=ViewResponse)
async def expand_cluster(request: Request, cluster_id: str) -> ViewResponse:
    engine = get_engine(request)
    require_snapshot(engine)
    try:
        engine.expand_cluster(cluster_id)
    except UnknownClusterError:
        raise HTTPException(status_code=404, detail=f"Cluster not found: {cluster_id}")
    return build_view_response(engine)


@router.post("/engine/clusters/{cluster_id}/collapse", response_model=ViewResponse)
async def collapse_cluster(request: Request, cluster_id: str) -> ViewResponse:
    engine = get_engine(request)
    require_snapshot(engine)
    try:
        engine.collapse_cluster(cluster_id)
    except UnknownClusterError:
        raise HTTPException(status_code=404, detail=f"Cluster not found: {cluster_id}")
    return build_view_response(engine)


@router.get("/engine/critical-path", response_model=CriticalPathResponse)
async def get_critical_path(request: Request) -> CriticalPathResponse:
    """Longest chain on the full graph, plus its cluster-space projection."""
    engine = get_engine(request)
    snapshot = require_snapshot(engine)

    result = critical_path(snapshot)
    return CriticalPathResponse(
        path=result.path,
        length=result.length,
        projected=engine.lod.project_path(result.path),
        error=str(result.error) if result.error else None,
    )


@router.get("/engine/sensitivity-paths", response_model=list[SensitivityPathInfo])
async def get_sensitivity_paths(request: Request) -> list[SensitivityPathInfo]:
    engine = get_engine(request)
    require_snapshot(engine)
    return [
        SensitivityPathInfo(target=p.target, output=p.output, path=p.path)
        for p in engine.sensitivity_paths()
    ]


@router.get("/engine/search", response_model=SearchResponse)
async def search(request: Request, q: str = "") -> SearchResponse:
    engine = get_engine(request)
    require_snapshot(engine)
    nodes = engine.search(q)
    return SearchResponse(
        query=q,
        results=[
            NodeInfo(id=n.id, label=n.label, type=n.type, group=n.group, value=n.value)
            for n in nodes
        ],
    )


@router.put("/engine/subscriptions/{subject_id}", response_model=SubscriptionResponse)
async def subscribe(request: Request, subject_id: str) -> SubscriptionResponse:
    engine = get_engine(request)
    engine.subscribe(subject_id)
    return SubscriptionResponse(subject_id=subject_id, subscribed=True)


@router.delete("/engine/subscriptions/{subject_id}", response_model=SubscriptionResponse)
async def unsubscribe(request: Request, subject_id: str) -> SubscriptionResponse:
    engine = get_engine(request)
    engine.unsubscribe(subject_id)
    return SubscriptionResponse(subject_id=subject_id, subscribed=False)


@router.get("/engine/history/{node_id}", response_model=list[ValueChangeInfo])
async def get_history(
    request: Request,
    node_id: str,
    subject_id: str | None = None,
) -> list[ValueChangeInfo]:
    """Recent value changes for a node, oldest first."""
    engine = get_engine(request)
    return [ValueChangeInfo(**change.to_dict()) for change in engine.history(node_id, subject_id)]


@router.websocket("/engine/updates")
async def updates(websocket: WebSocket) -> None:
    """Feed pushed update messages into the engine; each message is acknowledged."""
    engine: GraphEngine = websocket.app.state.engine
    await websocket.accept()
    try:
        while True:
            raw = await websocket.receive_text()
            accepted = engine.receive(raw)
            await websocket.send_json({"accepted": accepted, "pending": engine.pipeline.pending})
    except WebSocketDisconnect:
        logger.info("Update stream client disconnected")
