"""Synchronisation layer: snapshot fetch/cache, subscriptions, events, streaming."""

from calcgraph.sync.events import (
    ANALYSIS_ERROR,
    BATCH_APPLIED,
    BATCH_SETTLED,
    GRAPH_LOADED,
    GRAPH_UPDATE,
    VIEW_CHANGED,
    GraphLoadedEvent,
    GraphUpdateEvent,
    ListenerRegistry,
)
from calcgraph.sync.manager import GraphManager
from calcgraph.sync.stream import StreamConsumer, parse_update_message

__all__ = [
    "GraphManager",
    "ListenerRegistry",
    "GraphLoadedEvent",
    "GraphUpdateEvent",
    "GRAPH_LOADED",
    "GRAPH_UPDATE",
    "BATCH_APPLIED",
    "BATCH_SETTLED",
    "VIEW_CHANGED",
    "ANALYSIS_ERROR",
    "StreamConsumer",
    "parse_update_message",
]
