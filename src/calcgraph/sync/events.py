"""Event fan-out with per-callback error isolation.

Every callback registered for an event is invoked, in registration order,
even if earlier ones raise. Failures are logged and returned to the emitter
as ListenerError values; they are never propagated.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

from calcgraph.errors import ListenerError
from calcgraph.models import GraphSnapshot, NodeUpdate, ValueChange

logger = logging.getLogger(__name__)

GRAPH_LOADED = "graph_loaded"
GRAPH_UPDATE = "graph_update"
BATCH_APPLIED = "batch_applied"
BATCH_SETTLED = "batch_settled"
VIEW_CHANGED = "view_changed"
ANALYSIS_ERROR = "analysis_error"

Listener = Callable[[Any], Any]


@dataclass
class GraphLoadedEvent:
    subject_id: str | None
    snapshot: GraphSnapshot


@dataclass
class GraphUpdateEvent:
    subject_id: str
    node_updates: list[NodeUpdate] = field(default_factory=list)
    changes: list[ValueChange] = field(default_factory=list)


class ListenerRegistry:
    """Tagged callback registry: event name -> ordered callbacks."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def add(self, event: str, callback: Listener) -> None:
        self._listeners[event].append(callback)

    def remove(self, event: str, callback: Listener) -> None:
        """Remove the first registration of callback; unknown ones are ignored."""
        callbacks = self._listeners.get(event)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, payload: Any = None) -> list[ListenerError]:
        """Invoke every listener for event with payload.

        Returns:
            One ListenerError per callback that raised
        """
        errors: list[ListenerError] = []
        # Copy so callbacks may (un)register during dispatch
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(payload)
            except Exception as e:
                error = ListenerError(event, callback, e)
                logger.exception(f"Listener error ({event}): {error}")
                errors.append(error)
        return errors

    def clear(self) -> None:
        self._listeners.clear()
