"""GraphManager - single source of truth for graph snapshots.

Fetches snapshots from the remote graph API, caches one per subject key,
tracks which subjects accept live updates and fans events out to listeners.
"""

import logging
from typing import Any

import httpx

from calcgraph.analysis.paths import compute_depth
from calcgraph.config import settings
from calcgraph.errors import FetchError
from calcgraph.models import GraphSnapshot, UpdateMessage, ValueChange, subject_key
from calcgraph.sync.events import (
    GRAPH_LOADED,
    GRAPH_UPDATE,
    GraphLoadedEvent,
    GraphUpdateEvent,
    Listener,
    ListenerRegistry,
)
from calcgraph.sync.stream import parse_update_message

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Best-effort error text from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
        if message:
            return str(message)
    return f"HTTP {response.status_code}"


class GraphManager:
    """
    Fetch/cache/subscribe synchronisation layer.

    Cache: subject key ("all" or a subject id) -> GraphSnapshot.
    Subscriptions: subject ids whose differential updates are applied.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        listeners: ListenerRegistry | None = None,
    ) -> None:
        self.base_url = (base_url or settings.graph_api_base_url).rstrip("/")
        self.timeout = timeout or settings.graph_fetch_timeout
        self.listeners = listeners or ListenerRegistry()

        self._client = client
        self._owns_client = client is None
        self._graphs: dict[str, GraphSnapshot] = {}
        self._subscriptions: set[str] = set()
        self.current_subject_id: str | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this manager created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Fetch / cache
    # ------------------------------------------------------------------

    async def fetch(self, subject_id: str | None = None) -> GraphSnapshot:
        """
        Retrieve a snapshot and store it under the subject key.

        Overwrites any prior entry and emits `graph_loaded`.

        Raises:
            FetchError: transport failure, non-2xx status or undecodable payload.
                The existing cache entry is left as it was.
        """
        url = f"{self.base_url}/graph"
        params = {"subject_id": subject_id} if subject_id else None

        try:
            response = await self._get_client().get(url, params=params)
        except httpx.HTTPError as e:
            raise FetchError(subject_id, f"{type(e).__name__}: {e}") from e

        if response.is_error:
            raise FetchError(subject_id, _error_message(response), response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError(subject_id, "Response is not valid JSON", response.status_code) from e

        try:
            snapshot = GraphSnapshot.from_dict(payload, subject_id=subject_id)
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(subject_id, f"Malformed graph payload: {e}", response.status_code) from e

        if snapshot.metadata.depth is None:
            snapshot.metadata.depth = compute_depth(snapshot)

        self._graphs[subject_key(subject_id)] = snapshot
        self.current_subject_id = subject_id

        logger.info(
            f"Loaded graph '{subject_key(subject_id)}': "
            f"{snapshot.metadata.node_count} nodes, {snapshot.metadata.edge_count} edges, "
            f"depth {snapshot.metadata.depth}"
        )
        self.listeners.emit(GRAPH_LOADED, GraphLoadedEvent(subject_id, snapshot))
        return snapshot

    def get_snapshot(self, subject_id: str | None = None) -> GraphSnapshot | None:
        return self._graphs.get(subject_key(subject_id))

    def clear_cache(self) -> None:
        self._graphs.clear()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, subject_id: str) -> None:
        self._subscriptions.add(subject_id)

    def unsubscribe(self, subject_id: str) -> None:
        self._subscriptions.discard(subject_id)

    def is_subscribed(self, subject_id: str) -> bool:
        return subject_id in self._subscriptions

    @property
    def subscriptions(self) -> frozenset[str]:
        return frozenset(self._subscriptions)

    # ------------------------------------------------------------------
    # Differential updates
    # ------------------------------------------------------------------

    def apply_update(self, message: UpdateMessage) -> list[ValueChange]:
        """
        Overwrite cached node values for a subscribed subject.

        Updates for unsubscribed subjects are dropped. Node ids missing from
        the cache are skipped (expected lag, not an error). Applied at most
        once; nothing is replayed.

        Returns:
            The changes applied, in update order
        """
        if message.subject_id not in self._subscriptions:
            return []

        changes: list[ValueChange] = []
        graph = self._graphs.get(subject_key(message.subject_id))
        if graph is not None:
            for update in message.node_updates:
                node = graph.find_node(update.id)
                if node is None:
                    continue
                changes.append(ValueChange(node.id, node.value, update.value))
                node.value = update.value

        self.listeners.emit(
            GRAPH_UPDATE,
            GraphUpdateEvent(message.subject_id, list(message.node_updates), changes),
        )
        return changes

    def handle_message(self, raw: Any) -> bool:
        """Decode a raw stream message and apply it immediately."""
        message = parse_update_message(raw)
        if message is None:
            return False
        self.apply_update(message)
        return True

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, event: str, callback: Listener) -> None:
        self.listeners.add(event, callback)

    def remove_listener(self, event: str, callback: Listener) -> None:
        self.listeners.remove(event, callback)
