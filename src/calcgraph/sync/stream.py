"""Streaming update channel: message decoding and a push-source consumer.

Messages look like:
    {"type": "graph_update",
     "data": {"subject_id": "T001", "updated_nodes": [{"id": "N1", "value": 1.5}]}}

The channel is best-effort: anything malformed is dropped without error.
Reconnect and heartbeat handling belong to whoever owns the connection.
"""

import json
import logging
from collections.abc import AsyncIterable
from typing import Any, Callable

from calcgraph.models import NodeUpdate, UpdateMessage

logger = logging.getLogger(__name__)

MESSAGE_TYPE = "graph_update"


def _parse_node_update(raw: Any) -> NodeUpdate | None:
    if not isinstance(raw, dict) or "id" not in raw:
        return None
    try:
        value = raw.get("value")
        delta = raw.get("delta")
        return NodeUpdate(
            id=str(raw["id"]),
            value=None if value is None else float(value),
            delta=None if delta is None else float(delta),
        )
    except (TypeError, ValueError):
        return None


def parse_update_message(raw: str | bytes | dict | Any) -> UpdateMessage | None:
    """Decode a raw stream message; None for anything that is not a valid update."""
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.debug("Dropping non-JSON stream message")
            return None

    if not isinstance(raw, dict) or raw.get("type") != MESSAGE_TYPE:
        return None

    data = raw.get("data")
    if not isinstance(data, dict):
        return None

    # trade_id is the legacy wire name for the subject
    subject_id = data.get("subject_id", data.get("trade_id"))
    updated_nodes = data.get("updated_nodes")
    if not subject_id or not isinstance(updated_nodes, list):
        logger.debug("Dropping malformed graph_update message")
        return None

    updates = [u for u in (_parse_node_update(item) for item in updated_nodes) if u is not None]
    return UpdateMessage(subject_id=str(subject_id), node_updates=updates)


class StreamConsumer:
    """Drains a push source into a message sink until the source ends."""

    def __init__(self, sink: Callable[[UpdateMessage], Any]) -> None:
        self.sink = sink
        self.received = 0
        self.dropped = 0

    def feed(self, raw: Any) -> bool:
        """Decode one raw message and hand it to the sink."""
        self.received += 1
        message = parse_update_message(raw)
        if message is None:
            self.dropped += 1
            return False
        self.sink(message)
        return True

    async def run(self, source: AsyncIterable[Any]) -> int:
        """Consume every message from source; returns the number accepted."""
        accepted = 0
        async for raw in source:
            if self.feed(raw):
                accepted += 1
        logger.info(
            f"Update stream ended: {accepted} accepted, {self.dropped} dropped"
        )
        return accepted
