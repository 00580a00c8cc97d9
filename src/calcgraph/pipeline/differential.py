"""Differential update pipeline - batches live node-value updates.

Flow:
1. enqueue() queues a message and opens a batch window (default 50ms)
2. When the window expires, queued updates are merged per node
   (last value wins), applied through GraphManager and recorded in history
3. A settle window (default 500ms) follows each applied batch while the
   renderer plays its highlight; updates arriving meanwhile wait for the
   next batch instead of being dropped
4. Batches are processed strictly in order

Batching and history are backend-agnostic. Renderers react to the
`batch_applied` / `batch_settled` events.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field

from calcgraph.config import settings
from calcgraph.models import NodeUpdate, UpdateMessage, ValueChange, subject_key
from calcgraph.pipeline.scheduling import AsyncioScheduler, Scheduler, TimerHandle
from calcgraph.sync.events import BATCH_APPLIED, BATCH_SETTLED, ListenerRegistry
from calcgraph.sync.manager import GraphManager

logger = logging.getLogger(__name__)


class UpdateHistory:
    """Bounded per-node history of applied value changes (ring buffer)."""

    def __init__(self, depth: int | None = None) -> None:
        self.depth = depth or settings.update_history_depth
        self._entries: dict[tuple[str, str], deque[ValueChange]] = defaultdict(
            lambda: deque(maxlen=self.depth)
        )

    def record(self, subject_id: str | None, change: ValueChange) -> None:
        self._entries[(subject_key(subject_id), change.node_id)].append(change)

    def get(self, node_id: str, subject_id: str | None = None) -> list[ValueChange]:
        """History for a node, oldest first."""
        entries = self._entries.get((subject_key(subject_id), node_id))
        return list(entries) if entries else []

    def clear(self, subject_id: str | None = None) -> None:
        if subject_id is None:
            self._entries.clear()
            return
        key = subject_key(subject_id)
        for entry_key in [k for k in self._entries if k[0] == key]:
            del self._entries[entry_key]

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class BatchResult:
    """Outcome of one processed batch."""

    sequence: int
    message_count: int
    update_count: int  # Raw node updates before de-duplication
    merged_count: int = 0  # Distinct (subject, node) pairs after de-duplication
    changes: dict[str, list[ValueChange]] = field(default_factory=dict)  # subject -> changes

    @property
    def applied_count(self) -> int:
        return sum(len(c) for c in self.changes.values())


class DifferentialUpdatePipeline:
    """
    Queues incoming updates and applies them in timed batches.

    A re-entrancy guard keeps a new batch from starting while the previous
    batch's settle window is open.
    """

    def __init__(
        self,
        manager: GraphManager,
        scheduler: Scheduler | None = None,
        batch_window_ms: float | None = None,
        settle_ms: float | None = None,
        history_depth: int | None = None,
        listeners: ListenerRegistry | None = None,
    ) -> None:
        self.manager = manager
        self.scheduler = scheduler or AsyncioScheduler()
        self.batch_window = (batch_window_ms or settings.update_batch_window_ms) / 1000.0
        self.settle_window = (settle_ms or settings.update_settle_ms) / 1000.0
        self.history = UpdateHistory(history_depth)
        self.listeners = listeners or manager.listeners

        self._queue: list[UpdateMessage] = []
        self._window_timer: TimerHandle | None = None
        self._settle_timer: TimerHandle | None = None
        self._settling = False
        self._sequence = 0
        self.last_batch: BatchResult | None = None

    @property
    def pending(self) -> int:
        """Number of queued messages."""
        return len(self._queue)

    @property
    def settling(self) -> bool:
        return self._settling

    def enqueue(self, message: UpdateMessage) -> None:
        """Queue a message for the next batch."""
        self._queue.append(message)
        if self._window_timer is None and not self._settling:
            self._window_timer = self.scheduler.call_later(
                self.batch_window, self._on_window_expired
            )

    def _on_window_expired(self) -> None:
        self._window_timer = None
        if self._settling:
            # Picked up when the settle window closes
            return
        self._process_batch()

    def _on_settled(self) -> None:
        self._settle_timer = None
        self._settling = False
        self.listeners.emit(BATCH_SETTLED, self.last_batch)
        if self._queue and self._window_timer is None:
            self._window_timer = self.scheduler.call_later(
                self.batch_window, self._on_window_expired
            )

    def flush(self, force: bool = False) -> BatchResult | None:
        """Process queued updates now instead of waiting for the window.

        Honours the settle guard unless force is set.
        """
        if self._settling and not force:
            return None
        if self._window_timer is not None:
            self._window_timer.cancel()
            self._window_timer = None
        if self._settle_timer is not None:
            self._settle_timer.cancel()
            self._settle_timer = None
            self._settling = False
            self.listeners.emit(BATCH_SETTLED, self.last_batch)
        return self._process_batch()

    def _merge(self, messages: list[UpdateMessage]) -> tuple[dict[str, dict[str, NodeUpdate]], int]:
        merged: dict[str, dict[str, NodeUpdate]] = {}
        update_count = 0
        for message in messages:
            per_node = merged.setdefault(message.subject_id, {})
            for update in message.node_updates:
                per_node[update.id] = update
                update_count += 1
        return merged, update_count

    def _process_batch(self) -> BatchResult | None:
        if not self._queue:
            return None

        messages, self._queue = self._queue, []
        merged, update_count = self._merge(messages)

        self._sequence += 1
        result = BatchResult(
            sequence=self._sequence,
            message_count=len(messages),
            update_count=update_count,
            merged_count=sum(len(per_node) for per_node in merged.values()),
        )

        for subject_id, per_node in merged.items():
            changes = self.manager.apply_update(
                UpdateMessage(subject_id=subject_id, node_updates=list(per_node.values()))
            )
            if not changes:
                continue
            for change in changes:
                self.history.record(subject_id, change)
            result.changes[subject_id] = changes

        self.last_batch = result
        logger.debug(
            f"Batch {result.sequence}: {result.message_count} messages, "
            f"{result.update_count} updates, {result.applied_count} applied"
        )

        if result.applied_count:
            self.listeners.emit(BATCH_APPLIED, result)
            self._settling = True
            self._settle_timer = self.scheduler.call_later(self.settle_window, self._on_settled)

        return result

    def reset(self) -> None:
        """Drop queued updates and cancel timers (history is kept)."""
        for timer in (self._window_timer, self._settle_timer):
            if timer is not None:
                timer.cancel()
        self._window_timer = None
        self._settle_timer = None
        self._settling = False
        self._queue.clear()
