"""Error taxonomy for the graph engine."""

from typing import Any, Callable


class CalcGraphError(Exception):
    """Base class for graph engine errors."""


class FetchError(CalcGraphError):
    """Snapshot retrieval failed (transport, HTTP status or payload).

    The cached snapshot for the subject is left untouched.
    """

    def __init__(
        self,
        subject_id: str | None,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.subject_id = subject_id
        self.message = message
        self.status_code = status_code
        target = subject_id or "all"
        super().__init__(f"Failed to fetch graph '{target}': {message}")


class CycleError(CalcGraphError):
    """Critical-path input is not a DAG."""

    def __init__(
        self,
        node_count: int,
        ordered_count: int,
        cyclic_node_ids: list[str] | None = None,
    ) -> None:
        self.node_count = node_count
        self.ordered_count = ordered_count
        self.cyclic_node_ids = cyclic_node_ids or []
        super().__init__(
            f"Graph contains a cycle: only {ordered_count} of {node_count} "
            f"nodes could be topologically ordered"
        )


class ListenerError(CalcGraphError):
    """A registered event callback raised.

    Never propagated to the emitter; collected and logged instead.
    """

    def __init__(
        self,
        event: str,
        callback: Callable[[Any], Any],
        original: BaseException,
    ) -> None:
        self.event = event
        self.callback = callback
        self.original = original
        name = getattr(callback, "__qualname__", repr(callback))
        super().__init__(f"Listener {name} failed on '{event}': {original!r}")


class UnknownClusterError(CalcGraphError, KeyError):
    """No cluster with this id in the current LOD state."""

    def __init__(self, cluster_id: str) -> None:
        self.cluster_id = cluster_id
        super().__init__(f"Unknown cluster '{cluster_id}'")

    def __str__(self) -> str:
        return f"Unknown cluster '{self.cluster_id}'"
