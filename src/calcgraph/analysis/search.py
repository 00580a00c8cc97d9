"""Node search and node-type statistics."""

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from calcgraph.models import GraphNode


def search_nodes(nodes: Iterable[GraphNode], query: str | None) -> list[GraphNode]:
    """Case-insensitive substring match over label, id, type and group.

    A blank query matches nothing.
    """
    if not query or not query.strip():
        return []

    needle = query.strip().lower()
    return [
        node
        for node in nodes
        if needle in node.label.lower()
        or needle in node.id.lower()
        or needle in node.type.lower()
        or needle in node.group.lower()
    ]


@dataclass
class SearchCursor:
    """Walks search results with wrap-around."""

    query: str = ""
    results: list[GraphNode] = field(default_factory=list)
    index: int = -1

    @classmethod
    def for_query(cls, nodes: Iterable[GraphNode], query: str) -> "SearchCursor":
        results = search_nodes(nodes, query)
        return cls(query=query, results=results, index=0 if results else -1)

    @property
    def current(self) -> GraphNode | None:
        if self.index < 0:
            return None
        return self.results[self.index]

    def next(self) -> GraphNode | None:
        if not self.results:
            return None
        self.index = (self.index + 1) % len(self.results)
        return self.results[self.index]

    def previous(self) -> GraphNode | None:
        if not self.results:
            return None
        self.index = (self.index - 1 + len(self.results)) % len(self.results)
        return self.results[self.index]


def count_nodes_by_type(nodes: Sequence[GraphNode]) -> list[tuple[str, int]]:
    """Node counts per operation type, most frequent first (ties by name)."""
    counts = Counter(node.type or "unknown" for node in nodes)
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))
