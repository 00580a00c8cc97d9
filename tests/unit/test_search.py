"""Unit tests for node search and statistics."""

from calcgraph.analysis import SearchCursor, count_nodes_by_type, search_nodes
from calcgraph.models import GraphSnapshot


class TestSearchNodes:
    """Tests for substring search."""

    def test_matches_label_case_insensitive(self, snapshot: GraphSnapshot) -> None:
        results = search_nodes(snapshot.nodes, "VOLAT")
        assert [n.id for n in results] == ["vol"]

    def test_matches_type_and_group(self, snapshot: GraphSnapshot) -> None:
        assert [n.id for n in search_nodes(snapshot.nodes, "exp")] == ["discount"]
        assert {n.id for n in search_nodes(snapshot.nodes, "output")} == {"price", "vega"}

    def test_blank_query_returns_nothing(self, snapshot: GraphSnapshot) -> None:
        assert search_nodes(snapshot.nodes, "") == []
        assert search_nodes(snapshot.nodes, "   ") == []
        assert search_nodes(snapshot.nodes, None) == []


class TestSearchCursor:
    """Tests for result navigation."""

    def test_wraps_forward_and_back(self, snapshot: GraphSnapshot) -> None:
        cursor = SearchCursor.for_query(snapshot.nodes, "input")
        assert [n.id for n in cursor.results] == ["spot", "vol", "rate"]
        assert cursor.current.id == "spot"
        assert cursor.next().id == "vol"
        assert cursor.next().id == "rate"
        assert cursor.next().id == "spot"
        assert cursor.previous().id == "rate"

    def test_empty_results(self, snapshot: GraphSnapshot) -> None:
        cursor = SearchCursor.for_query(snapshot.nodes, "no-such-node")
        assert cursor.current is None
        assert cursor.next() is None
        assert cursor.previous() is None


def test_count_nodes_by_type(snapshot: GraphSnapshot) -> None:
    """Most frequent first; ties sorted by name."""
    counts = count_nodes_by_type(snapshot.nodes)
    assert counts[0] == ("input", 3)
    assert counts[1] == ("output", 2)
    assert [t for t, _ in counts[2:]] == ["div", "exp", "log", "mul"]
