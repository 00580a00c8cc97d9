"""Unit tests for GraphManager fetch, cache and subscriptions."""

from unittest.mock import MagicMock

import httpx
import pytest

from calcgraph.errors import FetchError
from calcgraph.models import NodeUpdate, UpdateMessage
from calcgraph.sync import GRAPH_LOADED, GRAPH_UPDATE, GraphLoadedEvent, GraphManager


class TestFetch:
    """Tests for snapshot retrieval."""

    @pytest.mark.asyncio
    async def test_fetch_caches_and_emits(self, manager: GraphManager) -> None:
        listener = MagicMock()
        manager.add_listener(GRAPH_LOADED, listener)

        snapshot = await manager.fetch("T1")

        assert snapshot.node_count == 9
        assert manager.get_snapshot("T1") is snapshot
        assert manager.current_subject_id == "T1"
        event = listener.call_args.args[0]
        assert isinstance(event, GraphLoadedEvent)
        assert event.subject_id == "T1"
        assert event.snapshot is snapshot

    @pytest.mark.asyncio
    async def test_fetch_all_uses_aggregate_key(self, manager: GraphManager) -> None:
        snapshot = await manager.fetch()
        assert manager.get_snapshot(None) is snapshot
        assert manager.get_snapshot("T1") is None

    @pytest.mark.asyncio
    async def test_refetch_overwrites(self, manager: GraphManager) -> None:
        first = await manager.fetch("T1")
        second = await manager.fetch("T1")
        assert manager.get_snapshot("T1") is second
        assert first is not second

    @pytest.mark.asyncio
    async def test_sends_subject_param(self, graph_payload: dict) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=graph_payload)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        manager = GraphManager(base_url="http://graph.test/api/", client=client)

        await manager.fetch("T7")
        await manager.fetch()

        assert seen[0].url.path == "/api/graph"
        assert seen[0].url.params["subject_id"] == "T7"
        assert "subject_id" not in seen[1].url.params

    @pytest.mark.asyncio
    async def test_missing_depth_is_computed(self, graph_payload: dict) -> None:
        del graph_payload["metadata"]["depth"]
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=graph_payload))
        )
        manager = GraphManager(base_url="http://graph.test/api", client=client)

        snapshot = await manager.fetch("T1")

        assert snapshot.metadata.depth == 3

    @pytest.mark.asyncio
    async def test_http_error_raises_fetch_error(self, manager: GraphManager) -> None:
        """Error status keeps the cache untouched and carries the server message."""
        cached = await manager.fetch("T1")

        with pytest.raises(FetchError) as exc_info:
            await manager.fetch("missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Trade not found"
        assert manager.get_snapshot("T1") is cached
        assert manager.get_snapshot("missing") is None

    @pytest.mark.asyncio
    async def test_non_json_raises_fetch_error(self, manager: GraphManager) -> None:
        with pytest.raises(FetchError):
            await manager.fetch("broken")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"nodes": ["spot"]},
            {"nodes": [{"id": "a"}, {"id": "b"}], "links": ["a->b"]},
            {"nodes": [], "metadata": "oops"},
            {"nodes": {"spot": {}}},
            {"nodes": [], "links": "a->b"},
        ],
    )
    async def test_malformed_payload_raises_fetch_error(self, payload: dict) -> None:
        """Valid JSON that is not a graph is a protocol failure, not a crash."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=payload))
        )
        manager = GraphManager(base_url="http://graph.test/api", client=client)

        with pytest.raises(FetchError) as exc_info:
            await manager.fetch("T1")

        assert exc_info.value.status_code == 200
        assert "Malformed graph payload" in exc_info.value.message
        assert manager.get_snapshot("T1") is None

    @pytest.mark.asyncio
    async def test_transport_error_raises_fetch_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        manager = GraphManager(base_url="http://graph.test/api", client=client)

        with pytest.raises(FetchError) as exc_info:
            await manager.fetch("T1")

        assert exc_info.value.status_code is None
        assert "ConnectError" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_close_keeps_injected_client(self, manager: GraphManager) -> None:
        await manager.close()
        # Injected clients are owned by the caller
        await manager.fetch("T1")


class TestSubscriptions:
    """Tests for subscription bookkeeping."""

    def test_subscribe_is_idempotent(self, manager: GraphManager) -> None:
        manager.subscribe("T1")
        manager.subscribe("T1")
        assert manager.subscriptions == frozenset({"T1"})
        assert manager.is_subscribed("T1")

    def test_unsubscribe_unknown_is_noop(self, manager: GraphManager) -> None:
        manager.unsubscribe("nope")
        assert manager.subscriptions == frozenset()


class TestApplyUpdate:
    """Tests for direct value application."""

    @pytest.mark.asyncio
    async def test_applies_for_subscribed_subject(self, manager: GraphManager) -> None:
        snapshot = await manager.fetch("T1")
        manager.subscribe("T1")
        listener = MagicMock()
        manager.add_listener(GRAPH_UPDATE, listener)

        changes = manager.apply_update(
            UpdateMessage("T1", [NodeUpdate("spot", 105.0), NodeUpdate("ghost", 1.0)])
        )

        assert [(c.node_id, c.old_value, c.new_value) for c in changes] == [("spot", 100.0, 105.0)]
        assert snapshot.find_node("spot").value == 105.0
        assert listener.call_args.args[0].changes == changes

    @pytest.mark.asyncio
    async def test_ignored_when_not_subscribed(self, manager: GraphManager) -> None:
        snapshot = await manager.fetch("T1")
        listener = MagicMock()
        manager.add_listener(GRAPH_UPDATE, listener)

        changes = manager.apply_update(UpdateMessage("T1", [NodeUpdate("spot", 1.0)]))

        assert changes == []
        assert snapshot.find_node("spot").value == 100.0
        listener.assert_not_called()

    def test_subscribed_without_cache_still_notifies(self, manager: GraphManager) -> None:
        manager.subscribe("T5")
        listener = MagicMock()
        manager.add_listener(GRAPH_UPDATE, listener)

        changes = manager.apply_update(UpdateMessage("T5", [NodeUpdate("x", 1.0)]))

        assert changes == []
        listener.assert_called_once()

    @pytest.mark.asyncio
    async def test_handle_message(self, manager: GraphManager) -> None:
        snapshot = await manager.fetch("T1")
        manager.subscribe("T1")

        assert manager.handle_message(
            '{"type": "graph_update", "data": {"subject_id": "T1", '
            '"updated_nodes": [{"id": "vol", "value": 0.25}]}}'
        )
        assert not manager.handle_message("{}")
        assert snapshot.find_node("vol").value == 0.25


class TestCacheAndListeners:
    """Tests for cache clearing and listener removal."""

    @pytest.mark.asyncio
    async def test_clear_cache(self, manager: GraphManager) -> None:
        await manager.fetch("T1")
        manager.clear_cache()
        assert manager.get_snapshot("T1") is None

    @pytest.mark.asyncio
    async def test_removed_listener_not_called(self, manager: GraphManager) -> None:
        listener = MagicMock()
        manager.add_listener(GRAPH_LOADED, listener)
        manager.remove_listener(GRAPH_LOADED, listener)

        await manager.fetch("T1")

        listener.assert_not_called()
