"""Unit tests for stream message decoding and consumption."""

import json
from collections.abc import AsyncIterator

import pytest

from calcgraph.models import UpdateMessage
from calcgraph.sync import StreamConsumer, parse_update_message


def _message(subject_id: str = "T1", nodes: list | None = None, key: str = "subject_id") -> dict:
    return {
        "type": "graph_update",
        "data": {key: subject_id, "updated_nodes": nodes or [{"id": "spot", "value": 101.5}]},
    }


class TestParseUpdateMessage:
    """Tests for raw message decoding."""

    def test_dict_message(self) -> None:
        message = parse_update_message(_message())
        assert message is not None
        assert message.subject_id == "T1"
        assert message.node_updates[0].id == "spot"
        assert message.node_updates[0].value == 101.5

    def test_text_and_bytes(self) -> None:
        raw = json.dumps(_message())
        assert parse_update_message(raw).subject_id == "T1"
        assert parse_update_message(raw.encode()).subject_id == "T1"

    def test_trade_id_alias(self) -> None:
        message = parse_update_message(_message(key="trade_id"))
        assert message is not None
        assert message.subject_id == "T1"

    def test_optional_delta(self) -> None:
        message = parse_update_message(_message(nodes=[{"id": "a", "value": 2, "delta": 0.5}]))
        assert message.node_updates[0].delta == 0.5

    def test_bad_items_skipped(self) -> None:
        message = parse_update_message(
            _message(nodes=[{"id": "a", "value": 1}, {"value": 2}, "junk", {"id": "b", "value": "x"}])
        )
        assert [u.id for u in message.node_updates] == ["a"]

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            {"type": "heartbeat"},
            {"type": "graph_update"},
            {"type": "graph_update", "data": {"updated_nodes": []}},
            {"type": "graph_update", "data": {"subject_id": "T1", "updated_nodes": "x"}},
            42,
        ],
    )
    def test_malformed_returns_none(self, raw: object) -> None:
        assert parse_update_message(raw) is None


class TestStreamConsumer:
    """Tests for draining a push source."""

    def test_feed_counts(self) -> None:
        received: list[UpdateMessage] = []
        consumer = StreamConsumer(received.append)

        assert consumer.feed(_message()) is True
        assert consumer.feed("garbage") is False

        assert len(received) == 1
        assert consumer.received == 2
        assert consumer.dropped == 1

    @pytest.mark.asyncio
    async def test_run_drains_source(self) -> None:
        received: list[UpdateMessage] = []
        consumer = StreamConsumer(received.append)

        async def source() -> AsyncIterator[object]:
            yield json.dumps(_message("T1"))
            yield {"type": "heartbeat"}
            yield _message("T2")

        accepted = await consumer.run(source())

        assert accepted == 2
        assert [m.subject_id for m in received] == ["T1", "T2"]
