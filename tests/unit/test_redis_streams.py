"""Unit tests for RedisStreamsBus against a mocked redis client."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as aioredis

from content_relay.bus.redis_streams import DeadLetter, RedisStreamsBus, stream_name
from content_relay.core.errors import BusNotStartedError, TransportError
from content_relay.core.ids import partition_for
from content_relay.publishing.publisher import ContentEventPublisher

from tests.conftest import make_content, make_content_event


def _bus(**kwargs) -> RedisStreamsBus:
    kwargs.setdefault("retry_backoff", 0)
    bus = RedisStreamsBus(**kwargs)
    bus._redis = AsyncMock()
    return bus


def _fields(env) -> dict[str, str]:
    return {"_type": env.type, "_key": env.key, "_data": env.to_wire()}


class TestConstruction:
    def test_defaults(self):
        bus = RedisStreamsBus()
        assert bus.messages_processed == 0
        assert bus.dead_letters == []
        assert bus.get_error_counts() == {}

    def test_rejects_zero_partitions(self):
        with pytest.raises(ValueError):
            RedisStreamsBus(partitions=0)

    def test_stream_name(self):
        assert stream_name("content-events", 3) == "content-events:3"

    def test_dead_letter_dataclass(self):
        dl = DeadLetter(topic="t", group="g", msg_id="1-0", key="k", error="e", attempts=3)
        assert dl.attempts == 3
        assert dl.timestamp > 0


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_before_start_raises(self):
        with pytest.raises(BusNotStartedError):
            await RedisStreamsBus().publish("t", make_content_event(1))

    @pytest.mark.asyncio
    async def test_publish_routes_by_key(self):
        bus = _bus(partitions=4, max_stream_length=500)
        env = make_content_event(42)

        await bus.publish("content-events", env)

        bus._redis.xadd.assert_awaited_once()
        args, kwargs = bus._redis.xadd.call_args
        assert args[0] == f"content-events:{partition_for('42', 4)}"
        assert args[1] == _fields(env)
        assert kwargs == {"maxlen": 500, "approximate": True}

    @pytest.mark.asyncio
    async def test_same_key_same_stream(self):
        bus = _bus(partitions=8)
        for _ in range(3):
            await bus.publish("t", make_content_event(7))
        streams = {c.args[0] for c in bus._redis.xadd.call_args_list}
        assert len(streams) == 1

    @pytest.mark.asyncio
    async def test_redis_failure_raises_transport_error(self):
        bus = _bus()
        bus._redis.xadd.side_effect = aioredis.ConnectionError("connection reset")

        with pytest.raises(TransportError, match="XADD to t:0 failed"):
            await bus.publish("t", make_content_event(1))

    @pytest.mark.asyncio
    async def test_publisher_logs_redis_failure_without_raising(self, caplog):
        bus = _bus()
        bus._redis.xadd.side_effect = aioredis.ConnectionError("connection reset")
        publisher = ContentEventPublisher(bus)

        with caplog.at_level(logging.ERROR, logger="content_relay.publishing.publisher"):
            publisher.publish(make_content(1))
            await publisher.drain()

        assert publisher.stats["failed"] == 1
        [record] = [r for r in caplog.records if r.exc_info]
        assert isinstance(record.exc_info[1], TransportError)


class TestProcessMessage:
    @pytest.mark.asyncio
    async def test_success_acks(self):
        bus = _bus()
        handler = AsyncMock()
        env = make_content_event(1)

        await bus._process_message("t", "t:0", "g", handler, "1-0", _fields(env), "t/g")

        handler.assert_awaited_once_with(env)
        bus._redis.xack.assert_awaited_once_with("t:0", "g", "1-0")
        assert bus.messages_processed == 1

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        bus = _bus(max_handler_retries=3)
        handler = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), None])

        await bus._process_message(
            "t", "t:0", "g", handler, "1-0", _fields(make_content_event(1)), "t/g",
        )

        assert handler.await_count == 3
        bus._redis.xack.assert_awaited_once()
        assert bus.dead_letters == []
        assert bus.get_error_counts() == {"t/g": 2}

    @pytest.mark.asyncio
    async def test_exhausted_retries_dead_letter_and_ack(self):
        callback = MagicMock()
        bus = _bus(max_handler_retries=2, on_handler_error=callback)
        handler = AsyncMock(side_effect=ValueError("boom"))

        await bus._process_message(
            "t", "t:0", "g", handler, "1-0", _fields(make_content_event(5)), "t/g",
        )

        assert handler.await_count == 2
        assert callback.call_count == 2
        bus._redis.xack.assert_awaited_once_with("t:0", "g", "1-0")
        [dl] = bus.dead_letters
        assert dl.key == "5"
        assert dl.attempts == 2
        assert "boom" in dl.error
        assert bus.messages_processed == 0

    @pytest.mark.asyncio
    async def test_malformed_message_dead_lettered_without_handler(self):
        bus = _bus()
        handler = AsyncMock()

        await bus._process_message(
            "t", "t:0", "g", handler, "9-0", {"_key": "k", "_data": "{bad"}, "t/g",
        )

        handler.assert_not_awaited()
        bus._redis.xack.assert_awaited_once_with("t:0", "g", "9-0")
        assert bus.dead_letters[0].error == "deserialization_failed"

    @pytest.mark.asyncio
    async def test_missing_data_field_is_malformed(self):
        bus = _bus()
        await bus._process_message("t", "t:0", "g", AsyncMock(), "9-0", None, "t/g")
        assert bus.dead_letters[0].key == "unknown"

    @pytest.mark.asyncio
    async def test_cancellation_propagates_without_ack(self):
        bus = _bus()
        handler = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await bus._process_message(
                "t", "t:0", "g", handler, "1-0", _fields(make_content_event(1)), "t/g",
            )
        bus._redis.xack.assert_not_awaited()


class TestConsumeLoop:
    @pytest.mark.asyncio
    async def test_reads_pending_before_new_entries(self):
        bus = _bus()
        bus._running = True
        env = make_content_event(1)
        cursors = []

        async def xreadgroup(**kwargs):
            cursors.append(kwargs["streams"]["t:0"])
            if len(cursors) == 1:
                return [("t:0", [("1-0", _fields(env))])]
            if len(cursors) == 3:
                bus._running = False
            return []

        bus._redis.xreadgroup = xreadgroup
        handler = AsyncMock()

        await bus._consume_loop("t", "t:0", "g", handler)

        assert cursors == ["0", "0", ">"]
        handler.assert_awaited_once_with(env)

    @pytest.mark.asyncio
    async def test_ensure_group_ignores_busygroup(self):
        bus = _bus()
        bus._redis.xgroup_create.side_effect = aioredis.ResponseError(
            "BUSYGROUP Consumer Group name already exists"
        )
        await bus._ensure_group("t:0", "g")

    @pytest.mark.asyncio
    async def test_ensure_group_reraises_other_errors(self):
        bus = _bus()
        bus._redis.xgroup_create.side_effect = aioredis.ResponseError("WRONGTYPE")
        with pytest.raises(aioredis.ResponseError):
            await bus._ensure_group("t:0", "g")

    @pytest.mark.asyncio
    async def test_late_subscribe_launches_one_loop_per_partition(self):
        bus = _bus(partitions=3)
        redis = bus._redis

        async def idle(**kwargs):
            await asyncio.sleep(0.01)
            return []

        redis.xreadgroup = idle
        bus._running = True

        await bus.subscribe("content-events", "recs", AsyncMock())

        created = [c.args[:2] for c in redis.xgroup_create.call_args_list]
        assert created == [
            ("content-events:0", "recs"),
            ("content-events:1", "recs"),
            ("content-events:2", "recs"),
        ]
        assert len(bus._tasks) == 3

        await bus.stop()
        assert bus._tasks == []
        redis.aclose.assert_awaited_once()
