"""Tests for the fire-and-forget event publishers."""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import AsyncMock

import pytest

from content_relay.core.errors import SerializationError, TransportError
from content_relay.publishing.publisher import ContentEventPublisher, WatchEventPublisher

from tests.conftest import make_content, make_watch


class TestContentEventPublisher:
    @pytest.mark.asyncio
    async def test_publishes_content_created_keyed_by_id(self, memory_bus):
        publisher = ContentEventPublisher(memory_bus)

        task = publisher.publish(make_content(12, "Heat"))
        assert task is not None
        await publisher.drain()

        [(topic, env)] = memory_bus.get_history()
        assert topic == "content-events"
        assert env.key == "12"
        assert env.type == "ContentCreated"
        body = json.loads(env.payload)
        assert body["id"] == 12
        assert body["title"] == "Heat"
        assert body["type"] == "MOVIE"
        assert publisher.stats == {"published": 1, "failed": 0, "dropped": 0, "in_flight": 0}

    @pytest.mark.asyncio
    async def test_publish_does_not_wait_for_bus(self):
        gate = asyncio.Event()
        bus = AsyncMock()

        async def slow_publish(topic, env):
            await gate.wait()

        bus.publish.side_effect = slow_publish
        publisher = ContentEventPublisher(bus)

        publisher.publish(make_content(1))
        await asyncio.sleep(0)
        assert publisher.stats["in_flight"] == 1
        assert publisher.stats["published"] == 0

        gate.set()
        await publisher.drain()
        assert publisher.stats["published"] == 1
        assert publisher.stats["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_transport_failure_is_logged_not_raised(self, caplog):
        bus = AsyncMock()
        bus.publish.side_effect = TransportError("redis down")
        publisher = ContentEventPublisher(bus)

        with caplog.at_level(logging.ERROR, logger="content_relay.publishing.publisher"):
            publisher.publish(make_content(1))
            await publisher.drain()

        assert publisher.stats["failed"] == 1
        assert publisher.stats["published"] == 0
        assert "Failed to publish ContentCreated key=1" in caplog.text

    @pytest.mark.asyncio
    async def test_unsaved_record_is_dropped(self, caplog):
        bus = AsyncMock()
        publisher = ContentEventPublisher(bus)

        with caplog.at_level(logging.ERROR):
            assert publisher.publish(make_content(None)) is None

        bus.publish.assert_not_called()
        assert publisher.stats["dropped"] == 1
        assert "Dropping event" in caplog.text

    @pytest.mark.asyncio
    async def test_cancelled_submission_counts_as_failed(self):
        bus = AsyncMock()

        async def hang(topic, env):
            await asyncio.sleep(10)

        bus.publish.side_effect = hang
        publisher = ContentEventPublisher(bus)

        task = publisher.publish(make_content(1))
        await asyncio.sleep(0)
        task.cancel()
        await publisher.drain()

        assert publisher.stats["failed"] == 1

    def test_publish_without_running_loop_drops(self):
        publisher = ContentEventPublisher(AsyncMock())
        assert publisher.publish(make_content(1)) is None
        assert publisher.stats["dropped"] == 1


class TestWatchEventPublisher:
    @pytest.mark.asyncio
    async def test_publishes_watch_recorded_keyed_by_visitor(self, memory_bus):
        publisher = WatchEventPublisher(memory_bus)
        record = make_watch("visitor-9", content_id=3, watched_seconds=45).model_copy(
            update={"id": 1}
        )

        publisher.publish(record)
        await publisher.drain()

        [(topic, env)] = memory_bus.get_history()
        assert topic == "watch-events"
        assert env.key == "visitor-9"
        body = json.loads(env.payload)
        assert body["visitorId"] == "visitor-9"
        assert body["contentId"] == 3
        assert body["watchedSeconds"] == 45


class TestBuildAndStage:
    def test_build_returns_topic_and_envelope(self):
        topic, env = ContentEventPublisher(AsyncMock()).build(make_content(5))
        assert topic == "content-events"
        assert env.key == "5"

    def test_build_rejects_wrong_topic(self):
        class Misrouted(ContentEventPublisher):
            topic = "watch-events"

        with pytest.raises(SerializationError, match="belongs on"):
            Misrouted(AsyncMock()).build(make_content(1))

    def test_stage_drops_unbuildable_record(self):
        publisher = ContentEventPublisher(AsyncMock())
        assert publisher.stage(make_content(None)) is None
        assert publisher.stats["dropped"] == 1

    def test_stage_returns_pair(self):
        staged = WatchEventPublisher(AsyncMock()).stage(make_watch())
        assert staged is not None
        assert staged[0] == "watch-events"
