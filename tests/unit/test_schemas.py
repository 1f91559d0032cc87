"""Tests for the topic registry and the bus factory."""

from __future__ import annotations

from content_relay.bus.bus import create_event_bus
from content_relay.bus.memory_bus import MemoryEventBus
from content_relay.bus.redis_streams import RedisStreamsBus
from content_relay.bus.schemas import (
    EVENT_TYPE_MAP,
    get_payload_class,
    get_topic_for_payload,
)
from content_relay.core.config import BusConfig
from content_relay.core.enums import BusBackend
from content_relay.core.events import ContentCreated, WatchRecorded


class TestSchemas:
    def test_event_type_map(self):
        assert EVENT_TYPE_MAP == {
            "ContentCreated": ContentCreated,
            "WatchRecorded": WatchRecorded,
        }

    def test_payload_class_lookup(self):
        assert get_payload_class("WatchRecorded") is WatchRecorded
        assert get_payload_class("Unknown") is None

    def test_topic_for_class_and_instance(self):
        assert get_topic_for_payload(ContentCreated) == "content-events"
        payload = WatchRecorded(visitor_id="v", content_id=1, watched_seconds=1)
        assert get_topic_for_payload(payload) == "watch-events"


class TestBusFactory:
    def test_memory_backend(self):
        bus = create_event_bus(BusConfig(max_handler_retries=5))
        assert isinstance(bus, MemoryEventBus)
        assert bus._max_retries == 5

    def test_redis_backend(self):
        def on_error(t, g, m, e):
            pass

        bus = create_event_bus(
            BusConfig(backend=BusBackend.REDIS, partitions=4), on_handler_error=on_error,
        )
        assert isinstance(bus, RedisStreamsBus)
        assert bus._partitions == 4
        assert bus._on_handler_error is on_error
