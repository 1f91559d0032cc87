"""Event bus: ordered-per-key, at-least-once delivery to consumer groups."""

from content_relay.bus.bus import create_event_bus
from content_relay.bus.memory_bus import MemoryEventBus
from content_relay.bus.redis_streams import RedisStreamsBus

__all__ = ["MemoryEventBus", "RedisStreamsBus", "create_event_bus"]
