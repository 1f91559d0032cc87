from content_relay.publishing.outbox import OutboxDispatcher
from content_relay.publishing.publisher import (
    ContentEventPublisher,
    EventPublisher,
    WatchEventPublisher,
)

__all__ = [
    "ContentEventPublisher",
    "EventPublisher",
    "OutboxDispatcher",
    "WatchEventPublisher",
]
