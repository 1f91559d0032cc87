"""Topic → schema registry.

Maps bus topic names to their payload models.
Used by publishers to pick a topic and by consumers to decode payloads.
"""

from __future__ import annotations

from content_relay.core.enums import Topic
from content_relay.core.events import ContentCreated, EventPayload, WatchRecorded

# Topic name → payload types that can appear on that topic
TOPIC_SCHEMAS: dict[str, list[type[EventPayload]]] = {
    Topic.CONTENT_EVENTS.value: [ContentCreated],
    Topic.WATCH_EVENTS.value: [WatchRecorded],
}

# Flat map: wire event type → payload class (for deserialization)
EVENT_TYPE_MAP: dict[str, type[EventPayload]] = {}
for _schemas in TOPIC_SCHEMAS.values():
    for _cls in _schemas:
        EVENT_TYPE_MAP[_cls.event_type] = _cls


def get_payload_class(event_type: str) -> type[EventPayload] | None:
    """Look up payload class by wire event type."""
    return EVENT_TYPE_MAP.get(event_type)


def get_topic_for_payload(payload: EventPayload | type[EventPayload]) -> str | None:
    """Find the topic a given payload should be published on."""
    cls = payload if isinstance(payload, type) else type(payload)
    for topic, schemas in TOPIC_SCHEMAS.items():
        if cls in schemas:
            return topic
    return None
