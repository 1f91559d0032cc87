"""Event projectors: maintain a local denormalised view from bus events.

A projector is the bus handler for one consumer group.  Per envelope it

1. decodes the payload; a poison message is logged, counted and
   *returned from normally* so the bus commits past it,
2. applies the payload to the view store with an upsert keyed by the
   entity id, so redelivery and superseding events converge on one
   current view per key,
3. returns, which lets the bus advance the group's offset.

Store errors are not caught here: they propagate so the bus retries the
envelope (and eventually dead-letters it).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from content_relay.core.enums import Topic
from content_relay.core.errors import DeserializationError
from content_relay.core.events import (
    ContentCreated,
    EventEnvelope,
    EventPayload,
    decode_payload,
)
from content_relay.core.interfaces import IEventBus, IViewStore
from content_relay.core.models import ContentView
from content_relay.observability import metrics
from content_relay.observability.logger import trace_context

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=EventPayload)

Apply = Callable[[EventEnvelope, P], Awaitable[None]]


class EventProjector(Generic[P]):
    """Decode envelopes of one payload type and hand them to *apply*.

    Parameters
    ----------
    payload_model:
        Payload class the projector accepts.  Envelopes of any other type
        are treated as poison.
    apply:
        Coroutine that upserts the view for one decoded payload.
    topic:
        Topic the projector consumes, used by :meth:`subscribe`.
    """

    def __init__(self, payload_model: type[P], apply: Apply[P], topic: str) -> None:
        self._model = payload_model
        self._apply = apply
        self.topic = topic

        # Counters
        self._applied: int = 0
        self._skipped: int = 0

    async def subscribe(self, bus: IEventBus, group: str) -> None:
        """Register :meth:`handle` as *group*'s consumer on :attr:`topic`."""
        await bus.subscribe(self.topic, group, self.handle)
        logger.info(
            "%s subscribed to %s as group=%s", type(self).__name__, self.topic, group,
        )

    async def handle(self, envelope: EventEnvelope) -> None:
        with trace_context(envelope.event_id):
            try:
                payload = decode_payload(envelope, self._model)
                await self._apply(envelope, payload)
            except DeserializationError as exc:
                self._skipped += 1
                metrics.record_projection(self.topic, "skipped")
                logger.warning(
                    "Skipping poison event %s key=%s: %s",
                    envelope.event_id, envelope.key, exc,
                )
                return
            self._applied += 1
            metrics.record_projection(self.topic, "applied")

    @property
    def stats(self) -> dict[str, int]:
        return {"applied": self._applied, "skipped": self._skipped}


class ContentViewProjector(EventProjector[ContentCreated]):
    """Projects ``ContentCreated`` events into :class:`ContentView` rows.

    The view's ``viewed_at`` is the event timestamp, not the time of
    processing, so applying the same event twice writes an identical row.
    Last writer wins per content id, in delivery order.
    """

    def __init__(self, store: IViewStore) -> None:
        super().__init__(ContentCreated, self._upsert_view, Topic.CONTENT_EVENTS.value)
        self._store = store

    async def _upsert_view(self, envelope: EventEnvelope, payload: ContentCreated) -> None:
        if envelope.key != str(payload.id):
            raise DeserializationError(
                ContentCreated.event_type,
                f"key {envelope.key!r} does not match content id {payload.id}",
            )
        view = ContentView(
            content_id=payload.id,
            content_title=payload.title,
            content_type=payload.type,
            viewed_at=payload.timestamp,
            last_event_id=envelope.event_id,
        )
        await self._store.upsert(view)
        logger.info(
            "Projected content view id=%s title=%r", payload.id, payload.title,
        )
