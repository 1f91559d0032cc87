"""Fire-and-forget event publishing after a committed local write.

``publish(record)`` never blocks and never raises: it builds the envelope
synchronously, then hands the bus submission to a background task.  The
task's completion callback only logs and counts.  The caller's write has
already committed, so a dropped event is a loss of propagation, not a
failed request.

In outbox mode :meth:`EventPublisher.stage` is handed to the store instead,
and the envelope is written in the write transaction
(see :mod:`content_relay.publishing.outbox`).
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Generic, TypeVar

from pydantic import ValidationError

from content_relay.bus.schemas import get_topic_for_payload
from content_relay.core.enums import Topic
from content_relay.core.errors import SerializationError
from content_relay.core.events import (
    ContentCreated,
    EventEnvelope,
    EventPayload,
    WatchRecorded,
)
from content_relay.core.interfaces import IEventBus
from content_relay.core.models import ContentRecord, WatchRecord
from content_relay.observability import metrics

logger = logging.getLogger(__name__)

R = TypeVar("R")


class EventPublisher(Generic[R]):
    """Turns committed records of type ``R`` into events on one topic.

    Subclasses set :attr:`topic` and implement :meth:`key_for` and
    :meth:`payload_for`.

    Parameters
    ----------
    bus:
        Destination bus.  Must be started before events are submitted.
    """

    topic: str = ""

    def __init__(self, bus: IEventBus) -> None:
        self._bus = bus
        self._in_flight: set[asyncio.Task[None]] = set()

        # Counters
        self._published: int = 0
        self._failed: int = 0
        self._dropped: int = 0

    # -- record mapping -----------------------------------------------------

    def key_for(self, record: R) -> str:
        raise NotImplementedError

    def payload_for(self, record: R) -> EventPayload:
        raise NotImplementedError

    def build(self, record: R) -> tuple[str, EventEnvelope]:
        """Return ``(topic, envelope)`` for *record*.

        Raises
        ------
        SerializationError
            If the record cannot be mapped to a payload or encoded.
        """
        try:
            payload = self.payload_for(record)
        except ValidationError as exc:
            raise SerializationError(
                f"Cannot build {type(self).__name__} payload: {exc}"
            ) from exc
        expected = get_topic_for_payload(payload)
        if expected != self.topic:
            raise SerializationError(
                f"{payload.event_type} belongs on {expected!r}, not {self.topic!r}"
            )
        return self.topic, EventEnvelope.wrap(payload, self.key_for(record))

    def stage(self, record: R) -> tuple[str, EventEnvelope] | None:
        """Outbox stager: like :meth:`build`, but logs and drops on failure.

        Returning ``None`` tells the store to save the record without an
        outbox entry, so a bad payload never fails the write.
        """
        try:
            return self.build(record)
        except SerializationError as exc:
            self._dropped += 1
            metrics.record_dropped(self.topic)
            logger.error("Dropping event for %r: %s", record, exc)
            return None

    # -- public API ---------------------------------------------------------

    def publish(self, record: R) -> asyncio.Task[None] | None:
        """Submit an event for *record* without waiting for the bus.

        Returns the submission task, or ``None`` when the event was dropped
        before submission.
        """
        try:
            topic, envelope = self.build(record)
        except SerializationError as exc:
            self._dropped += 1
            metrics.record_dropped(self.topic)
            logger.error("Dropping event for %r: %s", record, exc)
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._dropped += 1
            metrics.record_dropped(self.topic)
            logger.error(
                "No running event loop; dropping %s key=%s", envelope.type, envelope.key,
            )
            return None

        task = loop.create_task(
            self._bus.publish(topic, envelope),
            name=f"publish-{topic}-{envelope.event_id}",
        )
        self._in_flight.add(task)
        task.add_done_callback(functools.partial(self._on_complete, topic, envelope))
        return task

    async def drain(self) -> None:
        """Wait for every in-flight submission to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "published": self._published,
            "failed": self._failed,
            "dropped": self._dropped,
            "in_flight": len(self._in_flight),
        }

    # -- internals ----------------------------------------------------------

    def _on_complete(
        self,
        topic: str,
        envelope: EventEnvelope,
        task: asyncio.Task[None],
    ) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            self._failed += 1
            metrics.record_publish_failed(topic, envelope.type)
            logger.warning(
                "Publish of %s key=%s to %s was cancelled",
                envelope.type, envelope.key, topic,
            )
            return
        exc = task.exception()
        if exc is not None:
            self._failed += 1
            metrics.record_publish_failed(topic, envelope.type)
            logger.error(
                "Failed to publish %s key=%s to %s",
                envelope.type, envelope.key, topic,
                exc_info=exc,
            )
            return
        self._published += 1
        metrics.record_published(topic, envelope.type)
        logger.info(
            "Published %s key=%s to %s (event_id=%s)",
            envelope.type, envelope.key, topic, envelope.event_id,
        )


class ContentEventPublisher(EventPublisher[ContentRecord]):
    """``ContentCreated`` on ``content-events``, keyed by the content id."""

    topic = Topic.CONTENT_EVENTS.value

    def key_for(self, record: ContentRecord) -> str:
        return str(record.id)

    def payload_for(self, record: ContentRecord) -> ContentCreated:
        if record.id is None:
            raise SerializationError("ContentRecord has no id; publish after save")
        return ContentCreated(
            id=record.id,
            title=record.title,
            type=record.type.value,
            timestamp=record.created_at,
        )


class WatchEventPublisher(EventPublisher[WatchRecord]):
    """``WatchRecorded`` on ``watch-events``, keyed by the visitor id."""

    topic = Topic.WATCH_EVENTS.value

    def key_for(self, record: WatchRecord) -> str:
        return record.visitor_id

    def payload_for(self, record: WatchRecord) -> WatchRecorded:
        return WatchRecorded(
            visitor_id=record.visitor_id,
            content_id=record.content_id,
            watched_seconds=record.watched_seconds,
            timestamp=record.watched_at,
        )
