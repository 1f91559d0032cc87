"""In-memory event bus for tests and local runs.

No external dependencies.  Each topic is an append-only log; each consumer
group has a committed offset into it.  Delivery is in log order, so events
for a key arrive in publish order.

At-least-once semantics:
- A group's offset advances only after its handler returns.
- A failing handler is retried up to ``max_handler_retries`` times, then
  the envelope is dead-lettered and the offset moves past it.
- ``redeliver()`` rewinds a group, modelling a consumer that crashed
  before committing its offset.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field

from content_relay.core.errors import BusNotStartedError
from content_relay.core.events import EventEnvelope
from content_relay.core.interfaces import EnvelopeHandler

logger = logging.getLogger(__name__)


@dataclass
class MemoryDeadLetter:
    """Record of a handler failure in the memory bus."""

    topic: str
    group: str
    event_id: str
    key: str
    error: str
    attempts: int
    timestamp: float = field(default_factory=time.monotonic)


class MemoryEventBus:
    """In-memory event bus. Safe within a single asyncio event loop."""

    def __init__(
        self,
        max_handler_retries: int = 3,
        on_handler_error: Callable[
            [str, str, str, Exception], None
        ] | None = None,
    ) -> None:
        self._log: dict[str, list[EventEnvelope]] = defaultdict(list)
        # topic → list of (group, handler)
        self._handlers: dict[str, list[tuple[str, EnvelopeHandler]]] = defaultdict(list)
        self._offsets: dict[tuple[str, str], int] = {}
        self._delivering: set[tuple[str, str]] = set()
        self._max_retries = max(1, max_handler_retries)
        self._running = False
        self._on_handler_error = on_handler_error

        # Observability
        self._error_counts: dict[str, int] = defaultdict(int)
        self._dead_letters: list[MemoryDeadLetter] = []
        self._messages_processed: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._running = True
        for topic, subs in list(self._handlers.items()):
            for group, _ in subs:
                await self._deliver(topic, group)

    async def stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Publish / Subscribe
    # ------------------------------------------------------------------

    async def publish(self, topic: str, envelope: EventEnvelope) -> None:
        """Append to the topic log and deliver to every subscribed group."""
        if not self._running:
            raise BusNotStartedError("MemoryEventBus not started")

        self._log[topic].append(envelope)
        for group, _ in list(self._handlers.get(topic, [])):
            await self._deliver(topic, group)

    async def subscribe(
        self,
        topic: str,
        group: str,
        handler: EnvelopeHandler,
    ) -> None:
        """Register *handler* as the consumer for *group* on *topic*.

        A new group starts at the beginning of the log; if the bus is
        running any backlog is delivered immediately.
        """
        if any(g == group for g, _ in self._handlers[topic]):
            raise ValueError(f"Group {group!r} already subscribed to {topic!r}")
        self._handlers[topic].append((group, handler))
        self._offsets.setdefault((topic, group), 0)
        if self._running:
            await self._deliver(topic, group)

    async def redeliver(self, topic: str, group: str, from_offset: int = 0) -> None:
        """Rewind *group* to *from_offset* and deliver again from there."""
        if (topic, group) not in self._offsets:
            raise KeyError(f"No group {group!r} on topic {topic!r}")
        self._offsets[(topic, group)] = max(0, from_offset)
        await self._deliver(topic, group)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, topic: str, group: str) -> None:
        """Drain *group*'s backlog in log order.

        Re-entrant publishes from inside a handler only extend the log;
        the outer loop picks the new entries up.
        """
        slot = (topic, group)
        if slot in self._delivering or not self._running:
            return
        handler = self._handler_for(topic, group)
        if handler is None:
            return

        self._delivering.add(slot)
        try:
            log = self._log[topic]
            while self._offsets[slot] < len(log):
                envelope = log[self._offsets[slot]]
                await self._handle(topic, group, handler, envelope)
                self._offsets[slot] += 1
        finally:
            self._delivering.discard(slot)

    async def _handle(
        self,
        topic: str,
        group: str,
        handler: EnvelopeHandler,
        envelope: EventEnvelope,
    ) -> None:
        error_key = f"{topic}/{group}"
        for attempt in range(1, self._max_retries + 1):
            try:
                await handler(envelope)
                self._messages_processed += 1
                return
            except Exception as exc:
                self._error_counts[error_key] += 1
                logger.exception(
                    "Handler error on topic=%s group=%s event=%s (attempt %d/%d)",
                    topic,
                    group,
                    envelope.event_id,
                    attempt,
                    self._max_retries,
                )
                if self._on_handler_error is not None:
                    try:
                        self._on_handler_error(topic, group, envelope.event_id, exc)
                    except Exception:
                        logger.warning(
                            "on_handler_error callback failed",
                            exc_info=True,
                        )
                last_error = exc

        logger.error(
            "Dead-lettering event %s on %s/%s after %d attempts",
            envelope.event_id,
            topic,
            group,
            self._max_retries,
        )
        self._dead_letters.append(
            MemoryDeadLetter(
                topic=topic,
                group=group,
                event_id=envelope.event_id,
                key=envelope.key,
                error=str(last_error),
                attempts=self._max_retries,
            )
        )

    def _handler_for(self, topic: str, group: str) -> EnvelopeHandler | None:
        for g, handler in self._handlers.get(topic, []):
            if g == group:
                return handler
        return None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        """Return per-topic/group error counts."""
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[MemoryDeadLetter]:
        """Access the dead-letter list (read-only snapshot)."""
        return list(self._dead_letters)

    @property
    def messages_processed(self) -> int:
        """Total deliveries that completed without a handler error."""
        return self._messages_processed

    def committed_offset(self, topic: str, group: str) -> int:
        """Index of the next log entry *group* will receive."""
        return self._offsets.get((topic, group), 0)

    def clear_dead_letters(self) -> list[MemoryDeadLetter]:
        """Drain the dead-letter list and return all entries."""
        drained = self._dead_letters[:]
        self._dead_letters.clear()
        return drained

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    def get_history(self, topic: str | None = None) -> list[tuple[str, EventEnvelope]]:
        """Get published envelopes, optionally filtered by topic. For testing."""
        if topic is None:
            return [(t, e) for t, log in self._log.items() for e in log]
        return [(topic, e) for e in self._log.get(topic, [])]
