"""Redis Streams event bus implementation.

Uses Redis Streams for persistent, ordered event delivery with consumer
groups.  Each consumer group gets at-least-once delivery.

Partitioning:
- A topic is split into ``partitions`` streams named ``{topic}:{n}``.
- An envelope goes to the stream chosen by ``partition_for(envelope.key)``,
  so every event about one entity lands in one stream, in order.
- One consume loop runs per (partition, group); distinct partitions are
  processed concurrently, a single partition strictly sequentially.

Delivery rules:
- Messages are XACKed only *after* the handler succeeds.
- A failing handler is retried inline with exponential backoff so later
  messages in the partition never overtake it.  After
  ``max_handler_retries`` failures the message is dead-lettered and acked.
- Malformed messages are dead-lettered and acked immediately.
- On start each consumer first re-reads its own pending (delivered but
  un-acked) entries: that is the redelivery path after a crash.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field

import redis.asyncio as aioredis

from content_relay.core.errors import (
    BusNotStartedError,
    DeserializationError,
    TransportError,
)
from content_relay.core.events import EventEnvelope
from content_relay.core.ids import partition_for
from content_relay.core.interfaces import EnvelopeHandler

logger = logging.getLogger(__name__)


@dataclass
class DeadLetter:
    """Record of a message that exhausted its retry budget."""

    topic: str
    group: str
    msg_id: str
    key: str
    error: str
    attempts: int
    timestamp: float = field(default_factory=time.monotonic)


def stream_name(topic: str, partition: int) -> str:
    return f"{topic}:{partition}"


class RedisStreamsBus:
    """Production event bus backed by Redis Streams."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        partitions: int = 1,
        max_stream_length: int = 10_000,
        block_ms: int = 1000,
        batch_size: int = 10,
        max_handler_retries: int = 3,
        retry_backoff: float = 0.1,
        on_handler_error: Callable[
            [str, str, str, Exception], None
        ] | None = None,
    ) -> None:
        if partitions < 1:
            raise ValueError(f"partitions must be >= 1, got {partitions}")
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = None
        self._partitions = partitions
        self._max_len = max_stream_length
        self._block_ms = block_ms
        self._batch_size = batch_size
        self._max_retries = max(1, max_handler_retries)
        self._retry_backoff = retry_backoff
        self._on_handler_error = on_handler_error
        self._subscriptions: list[tuple[str, str, EnvelopeHandler]] = []
        self._tasks: list[asyncio.Task] = []
        self._running = False

        # Observability
        self._error_counts: dict[str, int] = defaultdict(int)
        self._dead_letters: list[DeadLetter] = []
        self._messages_processed: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to Redis and start consumer loops."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url, decode_responses=True
            )
        self._running = True

        for topic, group, handler in self._subscriptions:
            await self._launch(topic, group, handler)

    async def stop(self) -> None:
        """Stop consumer loops and close Redis connection."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._redis:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Publish / Subscribe
    # ------------------------------------------------------------------

    async def publish(self, topic: str, envelope: EventEnvelope) -> None:
        """Append *envelope* to the partition stream for its key.

        Raises :class:`TransportError` when Redis rejects or drops the write.
        """
        if not self._redis:
            raise BusNotStartedError("RedisStreamsBus not started")

        stream = stream_name(topic, partition_for(envelope.key, self._partitions))
        fields = {
            "_type": envelope.type,
            "_key": envelope.key,
            "_data": envelope.to_wire(),
        }
        try:
            await self._redis.xadd(
                stream, fields, maxlen=self._max_len, approximate=True
            )
        except aioredis.RedisError as exc:
            raise TransportError(f"XADD to {stream} failed: {exc}") from exc

    async def subscribe(
        self,
        topic: str,
        group: str,
        handler: EnvelopeHandler,
    ) -> None:
        """Register a handler.

        Can be called before or after start().  If the bus is already
        running the consumer groups are created and the consume loops
        launched immediately.
        """
        self._subscriptions.append((topic, group, handler))

        # Late subscription: bus already running, spin up consumers now.
        if self._running and self._redis is not None:
            await self._launch(topic, group, handler)

    async def _launch(self, topic: str, group: str, handler: EnvelopeHandler) -> None:
        for partition in range(self._partitions):
            stream = stream_name(topic, partition)
            await self._ensure_group(stream, group)
            task = asyncio.create_task(
                self._consume_loop(topic, stream, group, handler),
                name=f"consumer-{stream}-{group}",
            )
            self._tasks.append(task)

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    async def _consume_loop(
        self,
        topic: str,
        stream: str,
        group: str,
        handler: EnvelopeHandler,
    ) -> None:
        """Read from one partition stream, call handler, ack.

        The consumer name is stable per (stream, group), so after a restart
        the first reads (cursor ``"0"``) return this consumer's pending
        entries before switching to new ones (cursor ``">"``).
        """
        consumer_name = f"{group}-{stream}"
        assert self._redis is not None
        error_key = f"{topic}/{group}"
        cursor = "0"

        while self._running:
            try:
                entries = await self._redis.xreadgroup(
                    groupname=group,
                    consumername=consumer_name,
                    streams={stream: cursor},
                    count=self._batch_size,
                    block=None if cursor == "0" else self._block_ms,
                )

                messages = [m for _stream, batch in (entries or []) for m in batch]
                if cursor == "0" and not messages:
                    cursor = ">"
                    continue

                for msg_id, fields in messages:
                    await self._process_message(
                        topic, stream, group, handler, msg_id, fields, error_key,
                    )

            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception(
                    "Consumer loop error for %s/%s", stream, group,
                )
                self._error_counts[error_key] += 1
                await asyncio.sleep(1)

    async def _process_message(
        self,
        topic: str,
        stream: str,
        group: str,
        handler: EnvelopeHandler,
        msg_id: str,
        fields: dict[str, str] | None,
        error_key: str,
    ) -> None:
        """Process a single message with inline retries.

        On success: ack the message.
        On failure: back off and retry; after max retries dead-letter + ack.
        """
        assert self._redis is not None
        fields = fields or {}

        try:
            envelope = self._deserialize(fields)
        except DeserializationError as exc:
            # Malformed message: can't retry, dead-letter immediately
            logger.warning("Malformed message %s on %s: %s", msg_id, stream, exc)
            self._dead_letters.append(
                DeadLetter(
                    topic=topic,
                    group=group,
                    msg_id=str(msg_id),
                    key=fields.get("_key", "unknown"),
                    error="deserialization_failed",
                    attempts=1,
                )
            )
            await self._redis.xack(stream, group, msg_id)
            return

        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                await handler(envelope)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                self._error_counts[error_key] += 1
                logger.exception(
                    "Handler error on %s/%s msg=%s (attempt %d/%d)",
                    stream,
                    group,
                    msg_id,
                    attempt,
                    self._max_retries,
                )
                if self._on_handler_error is not None:
                    try:
                        self._on_handler_error(topic, group, str(msg_id), exc)
                    except Exception:
                        logger.warning(
                            "on_handler_error callback failed", exc_info=True,
                        )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_backoff * (2 ** (attempt - 1)))
                continue

            await self._redis.xack(stream, group, msg_id)
            self._messages_processed += 1
            return

        # Exhausted retries: dead-letter and ack to unblock the partition
        logger.error(
            "Dead-lettering message %s on %s/%s after %d attempts",
            msg_id,
            stream,
            group,
            self._max_retries,
        )
        self._dead_letters.append(
            DeadLetter(
                topic=topic,
                group=group,
                msg_id=str(msg_id),
                key=envelope.key,
                error=str(last_error),
                attempts=self._max_retries,
            )
        )
        await self._redis.xack(stream, group, msg_id)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        """Return per-topic/group error counts."""
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[DeadLetter]:
        """Access the dead-letter list (read-only snapshot)."""
        return list(self._dead_letters)

    @property
    def messages_processed(self) -> int:
        """Total messages successfully processed."""
        return self._messages_processed

    def clear_dead_letters(self) -> list[DeadLetter]:
        """Drain the dead-letter list and return all entries."""
        drained = self._dead_letters[:]
        self._dead_letters.clear()
        return drained

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ensure_group(self, stream: str, group: str) -> None:
        """Create consumer group, ignoring BUSYGROUP if it already exists."""
        assert self._redis is not None
        try:
            await self._redis.xgroup_create(
                stream, group, id="0", mkstream=True,
            )
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    @staticmethod
    def _deserialize(fields: dict[str, str]) -> EventEnvelope:
        """Deserialize a Redis Stream message back to an envelope."""
        data = fields.get("_data")
        if not data:
            raise DeserializationError("EventEnvelope", f"missing _data in {fields}")
        return EventEnvelope.from_wire(data)
