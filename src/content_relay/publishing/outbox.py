"""Transactional outbox dispatcher.

Write services in outbox mode pass a publisher's ``stage`` as the
``stage`` argument of ``store.save``; the envelope is then written in the
same transaction as the record.  :class:`OutboxDispatcher` pushes pending
entries to the bus in insertion order and marks each one dispatched only
after the bus accepted it.  An entry that keeps failing stays pending and
blocks the entries behind it, so per-key order survives outages.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random

from content_relay.core.events import OutboxEntry
from content_relay.core.interfaces import IEventBus, IOutboxStore
from content_relay.observability import metrics

logger = logging.getLogger(__name__)


class OutboxDispatcher:
    """Drains an outbox store into the event bus.

    Parameters
    ----------
    outbox:
        Store holding staged entries.
    bus:
        Destination bus.
    poll_interval:
        Seconds between sweeps in :meth:`run`.
    batch_size:
        Maximum entries read per sweep.
    max_attempts:
        Bus submissions tried per entry per sweep before giving up until
        the next sweep.
    base_backoff:
        First retry delay in seconds; doubles per attempt, plus jitter.
    """

    def __init__(
        self,
        outbox: IOutboxStore,
        bus: IEventBus,
        *,
        poll_interval: float = 1.0,
        batch_size: int = 100,
        max_attempts: int = 5,
        base_backoff: float = 0.2,
    ) -> None:
        self._outbox = outbox
        self._bus = bus
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._max_attempts = max(1, max_attempts)
        self._base_backoff = base_backoff
        self._task: asyncio.Task[None] | None = None
        self._running = False

        # Counters
        self._dispatched: int = 0
        self._failures: int = 0

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self.run(), name="outbox-dispatcher")
        logger.info(
            "OutboxDispatcher started (batch_size=%d, interval=%.1fs)",
            self._batch_size,
            self._poll_interval,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info(
            "OutboxDispatcher stopped (dispatched=%d, failures=%d)",
            self._dispatched,
            self._failures,
        )

    async def run(self) -> None:
        """Sweep until stopped."""
        self._running = True
        while self._running:
            try:
                await self.drain_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Outbox sweep failed")
            await asyncio.sleep(self._poll_interval)

    # -- public API ---------------------------------------------------------

    async def drain_once(self) -> int:
        """Dispatch pending entries in order; return how many went out.

        Stops at the first entry that exhausts its attempts.
        """
        entries = await self._outbox.pending(self._batch_size)
        sent = 0
        for entry in entries:
            if not await self._dispatch(entry):
                break
            sent += 1
        return sent

    @property
    def stats(self) -> dict[str, int]:
        return {"dispatched": self._dispatched, "failures": self._failures}

    # -- internals ----------------------------------------------------------

    async def _dispatch(self, entry: OutboxEntry) -> bool:
        assert entry.id is not None
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._bus.publish(entry.topic, entry.envelope)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._failures += 1
                metrics.record_outbox_failure(entry.topic)
                await self._outbox.record_failure(entry.id, str(exc))
                if attempt < self._max_attempts:
                    wait = self._backoff_delay(attempt)
                    logger.warning(
                        "Outbox entry %d publish failed (attempt %d/%d), retrying in %.2fs: %s",
                        entry.id, attempt, self._max_attempts, wait, exc,
                    )
                    await asyncio.sleep(wait)
                continue

            await self._outbox.mark_dispatched(entry.id)
            self._dispatched += 1
            metrics.record_outbox_dispatched(entry.topic)
            logger.info(
                "Dispatched outbox entry %d: %s key=%s to %s",
                entry.id, entry.envelope.type, entry.envelope.key, entry.topic,
            )
            return True

        logger.error(
            "Outbox entry %d still pending after %d attempts",
            entry.id, self._max_attempts,
        )
        return False

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter."""
        base = self._base_backoff * (2 ** (attempt - 1))
        return base + random.uniform(0, base * 0.5)
