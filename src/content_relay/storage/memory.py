"""In-memory store implementations for tests and local runs.

Each store guards its state with an ``asyncio.Lock`` so a write (and any
outbox entry staged with it) is applied atomically with respect to other
coroutines on the same loop.
"""

from __future__ import annotations

import asyncio
import itertools
import logging

from content_relay.core.events import EventEnvelope, OutboxEntry
from content_relay.core.ids import utc_now
from content_relay.core.interfaces import EventStager
from content_relay.core.models import ContentRecord, ContentView, WatchRecord

logger = logging.getLogger(__name__)


class MemoryOutboxStore:
    """List-backed outbox, insertion ordered."""

    def __init__(self) -> None:
        self._entries: dict[int, OutboxEntry] = {}
        self._ids = itertools.count(1)
        self.lock = asyncio.Lock()

    def stage_locked(self, topic: str, envelope: EventEnvelope) -> OutboxEntry:
        """Add an entry.  Caller must hold :attr:`lock`."""
        entry = OutboxEntry(id=next(self._ids), topic=topic, envelope=envelope)
        self._entries[entry.id] = entry
        return entry

    async def pending(self, limit: int = 100) -> list[OutboxEntry]:
        async with self.lock:
            pending = [e for e in self._entries.values() if e.is_pending]
            return pending[:limit]

    async def mark_dispatched(self, entry_id: int) -> None:
        async with self.lock:
            entry = self._entries[entry_id]
            self._entries[entry_id] = entry.model_copy(
                update={"dispatched_at": utc_now(), "attempts": entry.attempts + 1}
            )

    async def record_failure(self, entry_id: int, error: str) -> None:
        async with self.lock:
            entry = self._entries[entry_id]
            self._entries[entry_id] = entry.model_copy(
                update={"attempts": entry.attempts + 1, "last_error": error}
            )

    def all_entries(self) -> list[OutboxEntry]:
        return list(self._entries.values())


class MemoryViewStore:
    """One current :class:`ContentView` per content id."""

    def __init__(self) -> None:
        self._views: dict[int, ContentView] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, view: ContentView) -> None:
        async with self._lock:
            self._views[view.content_id] = view

    async def get(self, content_id: int) -> ContentView | None:
        return self._views.get(content_id)

    async def recent(self, limit: int = 10) -> list[ContentView]:
        views = sorted(
            self._views.values(),
            key=lambda v: (v.viewed_at, v.content_id),
            reverse=True,
        )
        return views[:limit]

    async def list_all(self) -> list[ContentView]:
        return list(self._views.values())


class _StagingStore:
    """Shared save-with-outbox logic for the record stores."""

    def __init__(self, outbox: MemoryOutboxStore | None = None) -> None:
        self._outbox = outbox
        self._lock = outbox.lock if outbox is not None else asyncio.Lock()
        self._ids = itertools.count(1)

    def _stage(self, record, stage: EventStager | None) -> None:
        if stage is None:
            return
        if self._outbox is None:
            raise ValueError("Store has no outbox to stage events into")
        staged = stage(record)
        if staged is not None:
            self._outbox.stage_locked(*staged)


class MemoryWatchRecordStore(_StagingStore):
    def __init__(self, outbox: MemoryOutboxStore | None = None) -> None:
        super().__init__(outbox)
        self._records: list[WatchRecord] = []

    async def save(
        self,
        record: WatchRecord,
        stage: EventStager[WatchRecord] | None = None,
    ) -> WatchRecord:
        async with self._lock:
            saved = record.model_copy(update={"id": next(self._ids)})
            # Staging first: a failure leaves neither the row nor the entry.
            self._stage(saved, stage)
            self._records.append(saved)
            return saved

    async def by_visitor(self, visitor_id: str) -> list[WatchRecord]:
        rows = [r for r in self._records if r.visitor_id == visitor_id]
        return sorted(rows, key=lambda r: (r.watched_at, r.id), reverse=True)


class MemoryContentStore(_StagingStore):
    def __init__(self, outbox: MemoryOutboxStore | None = None) -> None:
        super().__init__(outbox)
        self._records: dict[int, ContentRecord] = {}

    async def save(
        self,
        record: ContentRecord,
        stage: EventStager[ContentRecord] | None = None,
    ) -> ContentRecord:
        async with self._lock:
            saved = record.model_copy(update={"id": next(self._ids)})
            self._stage(saved, stage)
            self._records[saved.id] = saved
            return saved

    async def get(self, content_id: int) -> ContentRecord | None:
        return self._records.get(content_id)

    async def list_all(self) -> list[ContentRecord]:
        return list(self._records.values())
